import copy
import threading
from contextlib import contextmanager
from typing import ContextManager, Optional, Protocol

from .errors import StorageConflictError
from .models import (
    Earning,
    EarningStatus,
    SavedWithdrawalMethod,
    WithdrawalRequest,
)


class LedgerStorage(Protocol):
    """Persistence contract the ledger service relies on.

    ``transaction`` must make everything done inside it atomic for one user:
    concurrent transactions for the same user are serialized, writes for that
    user made outside the block wait for it to finish, and an exception
    discards every write made inside the block.
    """

    def transaction(self, user_id: str) -> ContextManager["LedgerStorage"]: ...
    def add_earning(self, earning: Earning) -> Earning: ...
    def get_earning(self, earning_id: str) -> Optional[Earning]: ...
    def update_earning(self, earning: Earning) -> Earning: ...
    def list_earnings_for_user(self, user_id: str) -> list[Earning]: ...
    def list_tips_sent_by(self, tipper_user_id: str) -> list[Earning]: ...
    def mark_earnings_withdrawn(self, earning_ids: list[str], withdrawal_request_id: str) -> None: ...
    def create_withdrawal_request(self, request: WithdrawalRequest) -> WithdrawalRequest: ...
    def save_withdrawal_request(self, request: WithdrawalRequest) -> WithdrawalRequest: ...
    def get_withdrawal_request(self, request_id: str) -> Optional[WithdrawalRequest]: ...
    def list_withdrawal_requests(self, user_id: str) -> list[WithdrawalRequest]: ...
    def add_withdrawal_method(self, method: SavedWithdrawalMethod) -> SavedWithdrawalMethod: ...
    def get_withdrawal_method(self, method_id: str) -> Optional[SavedWithdrawalMethod]: ...
    def list_withdrawal_methods(self, user_id: str) -> list[SavedWithdrawalMethod]: ...


class InMemoryStorage:
    def __init__(self):
        self.earnings: dict[str, dict] = {}
        self.withdrawal_requests: dict[str, dict] = {}
        self.withdrawal_methods: dict[str, dict] = {}
        self._guard = threading.RLock()
        self._user_locks: dict[str, threading.RLock] = {}

    def _lock_for(self, user_id: str) -> threading.RLock:
        with self._guard:
            return self._user_locks.setdefault(user_id, threading.RLock())

    @contextmanager
    def transaction(self, user_id: str):
        with self._lock_for(user_id):
            snapshot = self._snapshot(user_id)
            try:
                yield self
            except Exception:
                self._restore(user_id, snapshot)
                raise

    def _snapshot(self, user_id: str) -> tuple[dict, dict]:
        with self._guard:
            earnings = {k: v for k, v in self.earnings.items() if v["user_id"] == user_id}
            requests = {k: v for k, v in self.withdrawal_requests.items() if v["user_id"] == user_id}
            return copy.deepcopy(earnings), copy.deepcopy(requests)

    def _restore(self, user_id: str, snapshot: tuple[dict, dict]) -> None:
        # Safe only while the user's lock is held: every write for the user
        # goes through that lock, so nothing here was written by another thread.
        earnings, requests = snapshot
        with self._guard:
            for table, saved in ((self.earnings, earnings), (self.withdrawal_requests, requests)):
                for key in [k for k, v in table.items() if v["user_id"] == user_id]:
                    del table[key]
                table.update(saved)

    def add_earning(self, earning: Earning) -> Earning:
        with self._lock_for(earning.user_id), self._guard:
            self.earnings[earning.id] = earning.model_dump()
        return earning

    def get_earning(self, earning_id: str) -> Optional[Earning]:
        with self._guard:
            data = self.earnings.get(earning_id)
            return Earning(**data) if data else None

    def update_earning(self, earning: Earning) -> Earning:
        with self._lock_for(earning.user_id), self._guard:
            if earning.id not in self.earnings:
                raise StorageConflictError(f"Earning {earning.id} does not exist")
            self.earnings[earning.id] = earning.model_dump()
        return earning

    def list_earnings_for_user(self, user_id: str) -> list[Earning]:
        with self._guard:
            rows = [Earning(**e) for e in self.earnings.values() if e["user_id"] == user_id]
        rows.sort(key=lambda e: (e.created_at, e.id))
        return rows

    def list_tips_sent_by(self, tipper_user_id: str) -> list[Earning]:
        with self._guard:
            rows = [Earning(**e) for e in self.earnings.values() if e["tipper_user_id"] == tipper_user_id]
        rows.sort(key=lambda e: (e.created_at, e.id))
        return rows

    def mark_earnings_withdrawn(self, earning_ids: list[str], withdrawal_request_id: str) -> None:
        with self._guard:
            rows = [self.earnings.get(earning_id) for earning_id in earning_ids]
            owners = sorted({row["user_id"] for row in rows if row is not None})
        locks = [self._lock_for(user_id) for user_id in owners]
        for lock in locks:
            lock.acquire()
        try:
            with self._guard:
                for earning_id in earning_ids:
                    data = self.earnings.get(earning_id)
                    if data is None or data["status"] == EarningStatus.WITHDRAWN:
                        raise StorageConflictError(f"Earning {earning_id} is no longer withdrawable")
                for earning_id in earning_ids:
                    self.earnings[earning_id]["status"] = EarningStatus.WITHDRAWN
                    self.earnings[earning_id]["withdrawal_request_id"] = withdrawal_request_id
        finally:
            for lock in reversed(locks):
                lock.release()

    def create_withdrawal_request(self, request: WithdrawalRequest) -> WithdrawalRequest:
        with self._lock_for(request.user_id), self._guard:
            if request.id in self.withdrawal_requests:
                raise StorageConflictError(f"Withdrawal request {request.id} already exists")
            self.withdrawal_requests[request.id] = request.model_dump()
        return request

    def save_withdrawal_request(self, request: WithdrawalRequest) -> WithdrawalRequest:
        with self._lock_for(request.user_id), self._guard:
            self.withdrawal_requests[request.id] = request.model_dump()
        return request

    def get_withdrawal_request(self, request_id: str) -> Optional[WithdrawalRequest]:
        with self._guard:
            data = self.withdrawal_requests.get(request_id)
            return WithdrawalRequest(**data) if data else None

    def list_withdrawal_requests(self, user_id: str) -> list[WithdrawalRequest]:
        with self._guard:
            rows = [WithdrawalRequest(**r) for r in self.withdrawal_requests.values() if r["user_id"] == user_id]
        rows.sort(key=lambda r: r.created_at, reverse=True)
        return rows

    def add_withdrawal_method(self, method: SavedWithdrawalMethod) -> SavedWithdrawalMethod:
        with self._guard:
            self.withdrawal_methods[method.id] = method.model_dump()
        return method

    def get_withdrawal_method(self, method_id: str) -> Optional[SavedWithdrawalMethod]:
        with self._guard:
            data = self.withdrawal_methods.get(method_id)
            return SavedWithdrawalMethod(**data) if data else None

    def list_withdrawal_methods(self, user_id: str) -> list[SavedWithdrawalMethod]:
        with self._guard:
            return [SavedWithdrawalMethod(**m) for m in self.withdrawal_methods.values() if m["user_id"] == user_id]
