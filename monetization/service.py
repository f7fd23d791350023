import logging
from datetime import datetime, timedelta
from typing import Any, Optional, Union
from uuid import uuid4

from pydantic import ValidationError

from .balance import compute_stats, compute_timeline, get_available_balance
from .constants import (
    EARNING_ID_PREFIX,
    MINIMUM_TIP_AMOUNT,
    PLATFORM_FEE_PERCENT,
    WITHDRAWAL_ESTIMATED_DAYS,
    WITHDRAWAL_ID_PREFIX,
    WITHDRAWAL_METHOD_ID_PREFIX,
)
from .errors import (
    EarningNotFoundError,
    InsufficientBalanceError,
    InvalidInputError,
    InvalidStateTransitionError,
    LedgerUnavailableError,
    StorageConflictError,
    WithdrawalMethodNotFoundError,
    WithdrawalNotFoundError,
)
from .hold_period import Instant, calculate_available_date, ensure_instant, is_available_for_withdrawal, utc_now
from .models import (
    BankTransferMethod,
    Earning,
    EarningStatus,
    EarningsHistoryResponse,
    EarningsStats,
    PaymentProvider,
    PaymentStatus,
    SavedWithdrawalMethod,
    SourceType,
    TimelinePoint,
    WithdrawalQuote,
    WithdrawalRequest,
    WithdrawalStatus,
)
from .storage import InMemoryStorage, LedgerStorage
from .withdrawal import (
    calculate_withdrawal_fee,
    mask_account_number,
    select_earnings_for_withdrawal,
    validate_withdrawal_amount,
    validate_withdrawal_method,
)

logger = logging.getLogger(__name__)

DEFAULT_RETRY_ATTEMPTS = 2


def _new_id(prefix: str) -> str:
    return f"{prefix}{uuid4().hex}"


def _require_user(user_id: str) -> str:
    if not isinstance(user_id, str) or not user_id.strip():
        raise InvalidInputError("user_id is required")
    return user_id


class LedgerService:
    def __init__(self, storage: Optional[LedgerStorage] = None, retry_attempts: int = DEFAULT_RETRY_ATTEMPTS):
        self.storage = storage or InMemoryStorage()
        self.retry_attempts = max(1, retry_attempts)

    @staticmethod
    def _resolve_now(now: Optional[Instant]) -> datetime:
        return utc_now() if now is None else ensure_instant(now, "now")

    # -- earnings ---------------------------------------------------------

    def record_earning(
        self,
        user_id: str,
        source_type: Union[SourceType, str],
        gross_amount: int,
        platform_fee: Optional[int] = None,
        source_id: Optional[str] = None,
        tipper_user_id: Optional[str] = None,
        payment_provider: Optional[Union[PaymentProvider, str]] = None,
        transaction_id: Optional[str] = None,
        payment_status: Union[PaymentStatus, str] = PaymentStatus.COMPLETED,
        created_at: Optional[Instant] = None,
    ) -> Earning:
        """Append one accrual. ``platform_fee`` defaults to the standard platform cut."""
        _require_user(user_id)
        if isinstance(gross_amount, bool) or not isinstance(gross_amount, int) or gross_amount < 0:
            raise InvalidInputError("gross_amount must be a non-negative whole number")
        if platform_fee is None:
            platform_fee = gross_amount * PLATFORM_FEE_PERCENT // 100
        if isinstance(platform_fee, bool) or not isinstance(platform_fee, int) or not 0 <= platform_fee <= gross_amount:
            raise InvalidInputError("platform_fee must be a whole number between 0 and gross_amount")

        accrued_at = self._resolve_now(created_at)
        try:
            earning = Earning(
                id=_new_id(EARNING_ID_PREFIX),
                user_id=user_id,
                source_type=source_type,
                source_id=source_id,
                tipper_user_id=tipper_user_id,
                gross_amount=gross_amount,
                platform_fee=platform_fee,
                net_amount=gross_amount - platform_fee,
                payment_provider=payment_provider,
                transaction_id=transaction_id,
                payment_status=payment_status,
                status=EarningStatus.PENDING,
                created_at=accrued_at,
                available_at=calculate_available_date(accrued_at),
            )
        except ValidationError as e:
            raise InvalidInputError(f"Invalid earning: {e.errors()[0]['msg']}")

        self.storage.add_earning(earning)
        logger.info(
            "Recorded %s earning %s for user=%s net=%d payment_status=%s",
            earning.source_type.value, earning.id, user_id, earning.net_amount, earning.payment_status.value,
        )
        return earning

    def record_tip(
        self,
        from_user_id: str,
        to_user_id: str,
        amount: int,
        source_id: Optional[str] = None,
        payment_provider: Union[PaymentProvider, str] = PaymentProvider.STRIPE,
        transaction_id: Optional[str] = None,
        now: Optional[Instant] = None,
    ) -> Earning:
        """Record the creator's share of a tip whose payment is still being captured."""
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < MINIMUM_TIP_AMOUNT:
            raise InvalidInputError(f"Minimum tip amount is ¥{MINIMUM_TIP_AMOUNT:,}")
        _require_user(from_user_id)
        if from_user_id == to_user_id:
            raise InvalidInputError("You cannot tip yourself")

        return self.record_earning(
            user_id=to_user_id,
            source_type=SourceType.TIP,
            gross_amount=amount,
            source_id=source_id,
            tipper_user_id=from_user_id,
            payment_provider=payment_provider,
            transaction_id=transaction_id,
            payment_status=PaymentStatus.PENDING,
            created_at=now,
        )

    def confirm_payment(self, earning_id: str, succeeded: bool) -> Earning:
        """Settle the upstream payment of an earning; failed payments stay on record."""
        earning = self.get_earning(earning_id)
        with self.storage.transaction(earning.user_id) as store:
            earning = store.get_earning(earning_id)
            if earning.payment_status != PaymentStatus.PENDING:
                raise InvalidStateTransitionError(
                    f"Payment for earning {earning_id} is already {earning.payment_status.value}"
                )
            status = PaymentStatus.COMPLETED if succeeded else PaymentStatus.FAILED
            earning = store.update_earning(earning.model_copy(update={"payment_status": status}))

        logger.info("Payment for earning %s marked %s", earning_id, status.value)
        return earning

    def refresh_available_status(self, user_id: str, now: Optional[Instant] = None) -> int:
        """Persist ``available`` on held earnings whose hold has elapsed. Returns the count updated."""
        _require_user(user_id)
        current = self._resolve_now(now)
        updated = 0
        with self.storage.transaction(user_id) as store:
            for earning in store.list_earnings_for_user(user_id):
                if (
                    earning.status == EarningStatus.PENDING
                    and earning.payment_status == PaymentStatus.COMPLETED
                    and is_available_for_withdrawal(earning.created_at, current)
                ):
                    store.update_earning(earning.model_copy(update={"status": EarningStatus.AVAILABLE}))
                    updated += 1
        return updated

    def get_earning(self, earning_id: str) -> Earning:
        earning = self.storage.get_earning(earning_id)
        if not earning:
            raise EarningNotFoundError(f"Earning {earning_id} not found")
        return earning

    def get_earnings_history(self, user_id: str, limit: int = 20, offset: int = 0) -> EarningsHistoryResponse:
        _require_user(user_id)
        earnings = self.storage.list_earnings_for_user(user_id)
        earnings.sort(key=lambda e: e.created_at, reverse=True)
        return EarningsHistoryResponse(
            user_id=user_id,
            earnings=earnings[offset:offset + limit],
            total_count=len(earnings),
        )

    def list_received_tips(self, user_id: str, limit: int = 20) -> list[Earning]:
        """Tips credited to ``user_id``, newest first."""
        _require_user(user_id)
        tips = [
            e for e in self.storage.list_earnings_for_user(user_id)
            if e.source_type == SourceType.TIP and e.tipper_user_id is not None
        ]
        tips.sort(key=lambda e: e.created_at, reverse=True)
        return tips[:limit]

    def list_sent_tips(self, user_id: str, limit: int = 20) -> list[Earning]:
        """Tips ``user_id`` sent to creators, newest first."""
        _require_user(user_id)
        tips = self.storage.list_tips_sent_by(user_id)
        tips.sort(key=lambda e: e.created_at, reverse=True)
        return tips[:limit]

    # -- balances ---------------------------------------------------------

    def get_stats(self, user_id: str, now: Optional[Instant] = None) -> EarningsStats:
        _require_user(user_id)
        return compute_stats(self.storage.list_earnings_for_user(user_id), self._resolve_now(now))

    def get_available_balance(self, user_id: str, now: Optional[Instant] = None) -> int:
        _require_user(user_id)
        return get_available_balance(self.storage.list_earnings_for_user(user_id), self._resolve_now(now))

    def get_earnings_timeline(self, user_id: str, now: Optional[Instant] = None, days: int = 30) -> list[TimelinePoint]:
        _require_user(user_id)
        return compute_timeline(self.storage.list_earnings_for_user(user_id), self._resolve_now(now), days)

    # -- withdrawal methods -----------------------------------------------

    def add_withdrawal_method(self, user_id: str, method: Any, now: Optional[Instant] = None) -> SavedWithdrawalMethod:
        _require_user(user_id)
        saved = SavedWithdrawalMethod(
            id=_new_id(WITHDRAWAL_METHOD_ID_PREFIX),
            user_id=user_id,
            method=validate_withdrawal_method(method),
            is_verified=False,
            created_at=self._resolve_now(now),
        )
        self.storage.add_withdrawal_method(saved)
        logger.info("Saved %s withdrawal method %s for user=%s", saved.method.type, saved.id, user_id)
        return saved

    def list_withdrawal_methods(self, user_id: str) -> list[SavedWithdrawalMethod]:
        """Saved methods with account numbers masked for display."""
        _require_user(user_id)
        methods = []
        for saved in self.storage.list_withdrawal_methods(user_id):
            if isinstance(saved.method, BankTransferMethod):
                masked = saved.method.model_copy(
                    update={"account_number": mask_account_number(saved.method.account_number)}
                )
                saved = saved.model_copy(update={"method": masked})
            methods.append(saved)
        return methods

    def get_withdrawal_method(self, user_id: str, method_id: str) -> SavedWithdrawalMethod:
        saved = self.storage.get_withdrawal_method(method_id)
        if not saved or saved.user_id != user_id:
            raise WithdrawalMethodNotFoundError(f"Withdrawal method {method_id} not found")
        return saved

    # -- withdrawals ------------------------------------------------------

    def validate_withdrawal(
        self,
        user_id: str,
        amount: Any,
        method: Any,
        now: Optional[Instant] = None,
    ) -> WithdrawalQuote:
        """Check a payout against the live balance and price it. Writes nothing."""
        _require_user(user_id)
        current = self._resolve_now(now)
        available = get_available_balance(self.storage.list_earnings_for_user(user_id), current)

        value = validate_withdrawal_amount(amount, available)
        sanitized = validate_withdrawal_method(method)
        fee = calculate_withdrawal_fee(value, sanitized.type)

        return WithdrawalQuote(
            amount=value,
            fee=fee,
            net_amount=value - fee,
            available_balance=available,
            method=sanitized,
        )

    def submit_withdrawal(
        self,
        user_id: str,
        amount: Any,
        method: Any,
        now: Optional[Instant] = None,
    ) -> WithdrawalRequest:
        """Validate a payout and reserve the earnings that fund it.

        The balance re-check, the new request and the earnings marked
        ``withdrawn`` are written in one storage transaction; a lost write
        race is retried before giving up.
        """
        current = self._resolve_now(now)
        try:
            quote = self.validate_withdrawal(user_id, amount, method, current)
        except InsufficientBalanceError:
            logger.info("Withdrawal rejected for user=%s amount=%s: insufficient balance", user_id, amount)
            raise

        for attempt in range(1, self.retry_attempts + 1):
            try:
                request = self._reserve_earnings(user_id, quote, current)
            except StorageConflictError as e:
                logger.warning(
                    "Withdrawal transaction conflict for user=%s (attempt %d/%d): %s",
                    user_id, attempt, self.retry_attempts, e,
                )
                continue

            logger.info(
                "Withdrawal %s processing for user=%s amount=%d fee=%d earnings=%d",
                request.id, user_id, request.requested_amount, request.fee, len(request.earning_ids),
            )
            return request

        logger.error("Withdrawal for user=%s abandoned after %d attempts", user_id, self.retry_attempts)
        raise LedgerUnavailableError()

    def _reserve_earnings(self, user_id: str, quote: WithdrawalQuote, now: datetime) -> WithdrawalRequest:
        with self.storage.transaction(user_id) as store:
            earnings = store.list_earnings_for_user(user_id)
            available = get_available_balance(earnings, now)
            if quote.amount > available:
                raise InsufficientBalanceError(
                    f"Insufficient available balance: requested ¥{quote.amount:,}, available ¥{available:,}"
                )
            selected = select_earnings_for_withdrawal(earnings, quote.amount, now)

            request = store.create_withdrawal_request(WithdrawalRequest(
                id=_new_id(WITHDRAWAL_ID_PREFIX),
                user_id=user_id,
                requested_amount=quote.amount,
                method=quote.method,
                fee=quote.fee,
                net_amount=quote.net_amount,
                status=WithdrawalStatus.VALIDATED,
                created_at=now,
                estimated_completion=now + timedelta(days=WITHDRAWAL_ESTIMATED_DAYS),
            ))
            request = self._transition(
                request,
                WithdrawalStatus.PROCESSING,
                processed_at=now,
                earning_ids=[e.id for e in selected],
            )
            store.mark_earnings_withdrawn(request.earning_ids, request.id)
            return store.save_withdrawal_request(request)

    @staticmethod
    def _transition(request: WithdrawalRequest, target: WithdrawalStatus, **changes) -> WithdrawalRequest:
        if not request.can_transition_to(target):
            raise InvalidStateTransitionError(
                f"Cannot move withdrawal {request.id} from {request.status.value} to {target.value}"
            )
        return request.model_copy(update={"status": target, **changes})

    def get_withdrawal(self, withdrawal_id: str) -> WithdrawalRequest:
        request = self.storage.get_withdrawal_request(withdrawal_id)
        if not request:
            raise WithdrawalNotFoundError(f"Withdrawal {withdrawal_id} not found")
        return request

    def list_withdrawals(self, user_id: str) -> list[WithdrawalRequest]:
        _require_user(user_id)
        return self.storage.list_withdrawal_requests(user_id)

    def complete_withdrawal(self, withdrawal_id: str, now: Optional[Instant] = None) -> WithdrawalRequest:
        """Record that the payment rail paid the withdrawal out."""
        current = self._resolve_now(now)
        user_id = self.get_withdrawal(withdrawal_id).user_id
        with self.storage.transaction(user_id) as store:
            request = self._transition(
                store.get_withdrawal_request(withdrawal_id),
                WithdrawalStatus.COMPLETED,
                completed_at=current,
            )
            store.save_withdrawal_request(request)

        logger.info("Withdrawal %s completed for user=%s", withdrawal_id, user_id)
        return request

    def fail_withdrawal(self, withdrawal_id: str, reason: str, now: Optional[Instant] = None) -> WithdrawalRequest:
        """Record a payment-rail rejection and return the reserved earnings to the balance."""
        current = self._resolve_now(now)
        user_id = self.get_withdrawal(withdrawal_id).user_id
        with self.storage.transaction(user_id) as store:
            request = self._transition(
                store.get_withdrawal_request(withdrawal_id),
                WithdrawalStatus.FAILED,
                failed_at=current,
                failure_reason=reason,
            )
            for earning_id in request.earning_ids:
                earning = store.get_earning(earning_id)
                store.update_earning(earning.model_copy(
                    update={"status": EarningStatus.PENDING, "withdrawal_request_id": None}
                ))
            store.save_withdrawal_request(request)

        logger.info(
            "Withdrawal %s failed for user=%s, released %d earnings: %s",
            withdrawal_id, user_id, len(request.earning_ids), reason,
        )
        return request
