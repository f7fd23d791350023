import logging
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .cache import StatsCache
from .config import settings
from .errors import LedgerServiceError
from .logging_config import setup_logging
from .models import (
    ConfirmPaymentRequest,
    Earning,
    EarningResponse,
    EarningsHistoryResponse,
    EarningsStats,
    FailWithdrawalRequest,
    RecordEarningRequest,
    SavedWithdrawalMethod,
    SendTipRequest,
    TimelinePoint,
    WithdrawalMethodResponse,
    WithdrawalQuote,
    WithdrawalRequest,
    WithdrawalResponse,
    WithdrawalSubmission,
)
from .service import LedgerService

setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.APP_NAME,
    description="Creator earnings ledger with a 14-day hold period and validated withdrawals",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ledger_service = LedgerService(retry_attempts=settings.WITHDRAWAL_RETRY_ATTEMPTS)
stats_cache = StatsCache(settings.STATS_CACHE_TTL_SECONDS)


@app.exception_handler(LedgerServiceError)
async def ledger_error_handler(request: Request, exc: LedgerServiceError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "message": exc.message},
    )


@app.get("/health", tags=["System"])
def health_check():
    return {"status": "healthy", "service": "creator-earnings-ledger"}


@app.post("/users/{user_id}/earnings", response_model=EarningResponse, status_code=status.HTTP_201_CREATED, tags=["Earnings"])
def record_earning(user_id: str, request: RecordEarningRequest) -> EarningResponse:
    earning = ledger_service.record_earning(user_id, **request.model_dump())
    stats_cache.invalidate(user_id)
    return EarningResponse(earning=earning, message="Earning recorded")


@app.get("/users/{user_id}/earnings", response_model=EarningsHistoryResponse, tags=["Earnings"])
def get_earnings_history(
    user_id: str,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
) -> EarningsHistoryResponse:
    return ledger_service.get_earnings_history(user_id, limit, offset)


@app.get("/users/{user_id}/earnings/stats", response_model=EarningsStats, tags=["Earnings"])
def get_earnings_stats(user_id: str, now: Optional[datetime] = None) -> EarningsStats:
    if now is not None:
        return ledger_service.get_stats(user_id, now)
    return stats_cache.get_or_load(user_id, lambda: ledger_service.get_stats(user_id))


@app.get("/users/{user_id}/earnings/timeline", response_model=list[TimelinePoint], tags=["Earnings"])
def get_earnings_timeline(
    user_id: str,
    days: int = Query(30, ge=1, le=366),
    now: Optional[datetime] = None,
) -> list[TimelinePoint]:
    return ledger_service.get_earnings_timeline(user_id, now, days)


@app.post("/earnings/{earning_id}/payment", response_model=EarningResponse, tags=["Earnings"])
def confirm_payment(earning_id: str, request: ConfirmPaymentRequest) -> EarningResponse:
    earning = ledger_service.confirm_payment(earning_id, request.succeeded)
    stats_cache.invalidate(earning.user_id)
    return EarningResponse(earning=earning, message=f"Payment {earning.payment_status.value}")


@app.post("/users/{user_id}/tips", response_model=EarningResponse, status_code=status.HTTP_201_CREATED, tags=["Tips"])
def send_tip(user_id: str, request: SendTipRequest) -> EarningResponse:
    earning = ledger_service.record_tip(
        user_id,
        request.to_user_id,
        request.amount,
        source_id=request.source_id,
        payment_provider=request.payment_provider,
        transaction_id=request.transaction_id,
    )
    stats_cache.invalidate(earning.user_id)
    return EarningResponse(earning=earning, message="Tip recorded, awaiting payment")


@app.get("/users/{user_id}/tips/sent", response_model=list[Earning], tags=["Tips"])
def list_sent_tips(user_id: str, limit: int = Query(20, ge=1, le=100)) -> list[Earning]:
    return ledger_service.list_sent_tips(user_id, limit)


@app.get("/users/{user_id}/tips/received", response_model=list[Earning], tags=["Tips"])
def list_received_tips(user_id: str, limit: int = Query(20, ge=1, le=100)) -> list[Earning]:
    return ledger_service.list_received_tips(user_id, limit)


@app.post("/users/{user_id}/withdrawal-methods", response_model=WithdrawalMethodResponse, status_code=status.HTTP_201_CREATED, tags=["Withdrawals"])
def add_withdrawal_method(user_id: str, method: dict) -> WithdrawalMethodResponse:
    saved = ledger_service.add_withdrawal_method(user_id, method)
    return WithdrawalMethodResponse(method=saved, message="Withdrawal method saved")


@app.get("/users/{user_id}/withdrawal-methods", response_model=list[SavedWithdrawalMethod], tags=["Withdrawals"])
def list_withdrawal_methods(user_id: str) -> list[SavedWithdrawalMethod]:
    return ledger_service.list_withdrawal_methods(user_id)


def _resolve_method(user_id: str, submission: WithdrawalSubmission):
    if submission.withdrawal_method_id:
        return ledger_service.get_withdrawal_method(user_id, submission.withdrawal_method_id).method
    return submission.method


@app.post("/users/{user_id}/withdrawals/validate", response_model=WithdrawalQuote, tags=["Withdrawals"])
def validate_withdrawal(user_id: str, submission: WithdrawalSubmission) -> WithdrawalQuote:
    return ledger_service.validate_withdrawal(user_id, submission.amount, _resolve_method(user_id, submission))


@app.post("/users/{user_id}/withdrawals", response_model=WithdrawalResponse, status_code=status.HTTP_201_CREATED, tags=["Withdrawals"])
def submit_withdrawal(user_id: str, submission: WithdrawalSubmission) -> WithdrawalResponse:
    withdrawal = ledger_service.submit_withdrawal(user_id, submission.amount, _resolve_method(user_id, submission))
    stats_cache.invalidate(user_id)
    return WithdrawalResponse(withdrawal=withdrawal, message="Withdrawal request accepted")


@app.get("/users/{user_id}/withdrawals", response_model=list[WithdrawalRequest], tags=["Withdrawals"])
def list_withdrawals(user_id: str) -> list[WithdrawalRequest]:
    return ledger_service.list_withdrawals(user_id)


@app.get("/withdrawals/{withdrawal_id}", response_model=WithdrawalRequest, tags=["Withdrawals"])
def get_withdrawal(withdrawal_id: str) -> WithdrawalRequest:
    return ledger_service.get_withdrawal(withdrawal_id)


@app.post("/withdrawals/{withdrawal_id}/complete", response_model=WithdrawalResponse, tags=["Withdrawals"])
def complete_withdrawal(withdrawal_id: str) -> WithdrawalResponse:
    withdrawal = ledger_service.complete_withdrawal(withdrawal_id)
    stats_cache.invalidate(withdrawal.user_id)
    return WithdrawalResponse(withdrawal=withdrawal, message="Withdrawal completed")


@app.post("/withdrawals/{withdrawal_id}/fail", response_model=WithdrawalResponse, tags=["Withdrawals"])
def fail_withdrawal(withdrawal_id: str, request: FailWithdrawalRequest) -> WithdrawalResponse:
    withdrawal = ledger_service.fail_withdrawal(withdrawal_id, request.reason)
    stats_cache.invalidate(withdrawal.user_id)
    return WithdrawalResponse(withdrawal=withdrawal, message="Withdrawal failed; earnings released")
