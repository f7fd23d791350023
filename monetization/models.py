from datetime import date, datetime
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union
from pydantic import BaseModel, Field, ConfigDict, model_validator


class SourceType(str, Enum):
    TIP = "tip"
    SUPERCHAT = "superchat"
    SUBSCRIPTION_POOL = "subscription_pool"


class PaymentProvider(str, Enum):
    STRIPE = "stripe"
    CCBILL = "ccbill"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class EarningStatus(str, Enum):
    PENDING = "pending"
    AVAILABLE = "available"
    WITHDRAWN = "withdrawn"


class WithdrawalStatus(str, Enum):
    VALIDATED = "validated"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class WithdrawalMethodType(str, Enum):
    BANK_TRANSFER = "bank_transfer"
    PAYPAL = "paypal"


class AccountType(str, Enum):
    CHECKING = "checking"
    SAVINGS = "savings"


ALLOWED_WITHDRAWAL_TRANSITIONS = {
    WithdrawalStatus.VALIDATED: {WithdrawalStatus.PROCESSING},
    WithdrawalStatus.PROCESSING: {WithdrawalStatus.COMPLETED, WithdrawalStatus.FAILED},
    WithdrawalStatus.COMPLETED: set(),
    WithdrawalStatus.FAILED: set(),
}


class Earning(BaseModel):
    id: str
    user_id: str
    source_type: SourceType
    source_id: Optional[str] = None
    tipper_user_id: Optional[str] = None
    gross_amount: int = Field(..., ge=0)
    platform_fee: int = Field(..., ge=0)
    net_amount: int = Field(..., ge=0)
    payment_provider: Optional[PaymentProvider] = None
    transaction_id: Optional[str] = None
    payment_status: PaymentStatus = PaymentStatus.COMPLETED
    status: EarningStatus = EarningStatus.PENDING
    created_at: datetime
    available_at: datetime
    withdrawal_request_id: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

    @model_validator(mode="after")
    def check_net_amount(self) -> "Earning":
        if self.net_amount != self.gross_amount - self.platform_fee:
            raise ValueError("net_amount must equal gross_amount - platform_fee")
        return self

    def is_withdrawable_status(self) -> bool:
        return (
            self.payment_status == PaymentStatus.COMPLETED
            and self.status != EarningStatus.WITHDRAWN
        )


class BankTransferMethod(BaseModel):
    type: Literal["bank_transfer"] = "bank_transfer"
    bank_name: str
    branch_name: Optional[str] = None
    account_type: AccountType
    account_number: str
    account_holder: str


class PayPalMethod(BaseModel):
    type: Literal["paypal"] = "paypal"
    paypal_email: str


WithdrawalMethod = Annotated[Union[BankTransferMethod, PayPalMethod], Field(discriminator="type")]


class WithdrawalRequest(BaseModel):
    id: str
    user_id: str
    requested_amount: int = Field(..., gt=0)
    method: WithdrawalMethod
    fee: int = Field(..., ge=0)
    net_amount: int
    status: WithdrawalStatus = WithdrawalStatus.VALIDATED
    earning_ids: list[str] = Field(default_factory=list)
    created_at: datetime
    processed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    estimated_completion: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    def can_transition_to(self, target: WithdrawalStatus) -> bool:
        return target in ALLOWED_WITHDRAWAL_TRANSITIONS[self.status]


class SavedWithdrawalMethod(BaseModel):
    id: str
    user_id: str
    method: WithdrawalMethod
    is_verified: bool = False
    created_at: datetime


class EarningsBreakdown(BaseModel):
    tips: int = 0
    superchat: int = 0
    subscription_pool: int = 0


class EarningsStats(BaseModel):
    available_balance: int = 0
    pending_balance: int = 0
    this_month_earnings: int = 0
    total_withdrawn: int = 0
    breakdown: EarningsBreakdown = Field(default_factory=EarningsBreakdown)
    as_of: datetime


class TimelinePoint(BaseModel):
    day: date
    amount: int = 0


class WithdrawalQuote(BaseModel):
    amount: int
    fee: int
    net_amount: int
    available_balance: int
    method: WithdrawalMethod


class RecordEarningRequest(BaseModel):
    source_type: SourceType
    source_id: Optional[str] = None
    gross_amount: int = Field(..., ge=0)
    platform_fee: Optional[int] = Field(default=None, ge=0)
    payment_provider: Optional[PaymentProvider] = None
    transaction_id: Optional[str] = None
    payment_status: PaymentStatus = PaymentStatus.COMPLETED
    created_at: Optional[datetime] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "source_type": "tip",
            "source_id": "tip_8f14e45f",
            "gross_amount": 1000,
            "payment_provider": "stripe",
        }
    })


class SendTipRequest(BaseModel):
    to_user_id: str
    amount: int
    source_id: Optional[str] = None
    payment_provider: PaymentProvider = PaymentProvider.STRIPE
    transaction_id: Optional[str] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "to_user_id": "creator-550e8400",
            "amount": 1000,
            "source_id": "video_8f14e45f",
            "transaction_id": "pi_3PqL2x",
        }
    })


class ConfirmPaymentRequest(BaseModel):
    succeeded: bool


class WithdrawalSubmission(BaseModel):
    # Left loose so amount and method problems surface as ledger errors, not 422s.
    amount: Any = None
    method: Optional[dict[str, Any]] = None
    withdrawal_method_id: Optional[str] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "amount": 45000,
            "method": {
                "type": "bank_transfer",
                "bank_name": "Mizuho Bank",
                "branch_name": "Shibuya",
                "account_type": "checking",
                "account_number": "1234567",
                "account_holder": "Taro Tanaka",
            },
        }
    })


class FailWithdrawalRequest(BaseModel):
    reason: str = Field(..., description="Rejection reason reported by the payment rail")


class EarningResponse(BaseModel):
    earning: Earning
    message: str


class WithdrawalResponse(BaseModel):
    withdrawal: WithdrawalRequest
    message: str


class WithdrawalMethodResponse(BaseModel):
    method: SavedWithdrawalMethod
    message: str


class EarningsHistoryResponse(BaseModel):
    user_id: str
    earnings: list[Earning]
    total_count: int
