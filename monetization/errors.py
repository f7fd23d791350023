from typing import Optional


class LedgerServiceError(Exception):
    code = "ledger_error"
    status_code = 400
    default_message = "Ledger operation failed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidInputError(LedgerServiceError):
    code = "invalid_input"
    default_message = "Invalid input"


class InvalidMethodError(InvalidInputError):
    code = "invalid_method"
    default_message = "Invalid withdrawal method"


class WithdrawalValidationError(LedgerServiceError):
    code = "validation_error"
    default_message = "Withdrawal request is invalid"


class InvalidAmountError(WithdrawalValidationError):
    code = "invalid_amount"
    default_message = "Amount must be a positive whole number"


class BelowMinimumError(WithdrawalValidationError):
    code = "amount_below_minimum"
    default_message = "Minimum withdrawal amount is ¥1,000"


class InsufficientBalanceError(WithdrawalValidationError):
    code = "insufficient_balance"
    default_message = "Insufficient available balance"


class InvalidMethodTypeError(WithdrawalValidationError):
    code = "invalid_method_type"
    default_message = "Invalid withdrawal method"


class BankNameRequiredError(WithdrawalValidationError):
    code = "bank_name_required"
    default_message = "Bank name is required"


class AccountNumberRequiredError(WithdrawalValidationError):
    code = "account_number_required"
    default_message = "Account number is required"


class InvalidAccountNumberFormatError(WithdrawalValidationError):
    code = "invalid_account_number_format"
    default_message = "Account number must contain digits only"


class AccountHolderRequiredError(WithdrawalValidationError):
    code = "account_holder_required"
    default_message = "Account holder name is required"


class InvalidAccountTypeError(WithdrawalValidationError):
    code = "invalid_account_type"
    default_message = "Account type must be checking or savings"


class EmailRequiredError(WithdrawalValidationError):
    code = "email_required"
    default_message = "PayPal email address is required"


class InvalidEmailFormatError(WithdrawalValidationError):
    code = "invalid_email_format"
    default_message = "Please enter a valid email address"


class EarningNotFoundError(LedgerServiceError):
    code = "earning_not_found"
    status_code = 404
    default_message = "Earning not found"


class WithdrawalNotFoundError(LedgerServiceError):
    code = "withdrawal_not_found"
    status_code = 404
    default_message = "Withdrawal request not found"


class WithdrawalMethodNotFoundError(LedgerServiceError):
    code = "withdrawal_method_not_found"
    status_code = 404
    default_message = "Withdrawal method not found"


class InvalidStateTransitionError(LedgerServiceError):
    code = "invalid_state_transition"
    status_code = 409
    default_message = "Invalid state transition"


class LedgerUnavailableError(LedgerServiceError):
    code = "ledger_unavailable"
    status_code = 503
    default_message = "Ledger is temporarily unavailable, please retry"


class StorageConflictError(Exception):
    """Raised by a storage backend when a transaction lost a write race."""
