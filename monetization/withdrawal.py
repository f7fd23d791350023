"""
Withdrawal validation, fee calculation and earning selection.

Amount rules
------------
* the amount must be a positive whole number of minor units
* the minimum payout is ``MINIMUM_WITHDRAWAL_AMOUNT``
* the amount may not exceed the available balance

Method rules
------------
Two payout methods exist, discriminated on ``type``: ``bank_transfer`` and
``paypal``. Free-text fields are sanitized before they are echoed back or
stored so withdrawal metadata can't carry markup into admin screens.
"""

import logging
import math
import re
from array import array
from collections.abc import Iterable, Mapping
from datetime import datetime
from decimal import Decimal
from numbers import Number
from typing import Any, Union

from email_validator import EmailNotValidError, validate_email
from pydantic import BaseModel

from .constants import BANK_TRANSFER_FEE, MINIMUM_WITHDRAWAL_AMOUNT, PAYPAL_FEE
from .errors import (
    AccountHolderRequiredError,
    AccountNumberRequiredError,
    BankNameRequiredError,
    BelowMinimumError,
    EmailRequiredError,
    InsufficientBalanceError,
    InvalidAccountNumberFormatError,
    InvalidAccountTypeError,
    InvalidAmountError,
    InvalidEmailFormatError,
    InvalidMethodError,
    InvalidMethodTypeError,
)
from .hold_period import is_available_for_withdrawal
from .models import (
    AccountType,
    BankTransferMethod,
    Earning,
    PayPalMethod,
    WithdrawalMethodType,
)

logger = logging.getLogger(__name__)

WITHDRAWAL_FEES = {
    WithdrawalMethodType.BANK_TRANSFER: BANK_TRANSFER_FEE,
    WithdrawalMethodType.PAYPAL: PAYPAL_FEE,
}

_SCRIPT_BLOCK = re.compile(r"<(script|style)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_TAG = re.compile(r"<[^>]*>")
_EVENT_HANDLER = re.compile(r"\bon[a-z]+\s*=\s*(\"[^\"]*\"|'[^']*'|[^\s>]*)", re.IGNORECASE)
_DIGITS = re.compile(r"[0-9]+")


def _whole_number(value: Any, field: str = "Amount") -> int:
    if value is None or isinstance(value, bool) or not isinstance(value, Number):
        raise InvalidAmountError(f"{field} must be a number")
    if isinstance(value, (float, Decimal)):
        if not math.isfinite(value):
            raise InvalidAmountError(f"{field} must be a number")
        if value != int(value):
            raise InvalidAmountError(f"{field} must be a whole number")
        return int(value)
    if isinstance(value, int):
        return value
    raise InvalidAmountError(f"{field} must be a number")


def validate_withdrawal_amount(amount: Any, available_balance: Any) -> int:
    """Raise if ``amount`` can't be withdrawn from ``available_balance``.

    Returns the amount as an ``int``.
    """
    value = _whole_number(amount)
    if value <= 0:
        raise InvalidAmountError("Amount must be greater than zero")
    balance = _whole_number(available_balance, "Available balance")

    if value < MINIMUM_WITHDRAWAL_AMOUNT:
        raise BelowMinimumError(f"Minimum withdrawal amount is ¥{MINIMUM_WITHDRAWAL_AMOUNT:,}")
    if value > balance:
        raise InsufficientBalanceError(
            f"Insufficient available balance: requested ¥{value:,}, available ¥{balance:,}"
        )
    return value


def calculate_withdrawal_fee(amount: Any, method: Union[str, WithdrawalMethodType, None]) -> int:
    value = _whole_number(amount)
    if value < 0:
        raise InvalidAmountError("Amount cannot be negative")
    try:
        method_type = WithdrawalMethodType(method)
    except ValueError:
        raise InvalidMethodError(f"Invalid withdrawal method: {method!r}")
    return WITHDRAWAL_FEES[method_type]


def sanitize_text(value: str) -> str:
    cleaned = value.replace("\x00", "")
    cleaned = _SCRIPT_BLOCK.sub("", cleaned)
    cleaned = _TAG.sub("", cleaned)
    cleaned = _EVENT_HANDLER.sub("", cleaned)
    cleaned = cleaned.replace("<", "").replace(">", "")
    return cleaned.strip()


def _text(payload: Mapping[str, Any], key: str) -> str:
    value = payload.get(key)
    if value is None:
        return ""
    return sanitize_text(str(value))


def _validate_bank_transfer(payload: Mapping[str, Any]) -> BankTransferMethod:
    bank_name = _text(payload, "bank_name")
    if not bank_name:
        raise BankNameRequiredError()

    account_number = str(payload.get("account_number") or "").strip()
    if not account_number:
        raise AccountNumberRequiredError()
    if not _DIGITS.fullmatch(account_number):
        raise InvalidAccountNumberFormatError()

    account_holder = _text(payload, "account_holder")
    if not account_holder:
        raise AccountHolderRequiredError()

    try:
        account_type = AccountType(payload.get("account_type"))
    except ValueError:
        raise InvalidAccountTypeError()

    return BankTransferMethod(
        bank_name=bank_name,
        branch_name=_text(payload, "branch_name") or None,
        account_type=account_type,
        account_number=account_number,
        account_holder=account_holder,
    )


def _validate_paypal(payload: Mapping[str, Any]) -> PayPalMethod:
    email = str(payload.get("paypal_email") or "").strip()
    if not email:
        raise EmailRequiredError()
    try:
        result = validate_email(email, check_deliverability=False)
    except EmailNotValidError:
        raise InvalidEmailFormatError()
    return PayPalMethod(paypal_email=result.normalized)


def validate_withdrawal_method(method: Any) -> Union[BankTransferMethod, PayPalMethod]:
    if isinstance(method, BaseModel):
        method = method.model_dump()
    if not isinstance(method, Mapping):
        raise InvalidMethodTypeError("Withdrawal method is required")
    if not method.get("type"):
        raise InvalidMethodTypeError("Withdrawal method type is required")

    try:
        method_type = WithdrawalMethodType(method["type"])
    except ValueError:
        raise InvalidMethodTypeError(f"Invalid withdrawal method: {method['type']!r}")

    if method_type == WithdrawalMethodType.BANK_TRANSFER:
        return _validate_bank_transfer(method)
    return _validate_paypal(method)


def mask_account_number(account_number: str) -> str:
    return "***" + account_number[-4:]


def select_earnings_for_withdrawal(
    earnings: Iterable[Earning],
    amount: int,
    now: datetime,
) -> list[Earning]:
    """Pick whole earnings whose net amounts add up to exactly ``amount``.

    Candidates are withdrawable earnings past their hold, oldest
    ``available_at`` first. Walking that order, an earning is taken whenever
    the rest of the amount can still be covered exactly by the earnings after
    it, so the oldest money always leaves first.
    """
    candidates = sorted(
        (
            e for e in earnings
            if e.is_withdrawable_status()
            and e.net_amount > 0
            and is_available_for_withdrawal(e.created_at, now)
        ),
        key=lambda e: (e.available_at, e.created_at, e.id),
    )

    if sum(e.net_amount for e in candidates) < amount:
        raise InsufficientBalanceError(f"Insufficient available balance for ¥{amount:,}")

    # latest[s] is the largest i such that some subset of candidates[i:] sums
    # to s, or -1. Suffix reachability only shrinks as i grows, so this one
    # array answers "is s reachable from candidates[i:]" for every i.
    count = len(candidates)
    latest = array("i", [-1]) * (amount + 1)
    latest[0] = count
    mask = (1 << (amount + 1)) - 1
    reachable = 1
    for i in range(count - 1, -1, -1):
        grown = (reachable | (reachable << candidates[i].net_amount)) & mask
        added = grown & ~reachable
        if not added:
            continue
        bits = bin(added)[:1:-1]
        s = bits.find("1")
        while s != -1:
            latest[s] = i
            s = bits.find("1", s + 1)
        reachable = grown

    if latest[amount] < 0:
        logger.info("No exact earnings combination for amount=%d across %d earnings", amount, count)
        raise InsufficientBalanceError(
            f"¥{amount:,} can't be paid out from whole earnings; please choose a different amount"
        )

    selected = []
    remaining = amount
    for i, earning in enumerate(candidates):
        if remaining == 0:
            break
        value = earning.net_amount
        if value <= remaining and latest[remaining - value] > i:
            selected.append(earning)
            remaining -= value
    return selected
