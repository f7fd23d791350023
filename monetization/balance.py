"""
Read-side aggregations over a creator's earnings.

All functions are pure: they take a snapshot of earnings plus the instant to
evaluate at, and never touch storage. Items may be ``Earning`` models or plain
mappings with ``net_amount``, ``created_at`` and a ``status`` (either the
ledger vocabulary or the upstream payment vocabulary ``completed``/``failed``/
``pending``).
"""

from collections.abc import Iterable, Mapping
from datetime import datetime, timedelta, timezone
from typing import Any, NamedTuple, Optional, Union

from .errors import InvalidInputError
from .hold_period import Instant, ensure_instant, is_available_for_withdrawal
from .models import (
    Earning,
    EarningStatus,
    EarningsBreakdown,
    EarningsStats,
    PaymentStatus,
    SourceType,
    TimelinePoint,
)

EarningLike = Union[Earning, Mapping[str, Any]]


class _Entry(NamedTuple):
    net_amount: int
    created_at: datetime
    payment_status: PaymentStatus
    status: EarningStatus
    source_type: Optional[SourceType]


def _entry(item: EarningLike) -> _Entry:
    if isinstance(item, Earning):
        return _Entry(
            item.net_amount,
            ensure_instant(item.created_at, "created_at"),
            item.payment_status,
            item.status,
            item.source_type,
        )

    net_amount = item.get("net_amount")
    if isinstance(net_amount, bool) or not isinstance(net_amount, int) or net_amount < 0:
        raise InvalidInputError(f"net_amount must be a non-negative whole number, got {net_amount!r}")

    raw_status = item.get("status")
    raw_payment = item.get("payment_status")
    if raw_payment is None:
        if raw_status in (EarningStatus.AVAILABLE.value, EarningStatus.WITHDRAWN.value):
            raw_payment = PaymentStatus.COMPLETED
        else:
            raw_payment, raw_status = raw_status or PaymentStatus.COMPLETED, EarningStatus.PENDING
    source = item.get("source_type")
    return _Entry(
        net_amount,
        ensure_instant(item.get("created_at"), "created_at"),
        _member(PaymentStatus, raw_payment, "payment_status"),
        _member(EarningStatus, raw_status or EarningStatus.PENDING, "status"),
        _member(SourceType, source, "source_type") if source else None,
    )


def _member(enum_cls, value, field: str):
    try:
        return enum_cls(value)
    except ValueError:
        raise InvalidInputError(f"Unknown {field}: {value!r}")


def _held_entries(earnings: Iterable[EarningLike]):
    for item in earnings:
        entry = _entry(item)
        if entry.payment_status == PaymentStatus.COMPLETED and entry.status != EarningStatus.WITHDRAWN:
            yield entry


def get_available_balance(earnings: Iterable[EarningLike], now: Instant) -> int:
    current = ensure_instant(now, "now")
    return sum(
        e.net_amount for e in _held_entries(earnings)
        if is_available_for_withdrawal(e.created_at, current)
    )


def get_pending_balance(earnings: Iterable[EarningLike], now: Instant) -> int:
    current = ensure_instant(now, "now")
    return sum(
        e.net_amount for e in _held_entries(earnings)
        if not is_available_for_withdrawal(e.created_at, current)
    )


def start_of_month(now: datetime) -> datetime:
    utc = now.astimezone(timezone.utc)
    return utc.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def compute_stats(earnings: Iterable[EarningLike], now: Instant) -> EarningsStats:
    current = ensure_instant(now, "now")
    entries = [_entry(item) for item in earnings]
    month_start = start_of_month(current)

    available = pending = this_month = withdrawn = 0
    breakdown = EarningsBreakdown()

    for e in entries:
        if e.status == EarningStatus.WITHDRAWN:
            withdrawn += e.net_amount
        if e.payment_status != PaymentStatus.COMPLETED:
            continue

        if e.status != EarningStatus.WITHDRAWN:
            if is_available_for_withdrawal(e.created_at, current):
                available += e.net_amount
            else:
                pending += e.net_amount

        if e.created_at >= month_start:
            this_month += e.net_amount

        if e.source_type == SourceType.TIP:
            breakdown.tips += e.net_amount
        elif e.source_type == SourceType.SUPERCHAT:
            breakdown.superchat += e.net_amount
        elif e.source_type == SourceType.SUBSCRIPTION_POOL:
            breakdown.subscription_pool += e.net_amount

    return EarningsStats(
        available_balance=available,
        pending_balance=pending,
        this_month_earnings=this_month,
        total_withdrawn=withdrawn,
        breakdown=breakdown,
        as_of=current,
    )


def compute_timeline(earnings: Iterable[EarningLike], now: Instant, days: int = 30) -> list[TimelinePoint]:
    """Daily net totals (UTC days) for the ``days`` days ending on ``now``'s date."""
    if days < 1:
        raise InvalidInputError("days must be at least 1")

    last_day = ensure_instant(now, "now").astimezone(timezone.utc).date()
    first_day = last_day - timedelta(days=days - 1)
    totals = {first_day + timedelta(days=i): 0 for i in range(days)}

    for e in earnings:
        entry = _entry(e)
        if entry.payment_status != PaymentStatus.COMPLETED:
            continue
        day = entry.created_at.astimezone(timezone.utc).date()
        if day in totals:
            totals[day] += entry.net_amount

    return [TimelinePoint(day=day, amount=amount) for day, amount in totals.items()]
