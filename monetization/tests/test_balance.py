"""
Unit Tests for Balance Aggregation

Tests cover:
1. Available balance from earnings past the hold period
2. Pending balance from earnings inside the hold period
3. Exclusion of failed / unsettled payments and withdrawn earnings
4. Monthly, withdrawn and per-source stats
5. Daily timeline
"""

import pytest
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from monetization.balance import (
    compute_stats,
    compute_timeline,
    get_available_balance,
    get_pending_balance,
)
from monetization.errors import InvalidInputError
from monetization.hold_period import calculate_available_date
from monetization.models import Earning, EarningStatus, PaymentStatus, SourceType


CREATOR_ID = "creator-550e8400"
NOW = datetime(2025, 10, 26, 10, 0, tzinfo=timezone.utc)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def make_earning(
    net: int,
    created_at: datetime,
    status: EarningStatus = EarningStatus.PENDING,
    payment_status: PaymentStatus = PaymentStatus.COMPLETED,
    source_type: SourceType = SourceType.TIP,
) -> Earning:
    return Earning(
        id=f"ern_{uuid4().hex}",
        user_id=CREATOR_ID,
        source_type=source_type,
        gross_amount=net,
        platform_fee=0,
        net_amount=net,
        payment_status=payment_status,
        status=status,
        created_at=created_at,
        available_at=calculate_available_date(created_at),
    )


class TestAvailableBalance:
    """Tests for get_available_balance."""

    def test_available_from_eligible_earnings(self):
        """Test 15- and 16-day-old earnings count, a 6-day-old one does not."""
        earnings = [
            {"net_amount": 700, "created_at": utc(2025, 10, 11, 10), "status": "completed"},
            {"net_amount": 500, "created_at": utc(2025, 10, 20, 10), "status": "completed"},
            {"net_amount": 350, "created_at": utc(2025, 10, 10, 10), "status": "completed"},
        ]

        assert get_available_balance(earnings, NOW) == 1050
        assert get_pending_balance(earnings, NOW) == 500

    def test_all_in_hold_period(self):
        earnings = [
            make_earning(1000, utc(2025, 10, 25, 10)),
            make_earning(2000, utc(2025, 10, 24, 10)),
        ]
        assert get_available_balance(earnings, NOW) == 0

    def test_empty_earnings(self):
        assert get_available_balance([], NOW) == 0
        assert get_pending_balance([], NOW) == 0

    def test_excludes_non_completed_payments(self):
        """Test pending and failed upstream payments are excluded entirely."""
        earnings = [
            {"net_amount": 700, "created_at": utc(2025, 10, 11, 10), "status": "pending"},
            {"net_amount": 500, "created_at": utc(2025, 10, 11, 10), "status": "failed"},
            {"net_amount": 350, "created_at": utc(2025, 10, 11, 10), "status": "completed"},
        ]

        assert get_available_balance(earnings, NOW) == 350
        assert get_pending_balance(earnings, NOW) == 0

    @pytest.mark.parametrize("overrides", [
        {"status": "settled"},
        {"payment_status": "chargeback"},
        {"source_type": "donation"},
        {"net_amount": 700.9},
        {"net_amount": "700"},
        {"net_amount": -700},
        {"net_amount": None},
    ])
    def test_malformed_mapping_rejected(self, overrides):
        """Test unknown vocabulary and non-integer amounts raise InvalidInputError."""
        item = {"net_amount": 700, "created_at": utc(2025, 10, 11, 10), "status": "completed", **overrides}

        with pytest.raises(InvalidInputError):
            get_available_balance([item], NOW)

    def test_mixed_across_boundary(self):
        """Test earnings either side of the exact 14-day boundary."""
        earnings = [
            make_earning(1000, utc(2025, 10, 12, 9)),
            make_earning(2000, utc(2025, 10, 12, 11)),
            make_earning(3000, utc(2025, 10, 1, 10)),
        ]
        assert get_available_balance(earnings, NOW) == 4000
        assert get_pending_balance(earnings, NOW) == 2000

    def test_withdrawn_earnings_excluded(self):
        earnings = [
            make_earning(5000, utc(2025, 10, 1), status=EarningStatus.WITHDRAWN),
            make_earning(1500, utc(2025, 10, 1)),
        ]
        assert get_available_balance(earnings, NOW) == 1500

    def test_large_balances_do_not_wrap(self):
        """Test totals beyond 64-bit range stay exact."""
        big = 2 ** 62
        earnings = [make_earning(big, utc(2025, 10, 1)), make_earning(big, utc(2025, 10, 2))]
        assert get_available_balance(earnings, NOW) == 2 ** 63


class TestPendingBalance:
    """Tests for get_pending_balance."""

    def test_pending_from_held_earnings(self):
        earnings = [
            make_earning(700, utc(2025, 10, 20, 10)),
            make_earning(500, utc(2025, 10, 22, 10)),
            make_earning(350, utc(2025, 10, 11, 10)),
        ]
        assert get_pending_balance(earnings, NOW) == 1200

    def test_future_dated_earning_is_pending(self):
        earnings = [make_earning(800, utc(2025, 10, 30))]
        assert get_pending_balance(earnings, NOW) == 800
        assert get_available_balance(earnings, NOW) == 0

    def test_available_plus_pending_equals_completed_total(self):
        """Test the two balances partition completed, unwithdrawn earnings."""
        earnings = [
            make_earning(100 * i, NOW - timedelta(days=i, hours=i))
            for i in range(1, 30)
        ]
        earnings.append(make_earning(999, utc(2025, 10, 1), payment_status=PaymentStatus.FAILED))
        completed_total = sum(e.net_amount for e in earnings if e.payment_status == PaymentStatus.COMPLETED)

        for offset in range(0, 40, 3):
            now = NOW + timedelta(days=offset)
            assert get_available_balance(earnings, now) + get_pending_balance(earnings, now) == completed_total


class TestStats:
    """Tests for compute_stats."""

    def test_full_stats(self):
        earnings = [
            make_earning(700, utc(2025, 10, 1, 10), source_type=SourceType.TIP),
            make_earning(500, utc(2025, 10, 20, 10), source_type=SourceType.SUPERCHAT),
            make_earning(2000, utc(2025, 9, 20, 10), source_type=SourceType.SUBSCRIPTION_POOL),
            make_earning(3000, utc(2025, 9, 1, 10), status=EarningStatus.WITHDRAWN),
            make_earning(400, utc(2025, 10, 21, 10), payment_status=PaymentStatus.FAILED),
        ]

        stats = compute_stats(earnings, NOW)

        assert stats.available_balance == 2700
        assert stats.pending_balance == 500
        assert stats.this_month_earnings == 1200
        assert stats.total_withdrawn == 3000
        assert stats.breakdown.tips == 3700
        assert stats.breakdown.superchat == 500
        assert stats.breakdown.subscription_pool == 2000
        assert stats.as_of == NOW

    def test_empty_stats_are_zero(self):
        stats = compute_stats([], NOW)

        assert stats.available_balance == 0
        assert stats.pending_balance == 0
        assert stats.this_month_earnings == 0
        assert stats.total_withdrawn == 0
        assert stats.breakdown.tips == 0

    def test_month_starts_at_first_day_midnight_utc(self):
        earnings = [
            make_earning(100, utc(2025, 10, 1, 0, 0)),
            make_earning(200, utc(2025, 9, 30, 23, 59, 59)),
        ]
        assert compute_stats(earnings, NOW).this_month_earnings == 100

    def test_stats_are_idempotent(self):
        earnings = [make_earning(700, utc(2025, 10, 1)), make_earning(500, utc(2025, 10, 20))]
        assert compute_stats(earnings, NOW) == compute_stats(earnings, NOW)

    def test_json_serializable(self):
        stats = compute_stats([make_earning(700, utc(2025, 10, 1))], NOW)
        payload = stats.model_dump(mode="json")

        assert payload["available_balance"] == 700
        assert payload["as_of"].startswith("2025-10-26T10:00:00")


class TestTimeline:
    """Tests for compute_timeline."""

    def test_daily_totals_zero_filled(self):
        earnings = [
            make_earning(100, utc(2025, 10, 26, 1)),
            make_earning(250, utc(2025, 10, 26, 9)),
            make_earning(300, utc(2025, 10, 24, 12)),
            make_earning(999, utc(2025, 9, 1)),
        ]

        timeline = compute_timeline(earnings, NOW, days=3)

        assert [p.day.isoformat() for p in timeline] == ["2025-10-24", "2025-10-25", "2025-10-26"]
        assert [p.amount for p in timeline] == [300, 0, 350]

    def test_invalid_days(self):
        with pytest.raises(InvalidInputError):
            compute_timeline([], NOW, days=0)
