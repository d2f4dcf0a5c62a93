"""
Unit Tests for the Wallet Service

Tests cover:
1. Point conversion law
2. Credits keep wallet counters and ledger in step
3. Wallet consistency under mixed operations
4. Applying cash balance and redeeming points
5. Rollback of failed transactions
"""

import random
from decimal import Decimal
from uuid import UUID

import pytest

from points.errors import InsufficientBalanceError, NotFoundError, ValidationError
from points.models import LedgerEntryType, PointsSource
from points.wallet import POINTS_LEDGER, USERS, reward_points


UNKNOWN_ID = UUID("00000000-0000-0000-0000-000000000000")


class TestPointConversion:
    """Tests for rupee-to-point conversion."""

    @pytest.mark.parametrize("amount,percent,expected", [
        (Decimal("1000"), Decimal("10"), Decimal("10")),
        (Decimal("500"), Decimal("50"), Decimal("25")),
        (Decimal("100"), Decimal("10"), Decimal("1")),
        (Decimal("49999"), Decimal("10"), Decimal("499.99")),
        (Decimal("1"), Decimal("10"), Decimal("0.01")),
    ])
    def test_points_formula(self, amount, percent, expected):
        """points = amount * percent / 100 / point value, kept exact."""
        rupees, points = reward_points(amount, percent, Decimal("10"))

        assert rupees == amount * percent / 100
        assert points == expected

    def test_fractional_points_are_exact(self):
        """Decimal keeps fractions that floats would round."""
        _, points = reward_points(Decimal("333"), Decimal("10"), Decimal("10"))
        assert points == Decimal("3.33")


class TestCredit:
    """Tests for wallet credits."""

    def test_credit_updates_counters_and_ledger(self, services, make_member):
        member = make_member()

        entry = services.wallet.credit(
            member.id, Decimal("10"), PointsSource.DONATIONS, "test credit"
        )

        wallet = services.wallet.get_wallet(member.id)
        assert wallet.points_balance == Decimal("10")
        assert wallet.points_from_donations == Decimal("10")
        assert wallet.total_points_earned == Decimal("10")
        assert wallet.balance_inr == Decimal("0")
        assert entry.type == LedgerEntryType.DONATION
        assert entry.points == Decimal("10")

    def test_credit_with_cash(self, services, make_member):
        member = make_member()

        services.wallet.credit(
            member.id, Decimal("5"), PointsSource.DONATIONS, "cash", balance_inr=Decimal("50")
        )

        wallet = services.wallet.get_wallet(member.id)
        assert wallet.balance_inr == Decimal("50")
        assert wallet.lifetime_earned_inr == Decimal("50")

    def test_credit_unknown_member(self, services):
        with pytest.raises(NotFoundError):
            services.wallet.credit(UNKNOWN_ID, Decimal("1"), PointsSource.QUIZ, "nobody")

        assert services.storage.count(POINTS_LEDGER) == 0

    def test_failed_ledger_write_rolls_back_wallet(self, services, make_member, monkeypatch):
        """Wallet and ledger change together or not at all."""
        member = make_member()

        def broken(*args, **kwargs):
            raise RuntimeError("ledger unavailable")

        monkeypatch.setattr(services.wallet, "append_ledger_entry", broken)
        with pytest.raises(RuntimeError):
            services.wallet.credit(member.id, Decimal("10"), PointsSource.QUIZ, "lost")

        wallet = services.wallet.get_wallet(member.id)
        assert wallet.points_balance == Decimal("0")
        assert wallet.total_points_earned == Decimal("0")


class TestWalletConsistency:
    """The wallet aggregate always equals the fold of the ledger."""

    def test_random_interleavings_stay_consistent(self, services, make_member):
        members = [make_member() for _ in range(3)]
        rng = random.Random(42)
        sources = list(PointsSource)

        for _ in range(200):
            member = rng.choice(members)
            if rng.random() < 0.8:
                points = Decimal(rng.randint(1, 5000)) / 100
                services.wallet.credit(member.id, points, rng.choice(sources), "random credit")
            else:
                balance = services.wallet.get_wallet(member.id).points_balance
                if balance > 0:
                    services.wallet.redeem_points(member.id, min(balance, Decimal("7.5")))

        for member in members:
            report = services.wallet.reconcile(member.id)
            wallet = report.wallet
            assert report.consistent
            assert wallet.total_points_earned == wallet.source_sum()
            assert wallet.points_balance == wallet.total_points_earned - report.redeemed
            assert wallet.points_balance >= 0

    def test_reconcile_detects_drift(self, services, make_member):
        member = make_member()
        services.wallet.credit(member.id, Decimal("10"), PointsSource.QUIZ, "ticket")

        services.storage.update_one(USERS, {"id": member.id}, inc={"wallet.points_balance": Decimal("3")})

        report = services.wallet.reconcile(member.id)
        assert not report.consistent
        assert not report.balance_matches
        assert report.ledger_matches


class TestApplyAndRedeem:
    """Tests for spending wallet cash and points."""

    def test_apply_wallet_caps_at_balance(self, services, make_member):
        member = make_member()
        services.wallet.credit_wallet(member.id, balance_inr=Decimal("300"))

        applied = services.wallet.apply_wallet(member.id, Decimal("500"))

        wallet = services.wallet.get_wallet(member.id)
        assert applied == Decimal("300")
        assert wallet.balance_inr == Decimal("0")
        assert wallet.lifetime_applied_inr == Decimal("300")

    def test_apply_wallet_without_balance(self, services, make_member):
        member = make_member()

        with pytest.raises(InsufficientBalanceError):
            services.wallet.apply_wallet(member.id, Decimal("100"))

    def test_apply_wallet_rejects_non_positive(self, services, make_member):
        member = make_member()

        with pytest.raises(ValidationError):
            services.wallet.apply_wallet(member.id, Decimal("0"))

    def test_redeem_writes_negative_entry(self, services, make_member):
        member = make_member()
        services.wallet.credit(member.id, Decimal("20"), PointsSource.SOCIAL_TASKS, "task")

        entry = services.wallet.redeem_points(member.id, Decimal("15"))

        wallet = services.wallet.get_wallet(member.id)
        assert entry.points == Decimal("-15")
        assert entry.type == LedgerEntryType.REDEEM
        assert wallet.points_balance == Decimal("5")
        assert wallet.total_points_earned == Decimal("20")

    def test_redeem_more_than_balance(self, services, make_member):
        member = make_member()
        services.wallet.credit(member.id, Decimal("5"), PointsSource.QUIZ, "ticket")

        with pytest.raises(InsufficientBalanceError):
            services.wallet.redeem_points(member.id, Decimal("6"))

        assert services.wallet.get_wallet(member.id).points_balance == Decimal("5")

    def test_points_history_newest_first(self, services, make_member):
        member = make_member()
        for i in range(1, 4):
            services.wallet.credit(member.id, Decimal(i), PointsSource.QUIZ, f"credit {i}")

        history = services.wallet.points_history(member.id)

        assert [e.description for e in history] == ["credit 3", "credit 2", "credit 1"]
