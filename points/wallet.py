"""
Points ledger and wallet aggregate.

The wallet lives embedded on the user document and is changed only through
additive increments. Every point-affecting event also appends an immutable
ledger entry; ``credit`` performs both writes in one storage transaction so
the aggregate and its audit trail cannot drift apart.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID

from loguru import logger

from .config import Settings, settings
from .errors import InsufficientBalanceError, NotFoundError, ValidationError
from .models import (
    ZERO,
    LedgerEntry,
    LedgerEntryType,
    PointsSource,
    User,
    Wallet,
    WalletReconciliation,
)
from .storage import InMemoryStorage

USERS = "users"
POINTS_LEDGER = "points_ledger"

SOURCE_ENTRY_TYPES = {
    PointsSource.DONATIONS: LedgerEntryType.DONATION,
    PointsSource.REFERRALS: LedgerEntryType.REFERRAL,
    PointsSource.QUIZ: LedgerEntryType.QUIZ,
    PointsSource.SOCIAL_TASKS: LedgerEntryType.SOCIAL_TASK,
}

EARNING_TYPES = (
    LedgerEntryType.DONATION,
    LedgerEntryType.REFERRAL,
    LedgerEntryType.QUIZ,
    LedgerEntryType.SOCIAL_TASK,
    LedgerEntryType.SUPPORTER,
)


def reward_points(amount: Decimal, percent: Decimal, point_value: Decimal) -> tuple[Decimal, Decimal]:
    """Return ``(reward_rupees, points)`` for ``percent`` of ``amount``."""
    rupees = amount * percent / Decimal(100)
    return rupees, rupees / point_value


class WalletService:
    def __init__(self, storage: Optional[InMemoryStorage] = None, config: Optional[Settings] = None):
        self.storage = storage or InMemoryStorage()
        self.config = config or settings

    def get_user(self, user_id: UUID) -> User:
        data = self.storage.find_one(USERS, {"id": user_id})
        if not data:
            raise NotFoundError(f"Member {user_id} not found")
        return User(**data)

    def get_wallet(self, user_id: UUID) -> Wallet:
        return self.get_user(user_id).wallet

    def append_ledger_entry(
        self,
        user_id: UUID,
        points: Decimal,
        entry_type: LedgerEntryType,
        description: str,
        reference_id: Optional[UUID] = None,
    ) -> LedgerEntry:
        if self.storage.count(USERS, {"id": user_id}) == 0:
            raise NotFoundError(f"Member {user_id} not found")
        data = self.storage.insert(POINTS_LEDGER, {
            "user_id": user_id,
            "points": points,
            "type": entry_type,
            "description": description,
            "reference_id": reference_id,
        })
        return LedgerEntry(**data)

    def credit_wallet(
        self,
        user_id: UUID,
        points: Decimal = ZERO,
        balance_inr: Decimal = ZERO,
        source: Optional[PointsSource] = None,
    ) -> Wallet:
        inc: dict[str, Decimal] = {}
        if points:
            inc["wallet.points_balance"] = points
            inc["wallet.total_points_earned"] = points
            if source is not None:
                inc[f"wallet.{source.value}"] = points
        if balance_inr:
            inc["wallet.balance_inr"] = balance_inr
            inc["wallet.lifetime_earned_inr"] = balance_inr

        data = self.storage.find_one_and_update(
            USERS,
            {"id": user_id},
            set={"wallet.updated_at": datetime.now(timezone.utc)},
            inc=inc,
        )
        if data is None:
            raise NotFoundError(f"Member {user_id} not found")
        return Wallet(**data["wallet"])

    def credit(
        self,
        user_id: UUID,
        points: Decimal,
        source: PointsSource,
        description: str,
        reference_id: Optional[UUID] = None,
        balance_inr: Decimal = ZERO,
    ) -> LedgerEntry:
        with self.storage.transaction():
            self.credit_wallet(user_id, points=points, balance_inr=balance_inr, source=source)
            entry = self.append_ledger_entry(
                user_id, points, SOURCE_ENTRY_TYPES[source], description, reference_id
            )
        logger.info(f"Credited {points} points ({source.value}) to member {user_id}")
        return entry

    def apply_wallet(self, user_id: UUID, amount: Decimal) -> Decimal:
        """Move cash balance onto the member's project; returns the amount applied."""
        if amount is None or amount <= 0:
            raise ValidationError("Invalid amount")

        with self.storage.transaction():
            wallet = self.get_wallet(user_id)
            if wallet.balance_inr <= 0:
                raise InsufficientBalanceError("No wallet balance")
            applied = min(amount, wallet.balance_inr)
            matched = self.storage.update_one(
                USERS,
                {"id": user_id, "wallet.balance_inr": {"$gte": applied}},
                set={"wallet.updated_at": datetime.now(timezone.utc)},
                inc={"wallet.balance_inr": -applied, "wallet.lifetime_applied_inr": applied},
            )
            if not matched:
                raise InsufficientBalanceError("No wallet balance")

        logger.info(f"Applied ₹{applied} from wallet of member {user_id}")
        return applied

    def redeem_points(self, user_id: UUID, points: Decimal, description: str = "Points redeemed") -> LedgerEntry:
        if points is None or points <= 0:
            raise ValidationError("Points to redeem must be positive")

        with self.storage.transaction():
            matched = self.storage.update_one(
                USERS,
                {"id": user_id, "wallet.points_balance": {"$gte": points}},
                set={"wallet.updated_at": datetime.now(timezone.utc)},
                inc={"wallet.points_balance": -points},
            )
            if not matched:
                self.get_user(user_id)
                raise InsufficientBalanceError("Insufficient points balance")
            entry = self.append_ledger_entry(user_id, -points, LedgerEntryType.REDEEM, description)

        logger.info(f"Member {user_id} redeemed {points} points")
        return entry

    def points_history(self, user_id: UUID, limit: int = 50) -> list[LedgerEntry]:
        entries = self.storage.find(
            POINTS_LEDGER, {"user_id": user_id}, sort=[("created_at", -1)], limit=limit
        )
        return [LedgerEntry(**e) for e in entries]

    def reconcile(self, user_id: UUID) -> WalletReconciliation:
        """Fold the ledger for a member and compare it with the wallet aggregate."""
        wallet = self.get_wallet(user_id)
        totals = {entry_type: ZERO for entry_type in LedgerEntryType}
        for entry in self.storage.find(POINTS_LEDGER, {"user_id": user_id}):
            totals[LedgerEntryType(entry["type"])] += entry["points"]

        earned = sum((totals[t] for t in EARNING_TYPES), ZERO)
        redeemed = -totals[LedgerEntryType.REDEEM]
        report = WalletReconciliation(
            user_id=user_id,
            wallet=wallet,
            ledger_totals=totals,
            ledger_earned=earned,
            redeemed=redeemed,
            source_sum_matches=wallet.total_points_earned == wallet.source_sum(),
            balance_matches=wallet.points_balance == wallet.total_points_earned - redeemed,
            ledger_matches=earned == wallet.total_points_earned,
        )
        if not report.consistent:
            logger.warning(f"Wallet drift detected for member {user_id}: {report.model_dump()}")
        return report
