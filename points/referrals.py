"""
Referral tracking and activation.

A referral is created ``pending`` when a new member joins with a referral
code and becomes ``active`` once, on the referred member's first qualifying
payment. The referrer is credited only when that pending -> active update
actually matched a document, so repeated activations never double-credit.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID

from loguru import logger

from .config import Settings, settings
from .errors import (
    InvalidStateTransitionError,
    NoReferralError,
    NotFoundError,
    ValidationError,
)
from .models import (
    ZERO,
    PointsSource,
    Referral,
    ReferralActivation,
    ReferralStats,
    ReferralStatus,
)
from .storage import InMemoryStorage
from .wallet import USERS, WalletService, reward_points

REFERRALS = "referrals"


class ReferralService:
    def __init__(
        self,
        storage: Optional[InMemoryStorage] = None,
        config: Optional[Settings] = None,
        wallet: Optional[WalletService] = None,
    ):
        self.storage = storage or InMemoryStorage()
        self.config = config or settings
        self.wallet = wallet or WalletService(self.storage, self.config)

    def register_referral(self, referral_code: Optional[str], new_user_id: Optional[UUID]) -> Referral:
        if not referral_code or not new_user_id:
            raise ValidationError("referralCode & newUserId required")

        referrer = self.storage.find_one(USERS, {"referral_code": referral_code})
        if not referrer:
            raise NotFoundError("Invalid referral code")
        if referrer["id"] == new_user_id:
            raise ValidationError("Members cannot refer themselves")

        with self.storage.transaction():
            referred = self.storage.find_one_and_update(
                USERS, {"id": new_user_id, "referred_by": None}, set={"referred_by": referrer["id"]}
            )
            if referred is None:
                self.wallet.get_user(new_user_id)
                raise ValidationError("Member was already referred")
            data = self.storage.insert(REFERRALS, {
                "referrer_id": referrer["id"],
                "referred_user_id": new_user_id,
                "payment_amount": ZERO,
                "referral_points": ZERO,
                "status": ReferralStatus.PENDING,
                "activated_at": None,
            })

        logger.info(f"Pending referral: {referrer['member_id']} -> {referred['member_id']}")
        return Referral(**data)

    def activate(self, referred_member_id: str, payment_amount: Optional[Decimal]) -> ReferralActivation:
        """Admin-confirmed payment by a referred member."""
        if not payment_amount:
            payment_amount = self.config.membership_fee
        if payment_amount < 0:
            raise ValidationError("Valid payment amount required")

        referred = self.storage.find_one(USERS, {"member_id": referred_member_id})
        if not referred or not referred.get("referred_by"):
            raise NoReferralError()
        return self._activate(referred, payment_amount)

    def activate_inline(self, referred_user_id: UUID, payment_amount: Decimal) -> ReferralActivation:
        """Activation triggered by a verified payment; silently skips members nobody referred."""
        referred = self.storage.find_one(USERS, {"id": referred_user_id})
        if not referred or not referred.get("referred_by") or payment_amount <= 0:
            return ReferralActivation(activated=False)
        return self._activate(referred, payment_amount)

    def _activate(self, referred: dict, payment_amount: Decimal) -> ReferralActivation:
        referrer_id = referred["referred_by"]
        _, points = reward_points(
            payment_amount, self.config.referral_points_percent, self.config.point_value
        )

        with self.storage.transaction():
            referral = self.storage.find_one_and_update(
                REFERRALS,
                {
                    "referrer_id": referrer_id,
                    "referred_user_id": referred["id"],
                    "status": ReferralStatus.PENDING,
                },
                set={
                    "status": ReferralStatus.ACTIVE,
                    "payment_amount": payment_amount,
                    "referral_points": points,
                    "activated_at": datetime.now(timezone.utc),
                },
            )
            if referral is None:
                logger.warning(
                    f"Referral for {referred['member_id']} is not pending; no points credited"
                )
                return ReferralActivation(activated=False)

            self.wallet.credit(
                referrer_id,
                points,
                PointsSource.REFERRALS,
                f"Referral activated: {referred['member_id']} paid ₹{payment_amount} → {points} points",
                reference_id=referral["id"],
            )
            self.storage.update_one(USERS, {"id": referred["id"]}, set={"membership_active": True})

        logger.info(f"Referral activated for {referred['member_id']}: {points} points to referrer")
        return ReferralActivation(activated=True, points=points, referral=Referral(**referral))

    def expire(self, referral_id: UUID) -> Referral:
        data = self.storage.find_one(REFERRALS, {"id": referral_id})
        if not data:
            raise NotFoundError(f"Referral {referral_id} not found")
        if not Referral(**data).can_expire():
            raise InvalidStateTransitionError(f"Cannot expire referral in {data['status'].value} state")

        updated = self.storage.find_one_and_update(
            REFERRALS,
            {"id": referral_id, "status": ReferralStatus.PENDING},
            set={"status": ReferralStatus.EXPIRED},
        )
        if updated is None:
            raise InvalidStateTransitionError("Referral is no longer pending")
        logger.info(f"Referral {referral_id} expired")
        return Referral(**updated)

    def get_referral(self, referrer_id: UUID, referred_user_id: UUID) -> Optional[Referral]:
        data = self.storage.find_one(
            REFERRALS, {"referrer_id": referrer_id, "referred_user_id": referred_user_id}
        )
        return Referral(**data) if data else None

    def list_referrals(self, referrer_id: UUID) -> list[Referral]:
        docs = self.storage.find(REFERRALS, {"referrer_id": referrer_id}, sort=[("created_at", -1)])
        return [Referral(**d) for d in docs]

    def stats(self, referrer_id: UUID) -> ReferralStats:
        referrals = self.list_referrals(referrer_id)
        return ReferralStats(
            total=len(referrals),
            active=sum(1 for r in referrals if r.status == ReferralStatus.ACTIVE),
            pending=sum(1 for r in referrals if r.status == ReferralStatus.PENDING),
            total_points=sum((r.referral_points for r in referrals), ZERO),
        )
