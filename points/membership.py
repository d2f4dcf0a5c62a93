from decimal import Decimal
from typing import Callable, Optional

from loguru import logger

from .config import Settings, settings
from .errors import NotFoundError, ValidationError
from .models import FeeStatus, FeeType, MembershipFee, ReferralActivation
from .otp import utcnow
from .referrals import ReferralService
from .storage import InMemoryStorage
from .wallet import USERS

MEMBERSHIP_FEES = "membership_fees"


class MembershipService:
    def __init__(
        self,
        storage: Optional[InMemoryStorage] = None,
        config: Optional[Settings] = None,
        referrals: Optional[ReferralService] = None,
        clock: Callable = utcnow,
    ):
        self.storage = storage or InMemoryStorage()
        self.config = config or settings
        self.referrals = referrals or ReferralService(self.storage, self.config)
        self.clock = clock

    def next_txn_id(self) -> str:
        return f"TXN-{self.storage.next_sequence('txn_id'):06d}"

    def record_fee(
        self,
        member_id: str,
        amount: Decimal,
        fee_type: FeeType = FeeType.JOINING,
        payment_mode: str = "online",
        payment_ref: Optional[str] = None,
        status: FeeStatus = FeeStatus.PENDING,
        notes: Optional[str] = None,
        verified_by: Optional[str] = None,
    ) -> MembershipFee:
        if amount is None or amount <= 0:
            raise ValidationError("Valid fee amount required")

        with self.storage.transaction():
            user = self.storage.find_one(USERS, {"member_id": member_id})
            if not user:
                raise NotFoundError(f"Member {member_id} not found")

            verified = status == FeeStatus.VERIFIED
            data = self.storage.insert(MEMBERSHIP_FEES, {
                "txn_id": self.next_txn_id(),
                "member_id": member_id,
                "user_id": user["id"],
                "member_name": user["name"],
                "amount": amount,
                "fee_type": fee_type,
                "payment_mode": payment_mode,
                "payment_ref": payment_ref,
                "status": status,
                "verified_by": verified_by if verified else None,
                "verified_at": self.clock() if verified else None,
                "notes": notes,
            })
            fee = MembershipFee(**data)
            if verified:
                self._on_verified(fee)

        logger.info(f"Membership fee {fee.txn_id} recorded for {member_id}: ₹{amount} ({status.value})")
        return fee

    def update_status(self, txn_id: str, status: FeeStatus, verified_by: Optional[str] = None) -> MembershipFee:
        with self.storage.transaction():
            existing = self.storage.find_one(MEMBERSHIP_FEES, {"txn_id": txn_id})
            if not existing:
                raise NotFoundError(f"Transaction {txn_id} not found")

            changes: dict = {"status": status}
            if status == FeeStatus.VERIFIED:
                changes.update(verified_by=verified_by, verified_at=self.clock())
            fee = MembershipFee(**self.storage.find_one_and_update(
                MEMBERSHIP_FEES, {"id": existing["id"]}, set=changes
            ))

            if status == FeeStatus.VERIFIED and existing["status"] != FeeStatus.VERIFIED:
                self._on_verified(fee)
            elif status in (FeeStatus.REJECTED, FeeStatus.REFUNDED) and fee.fee_type == FeeType.JOINING:
                self.storage.update_one(USERS, {"id": fee.user_id}, set={"membership_active": False})

        logger.info(f"Membership fee {txn_id} -> {status.value}")
        return fee

    def _on_verified(self, fee: MembershipFee) -> ReferralActivation:
        self.storage.update_one(USERS, {"id": fee.user_id}, set={"membership_active": True})
        return self.referrals.activate_inline(fee.user_id, fee.amount)

    def list_fees(self, member_id: Optional[str] = None) -> list[MembershipFee]:
        query = {"member_id": member_id} if member_id else {}
        return [MembershipFee(**d) for d in self.storage.find(MEMBERSHIP_FEES, query, sort=[("created_at", -1)])]
