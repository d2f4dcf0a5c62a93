"""
Donation recorder.

Turns a donation into a Donation record and, when a member is linked, into
wallet cash, points and a ``donation`` ledger entry. Donations at or above
the KYC threshold must carry a token from the OTP gate.
"""

import hashlib
import hmac
from decimal import Decimal
from typing import Optional
from uuid import UUID

from loguru import logger

from .config import Settings, settings
from .errors import NotFoundError, PaymentVerificationError, ValidationError
from .models import (
    ZERO,
    Donation,
    DonationSource,
    KycStatus,
    PayDonationRequest,
    PayDonationResponse,
    PointsSource,
)
from .notifications import Notifier
from .otp import DonationOtpGate
from .storage import InMemoryStorage
from .wallet import USERS, WalletService, reward_points

DONATIONS = "donations"


def verify_payment_signature(order_id: str, payment_id: str, signature: str, secret: str) -> bool:
    expected = hmac.new(
        secret.encode(), f"{order_id}|{payment_id}".encode(), hashlib.sha256
    ).hexdigest()
    return hmac.compare_digest(expected, signature)


class DonationRecorder:
    def __init__(
        self,
        storage: Optional[InMemoryStorage] = None,
        config: Optional[Settings] = None,
        wallet: Optional[WalletService] = None,
        otp_gate: Optional[DonationOtpGate] = None,
        notifier: Optional[Notifier] = None,
    ):
        self.storage = storage or InMemoryStorage()
        self.config = config or settings
        self.wallet = wallet or WalletService(self.storage, self.config)
        self.notifier = notifier or Notifier()
        self.otp_gate = otp_gate or DonationOtpGate(self.storage, self.config, self.notifier)

    def next_donation_id(self) -> str:
        return f"DON-{self.storage.next_sequence('donation_id'):06d}"

    def record(
        self,
        amount: Optional[Decimal],
        donor_name: Optional[str] = None,
        donor_email: Optional[str] = None,
        donor_mobile: Optional[str] = None,
        donor_pan: Optional[str] = None,
        donor_address: Optional[str] = None,
        user_id: Optional[UUID] = None,
        source: DonationSource = DonationSource.RAZORPAY,
        payment_id: Optional[str] = None,
        order_id: Optional[str] = None,
        verified_token: Optional[str] = None,
    ) -> Donation:
        if amount is None or amount <= 0:
            raise ValidationError("Valid donation amount required")

        kyc_required = amount >= self.config.high_value_donation_threshold
        points_rupees, points = reward_points(
            amount, self.config.donation_points_percent, self.config.point_value
        )

        with self.storage.transaction():
            if kyc_required:
                self.otp_gate.consume_token(verified_token)
            member = self.wallet.get_user(user_id) if user_id else None

            data = self.storage.insert(DONATIONS, {
                "donation_id": self.next_donation_id(),
                "member_id": member.id if member else None,
                "amount": amount,
                "points_earned": points if member else ZERO,
                "donor_name": donor_name or "Anonymous",
                "donor_email": donor_email,
                "donor_mobile": donor_mobile,
                "donor_pan": donor_pan,
                "donor_address": donor_address,
                "source": source,
                "payment_id": payment_id,
                "order_id": order_id,
                "kyc_required": kyc_required,
                "otp_verified": kyc_required,
                "kyc_status": KycStatus.OTP_VERIFIED if kyc_required else KycStatus.NOT_REQUIRED,
                "receipt_issued": False,
            })

            if member:
                self.wallet.credit(
                    member.id,
                    points,
                    PointsSource.DONATIONS,
                    f"₹{amount} donation collected from {donor_name or 'anonymous'} → {points} points",
                    reference_id=data["id"],
                    balance_inr=points_rupees,
                )

        donation = Donation(**data)
        logger.info(
            f"Donation {donation.donation_id} recorded: ₹{amount}"
            f" (member={member.member_id if member else 'none'}, kyc_required={kyc_required})"
        )

        if self.notifier.donation_receipt(donation):
            self.storage.update_one(DONATIONS, {"id": donation.id}, set={"receipt_issued": True})
            donation.receipt_issued = True
        self.notifier.admin_donation_alert(donation, self.config.admin_email)
        return donation

    def record_for_member(
        self,
        user_id: UUID,
        amount: Optional[Decimal],
        donor_name: Optional[str] = None,
        donor_contact: Optional[str] = None,
        verified_token: Optional[str] = None,
    ) -> Donation:
        """A donation a member collected in person."""
        is_email = bool(donor_contact and "@" in donor_contact)
        return self.record(
            amount,
            donor_name=donor_name,
            donor_email=donor_contact if is_email else None,
            donor_mobile=donor_contact if not is_email else None,
            user_id=user_id,
            source=DonationSource.CASH,
            verified_token=verified_token,
        )

    def pay(self, request: PayDonationRequest) -> PayDonationResponse:
        """Public donation confirmed by the payment gateway."""
        secret = self.config.razorpay_key_secret
        if secret:
            order_id, payment_id = request.razorpay_order_id, request.razorpay_payment_id
            signature = request.razorpay_signature
            if not (order_id and payment_id and signature) or not verify_payment_signature(
                order_id, payment_id, signature, secret
            ):
                logger.warning(f"Payment signature mismatch for order {order_id}")
                raise PaymentVerificationError("Payment verification failed")

        user_id = None
        if request.member_id:
            member = self.storage.find_one(USERS, {"member_id": request.member_id})
            if member:
                user_id = member["id"]
            else:
                logger.warning(f"Donation names unknown member {request.member_id}; recording unlinked")

        donation = self.record(
            request.amount,
            donor_name=request.name,
            donor_email=request.email,
            donor_mobile=request.mobile,
            donor_pan=request.pan,
            donor_address=request.address,
            user_id=user_id,
            source=DonationSource.RAZORPAY,
            payment_id=request.razorpay_payment_id,
            order_id=request.razorpay_order_id,
            verified_token=request.verified_token,
        )
        return PayDonationResponse(
            donation_id=donation.donation_id,
            points_earned=donation.points_earned,
            receipt_80g_sent=donation.receipt_issued,
        )

    def update_kyc(self, donation_id: str, kyc_status: KycStatus, admin_notes: Optional[str] = None) -> Donation:
        changes: dict = {"kyc_status": kyc_status}
        if admin_notes is not None:
            changes["admin_notes"] = admin_notes
        data = self.storage.find_one_and_update(DONATIONS, {"donation_id": donation_id}, set=changes)
        if data is None:
            raise NotFoundError(f"Donation {donation_id} not found")
        logger.info(f"Donation {donation_id} KYC status set to {kyc_status.value}")
        return Donation(**data)

    def list_donations(self, user_id: Optional[UUID] = None, limit: int = 50) -> list[Donation]:
        query = {"member_id": user_id} if user_id else {}
        docs = self.storage.find(DONATIONS, query, sort=[("created_at", -1)], limit=limit)
        return [Donation(**d) for d in docs]
