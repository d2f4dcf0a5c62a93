"""
Unit Tests for the Donation Recorder

Tests cover:
1. Member-collected donations
2. High-value gating at the KYC threshold
3. Anonymous public donations
4. Payment signature verification
5. Receipts and admin alerts
"""

import hashlib
import hmac
from decimal import Decimal

import pytest

from points.config import Settings
from points.donations import DONATIONS, verify_payment_signature
from points.errors import KycRequiredError, PaymentVerificationError, ValidationError
from points.models import DonationSource, KycStatus, LedgerEntryType, PayDonationRequest
from points.services import build_services


def sign(order_id, payment_id, secret):
    return hmac.new(secret.encode(), f"{order_id}|{payment_id}".encode(), hashlib.sha256).hexdigest()


def verified_token(services, email="big@example.com", amount=Decimal("50000")):
    services.otp.send(email, "9876543210", "Big Donor", amount)
    code = services.otp.state_of(email).otp
    return services.otp.verify(email, code).verified_token


class TestRecordForMember:
    """Tests for donations a member collects."""

    def test_record_donation_credits_member(self, services, make_member):
        member = make_member()

        donation = services.donations.record_for_member(
            member.id, Decimal("1000"), donor_name="Asha", donor_contact="asha@example.com"
        )

        wallet = services.wallet.get_wallet(member.id)
        assert donation.points_earned == Decimal("10")
        assert donation.source == DonationSource.CASH
        assert donation.donor_email == "asha@example.com"
        assert wallet.points_balance == Decimal("10")
        assert wallet.points_from_donations == Decimal("10")
        assert wallet.balance_inr == Decimal("100")

        history = services.wallet.points_history(member.id)
        assert len(history) == 1
        assert history[0].type == LedgerEntryType.DONATION
        assert history[0].reference_id == donation.id
        assert "₹1000 donation collected from Asha" in history[0].description

    def test_mobile_contact(self, services, make_member):
        member = make_member()

        donation = services.donations.record_for_member(
            member.id, Decimal("200"), donor_contact="9123456789"
        )

        assert donation.donor_mobile == "9123456789"
        assert donation.donor_email is None
        assert donation.donor_name == "Anonymous"

    @pytest.mark.parametrize("amount", [None, Decimal("0"), Decimal("-5")])
    def test_invalid_amount(self, services, make_member, amount):
        member = make_member()

        with pytest.raises(ValidationError):
            services.donations.record_for_member(member.id, amount)

        assert services.storage.count(DONATIONS) == 0

    def test_donation_ids_are_sequential(self, services, make_member):
        member = make_member()

        first = services.donations.record_for_member(member.id, Decimal("10"))
        second = services.donations.record_for_member(member.id, Decimal("10"))

        assert first.donation_id == "DON-000001"
        assert second.donation_id == "DON-000002"


class TestHighValueGating:
    """Donations at or above ₹50,000 need a verified OTP token."""

    def test_just_below_threshold_needs_no_token(self, services, make_member):
        member = make_member()

        donation = services.donations.record_for_member(member.id, Decimal("49999"))

        assert not donation.kyc_required
        assert donation.kyc_status == KycStatus.NOT_REQUIRED
        assert donation.points_earned == Decimal("499.99")

    def test_threshold_without_token_is_rejected(self, services, make_member):
        member = make_member()

        with pytest.raises(KycRequiredError):
            services.donations.record_for_member(member.id, Decimal("50000"))

        assert services.storage.count(DONATIONS) == 0
        assert services.wallet.get_wallet(member.id).points_balance == Decimal("0")

    def test_threshold_with_token(self, services, make_member):
        member = make_member()
        token = verified_token(services)

        donation = services.donations.record_for_member(
            member.id, Decimal("50000"), verified_token=token
        )

        assert donation.kyc_required
        assert donation.otp_verified
        assert donation.kyc_status == KycStatus.OTP_VERIFIED
        assert donation.points_earned == Decimal("500")

    def test_token_is_single_use(self, services, make_member):
        member = make_member()
        token = verified_token(services)
        services.donations.record_for_member(member.id, Decimal("60000"), verified_token=token)

        with pytest.raises(KycRequiredError):
            services.donations.record_for_member(member.id, Decimal("60000"), verified_token=token)

    def test_bogus_token(self, services, make_member):
        member = make_member()

        with pytest.raises(KycRequiredError):
            services.donations.record_for_member(
                member.id, Decimal("75000"), verified_token="not-a-token"
            )


class TestPublicDonation:
    """Tests for gateway-confirmed public donations."""

    def test_anonymous_donation_credits_nobody(self, services, make_member):
        member = make_member()

        response = services.donations.pay(PayDonationRequest(amount=Decimal("1000"), email="d@example.com"))

        donation = services.storage.find_one(DONATIONS, {"donation_id": response.donation_id})
        assert donation["member_id"] is None
        assert response.points_earned == Decimal("0")
        assert services.wallet.get_wallet(member.id).points_balance == Decimal("0")

    def test_donation_linked_by_member_id(self, services, make_member):
        member = make_member()

        response = services.donations.pay(PayDonationRequest(
            amount=Decimal("2000"), name="Ravi", memberId=member.member_id
        ))

        assert response.points_earned == Decimal("20")
        assert services.wallet.get_wallet(member.id).points_from_donations == Decimal("20")

    def test_unknown_member_id_records_unlinked(self, services):
        response = services.donations.pay(PayDonationRequest(amount=Decimal("100"), memberId="FWF-999999"))

        assert response.points_earned == Decimal("0")
        assert services.storage.count(DONATIONS) == 1

    def test_receipt_sent_when_email_given(self, services, notifier):
        response = services.donations.pay(PayDonationRequest(
            amount=Decimal("500"), name="Meera", email="meera@example.com", pan="ABCDE1234F"
        ))

        assert response.receipt_80g_sent
        recipients = [to for to, _, _ in notifier.emails]
        assert "meera@example.com" in recipients
        assert "admin@fwf.org" in recipients

    def test_no_receipt_without_email(self, services):
        response = services.donations.pay(PayDonationRequest(amount=Decimal("500")))

        assert not response.receipt_80g_sent

    def test_high_value_public_donation_needs_token(self, services):
        with pytest.raises(KycRequiredError):
            services.donations.pay(PayDonationRequest(amount=Decimal("50000"), email="x@example.com"))


class TestPaymentSignature:
    """Tests for gateway signature checks."""

    def test_verify_signature(self):
        signature = sign("order_1", "pay_1", "secret")

        assert verify_payment_signature("order_1", "pay_1", signature, "secret")
        assert not verify_payment_signature("order_1", "pay_2", signature, "secret")

    def test_pay_rejects_bad_signature(self, notifier):
        services = build_services(
            config=Settings(_env_file=None, razorpay_key_secret="secret"), notifier=notifier
        )

        with pytest.raises(PaymentVerificationError):
            services.donations.pay(PayDonationRequest(
                amount=Decimal("100"),
                razorpay_order_id="order_1",
                razorpay_payment_id="pay_1",
                razorpay_signature="forged",
            ))

        assert services.storage.count(DONATIONS) == 0

    def test_pay_accepts_good_signature(self, notifier):
        services = build_services(
            config=Settings(_env_file=None, razorpay_key_secret="secret"), notifier=notifier
        )

        response = services.donations.pay(PayDonationRequest(
            amount=Decimal("100"),
            razorpay_order_id="order_1",
            razorpay_payment_id="pay_1",
            razorpay_signature=sign("order_1", "pay_1", "secret"),
        ))

        donation = services.storage.find_one(DONATIONS, {"donation_id": response.donation_id})
        assert donation["payment_id"] == "pay_1"
