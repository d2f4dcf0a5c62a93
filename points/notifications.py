"""
Outbound donor, member and admin messages.

Delivery is fire-and-forget: a failed email or SMS is logged and never
reaches the caller of the accounting operation that triggered it.
"""

from decimal import Decimal
from typing import Optional

import httpx
from loguru import logger

from .config import Settings, settings
from .models import Donation


class Notifier:
    """Logs outbound messages instead of delivering them."""

    def send_email(self, to: str, subject: str, body: str) -> bool:
        logger.info(f"[email disabled] to={to} subject={subject!r}")
        return False

    def send_sms(self, mobile: str, message: str) -> bool:
        logger.info(f"[sms disabled] to={mobile}")
        return False

    def dispatch(self, kind: str, func, *args) -> bool:
        """Runs one delivery; true only when the message actually went out."""
        try:
            return bool(func(*args))
        except Exception:
            logger.exception(f"Failed to deliver {kind} notification")
            return False

    def donation_otp(self, email: str, mobile: str, name: str, amount: Decimal, otp: str) -> None:
        subject = "FWF: Donation Verification OTP"
        body = (
            f"Dear {name}, your OTP for the donation of ₹{amount} is {otp}. "
            "It expires in 10 minutes."
        )
        self.dispatch("otp-sms", self.send_sms, mobile, f"Your FWF donation OTP is {otp}")
        self.dispatch("otp-email", self.send_email, email, subject, body)

    def donation_receipt(self, donation: Donation) -> bool:
        """Donor confirmation with the 80G receipt; returns whether it went out."""
        if not donation.donor_email:
            return False
        subject = f"FWF: 80G Tax Exemption Receipt #{donation.donation_id}"
        body = (
            f"Dear {donation.donor_name}, thank you for your donation of ₹{donation.amount}. "
            f"Receipt number {donation.donation_id}"
            + (f", PAN {donation.donor_pan}." if donation.donor_pan else ".")
        )
        return self.dispatch("donation-receipt", self.send_email, donation.donor_email, subject, body)

    def admin_donation_alert(self, donation: Donation, admin_email: Optional[str]) -> None:
        if not admin_email:
            return
        subject = f"New donation {donation.donation_id}: ₹{donation.amount}"
        body = (
            f"Donor: {donation.donor_name} ({donation.donor_email or 'no email'})\n"
            f"KYC required: {donation.kyc_required}, status: {donation.kyc_status.value}"
        )
        self.dispatch("admin-alert", self.send_email, admin_email, subject, body)


class HttpNotifier(Notifier):
    """Delivers SMS through an MSG91-style HTTP API and email through a relay webhook."""

    def __init__(self, config: Settings, client: Optional[httpx.Client] = None):
        self.config = config
        self.client = client or httpx.Client(timeout=config.http_timeout_seconds)

    def send_email(self, to: str, subject: str, body: str) -> bool:
        if not self.config.notify_webhook_url:
            return super().send_email(to, subject, body)
        response = self.client.post(
            self.config.notify_webhook_url,
            json={"to": to, "subject": subject, "body": body},
        )
        response.raise_for_status()
        return True

    def send_sms(self, mobile: str, message: str) -> bool:
        if not self.config.sms_api_url:
            return super().send_sms(mobile, message)
        response = self.client.post(
            self.config.sms_api_url,
            headers={"authkey": self.config.sms_auth_key or ""},
            json={"mobiles": mobile, "message": message},
        )
        response.raise_for_status()
        return True


def build_notifier(config: Optional[Settings] = None) -> Notifier:
    config = config or settings
    if config.notify_webhook_url or config.sms_api_url:
        return HttpNotifier(config)
    return Notifier()
