"""
OTP gate for high-value donations.

A donor asking to give at or above the KYC threshold first requests a code
(``send``), proves possession of it (``verify``) and receives a one-time
``verified_token`` that the donation recorder exchanges via ``consume_token``.

Record lifecycle: created -> verified, or created -> expired / exhausted.
"""

import re
import secrets
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Optional

from loguru import logger

from .config import Settings, settings
from .errors import KycRequiredError, OtpError, RateLimitError, ValidationError
from .models import DonationOtp, OtpSendResponse, OtpVerifyResponse
from .notifications import Notifier
from .storage import InMemoryStorage

DONATION_OTPS = "donation_otps"
OTP_REQUESTS = "donation_otp_requests"


def mask_email(email: str) -> str:
    return re.sub(r"(.{2})(.*)(@.*)", r"\1***\3", email)


def mask_mobile(mobile: str) -> str:
    return re.sub(r"(\d{2})(\d{6})(\d{2})", r"\1******\3", mobile)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DonationOtpGate:
    def __init__(
        self,
        storage: Optional[InMemoryStorage] = None,
        config: Optional[Settings] = None,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.storage = storage or InMemoryStorage()
        self.config = config or settings
        self.notifier = notifier or Notifier()
        self.clock = clock

    def generate_code(self) -> str:
        low = 10 ** (self.config.otp_length - 1)
        return str(low + secrets.randbelow(9 * low))

    def send(self, email: Optional[str], mobile: Optional[str], name: Optional[str],
             amount: Optional[Decimal]) -> OtpSendResponse:
        if not email or not mobile or not name or not amount:
            raise ValidationError("email, mobile, name, and amount are required")
        threshold = self.config.high_value_donation_threshold
        if amount < threshold:
            raise ValidationError(f"OTP verification is only required for donations ≥ ₹{threshold:,}")

        now = self.clock()
        window_start = now - timedelta(minutes=self.config.otp_rate_window_minutes)
        self.storage.delete_many(OTP_REQUESTS, {"email": email, "created_at": {"$lt": window_start}})
        with self.storage.transaction():
            recent = self.storage.count(OTP_REQUESTS, {"email": email, "created_at": {"$gte": window_start}})
            if recent >= self.config.otp_rate_limit:
                logger.warning(f"OTP rate limit hit for {mask_email(email)}")
                raise RateLimitError(
                    f"Too many OTP requests. Please wait {self.config.otp_rate_window_minutes} "
                    "minutes before trying again."
                )
            self.storage.insert(OTP_REQUESTS, {"email": email, "created_at": now})
            self.storage.delete_many(DONATION_OTPS, {"email": email, "verified": False})
            code = self.generate_code()
            self.storage.insert(DONATION_OTPS, {
                "email": email,
                "mobile": mobile,
                "name": name,
                "amount": amount,
                "otp": code,
                "verified": False,
                "verified_token": None,
                "verified_at": None,
                "attempts": 0,
                "expires_at": now + timedelta(minutes=self.config.otp_ttl_minutes),
                "created_at": now,
            })

        self.notifier.donation_otp(email, mobile, name, amount, code)
        logger.info(f"Donation OTP sent to {mask_email(email)}")
        masked = mask_email(email)
        return OtpSendResponse(
            message=f"OTP sent to {masked}",
            masked_email=masked,
            masked_mobile=mask_mobile(mobile),
        )

    def verify(self, email: Optional[str], otp: Optional[str]) -> OtpVerifyResponse:
        if not email or not otp:
            raise ValidationError("email and otp are required")

        now = self.clock()
        max_attempts = self.config.otp_max_attempts
        error = None
        token = None
        with self.storage.transaction():
            record = self.storage.find_one(
                DONATION_OTPS,
                {"email": email, "verified": False, "expires_at": {"$gt": now}},
                sort=[("created_at", -1)],
            )
            if record is None:
                error = "OTP has expired or was not found. Please request a new OTP."
            elif record["attempts"] >= max_attempts:
                self.storage.delete_one(DONATION_OTPS, {"id": record["id"]})
                error = "Too many incorrect attempts. Please request a new OTP."
            elif record["otp"] != otp.strip():
                updated = self.storage.find_one_and_update(
                    DONATION_OTPS, {"id": record["id"]}, inc={"attempts": 1}
                )
                error = f"Incorrect OTP. {max_attempts - updated['attempts']} attempt(s) remaining."
            else:
                token = secrets.token_hex(32)
                self.storage.update_one(
                    DONATION_OTPS,
                    {"id": record["id"]},
                    set={"verified": True, "verified_token": token, "verified_at": now},
                )

        if error:
            logger.warning(f"Donation OTP rejected for {mask_email(email)}: {error}")
            raise OtpError(error)

        logger.info(f"Donation OTP verified for {mask_email(email)}")
        return OtpVerifyResponse(
            verified_token=token,
            message="OTP verified successfully! Proceed to payment.",
        )

    def consume_token(self, token: Optional[str]) -> DonationOtp:
        """Exchange a verified token for its OTP record; a token works once."""
        if not token:
            raise KycRequiredError(
                "OTP verification is required for donations of "
                f"₹{self.config.high_value_donation_threshold:,} or more"
            )

        ttl = timedelta(minutes=self.config.verified_token_ttl_minutes)
        with self.storage.transaction():
            record = self.storage.find_one(DONATION_OTPS, {"verified_token": token, "verified": True})
            if record and record["verified_at"] + ttl > self.clock():
                self.storage.delete_one(DONATION_OTPS, {"id": record["id"]})
                return DonationOtp(**record)

        raise KycRequiredError("Verification token is invalid or expired. Please verify the OTP again.")

    def state_of(self, email: str) -> Optional[DonationOtp]:
        record = self.storage.find_one(DONATION_OTPS, {"email": email}, sort=[("created_at", -1)])
        return DonationOtp(**record) if record else None
