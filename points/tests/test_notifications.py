"""
Unit Tests for Outbound Notifications

Delivery failures must never reach the accounting operation that
triggered them.
"""

import json
from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import httpx
import pytest

from points.config import Settings
from points.models import Donation, PayDonationRequest
from points.notifications import HttpNotifier, Notifier, build_notifier
from points.services import build_services


def donation(**overrides):
    data = {
        "id": uuid4(),
        "donation_id": "DON-000042",
        "amount": Decimal("2500"),
        "donor_name": "Farah",
        "donor_email": "farah@example.com",
        "created_at": datetime.now(timezone.utc),
    }
    data.update(overrides)
    return Donation(**data)


@pytest.fixture
def http_config():
    return Settings(
        _env_file=None,
        notify_webhook_url="https://hooks.example.org/email",
        sms_api_url="https://sms.example.org/send",
        sms_auth_key="sms-key",
    )


def make_notifier(config, handler):
    return HttpNotifier(config, client=httpx.Client(transport=httpx.MockTransport(handler)))


class TestHttpNotifier:
    def test_email_goes_to_webhook(self, http_config):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200)

        sent = make_notifier(http_config, handler).donation_receipt(donation())

        assert sent
        assert str(seen[0].url) == "https://hooks.example.org/email"
        body = json.loads(seen[0].content)
        assert body["to"] == "farah@example.com"
        assert "DON-000042" in body["subject"]

    def test_sms_carries_auth_key(self, http_config):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200)

        make_notifier(http_config, handler).donation_otp(
            "d@example.com", "9876543210", "Donor", Decimal("60000"), "123456"
        )

        sms = [r for r in seen if r.url.host == "sms.example.org"]
        assert sms[0].headers["authkey"] == "sms-key"
        assert "123456" in json.loads(sms[0].content)["message"]

    def test_failure_is_swallowed(self, http_config):
        def handler(request):
            return httpx.Response(502)

        notifier = make_notifier(http_config, handler)

        assert notifier.donation_receipt(donation()) is False

    def test_donation_survives_delivery_failure(self, http_config):
        def handler(request):
            raise httpx.ConnectError("relay down")

        services = build_services(config=http_config, notifier=make_notifier(http_config, handler))

        response = services.donations.pay(
            PayDonationRequest(
                amount=Decimal("500"), email="farah@example.com"
            )
        )

        assert response.donation_id == "DON-000001"
        assert not response.receipt_80g_sent


class TestBuildNotifier:
    def test_plain_notifier_without_endpoints(self):
        notifier = build_notifier(Settings(_env_file=None))

        assert type(notifier) is Notifier
        assert notifier.donation_receipt(donation(donor_email=None)) is False

    def test_http_notifier_with_endpoints(self, http_config):
        assert isinstance(build_notifier(http_config), HttpNotifier)

    def test_disabled_email_issues_no_receipt(self):
        config = Settings(_env_file=None)
        services = build_services(config=config, notifier=Notifier())

        response = services.donations.pay(PayDonationRequest(amount=Decimal("500"), email="d@example.com"))

        assert not response.receipt_80g_sent
        assert not services.donations.list_donations()[0].receipt_issued
