from datetime import datetime, timedelta, timezone

import pytest

from points.config import Settings
from points.models import UserRole
from points.notifications import Notifier
from points.services import build_services


class RecordingNotifier(Notifier):
    """Captures outbound messages instead of sending them."""

    def __init__(self):
        self.emails = []
        self.sms = []

    def send_email(self, to, subject, body):
        self.emails.append((to, subject, body))
        return True

    def send_sms(self, mobile, message):
        self.sms.append((mobile, message))
        return True


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2026, 1, 1, 10, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def config():
    return Settings(_env_file=None, admin_email="admin@fwf.org", razorpay_key_secret=None)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def services(config, notifier):
    return build_services(config=config, notifier=notifier)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_member(services):
    counter = iter(range(1, 1000))

    def _make(name=None, role=UserRole.MEMBER, referral_code=None, **kwargs):
        n = next(counter)
        return services.members.create_member(
            name or f"Member {n}",
            email=kwargs.pop("email", f"member{n}@example.com"),
            mobile=kwargs.pop("mobile", f"98765{n:05d}"),
            role=role,
            referral_code=referral_code,
            **kwargs,
        )

    return _make
