"""
Member points, wallet and referral accounting for FWF

This package provides:
- An append-only points ledger with a per-member wallet aggregate
- Donation recording with OTP gating for high-value gifts
- Referral activation: pending → active, credited exactly once
- Quiz tickets, enrollment and prize draws
- Weekly social tasks, completed once per member
"""

from .models import (
    LedgerEntry,
    LedgerEntryType,
    PointsSource,
    ReferralStatus,
    User,
    Wallet,
)
from .services import Services, build_services
from .storage import InMemoryStorage
from .wallet import WalletService, reward_points

__all__ = [
    "LedgerEntry",
    "LedgerEntryType",
    "PointsSource",
    "ReferralStatus",
    "User",
    "Wallet",
    "Services",
    "build_services",
    "InMemoryStorage",
    "WalletService",
    "reward_points",
]
