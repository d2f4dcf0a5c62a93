from dataclasses import dataclass
from typing import Optional

from .config import Settings, settings
from .donations import DonationRecorder
from .members import MemberService
from .membership import MembershipService
from .notifications import Notifier, build_notifier
from .otp import DonationOtpGate
from .quiz import QuizService, QuizTicketSeller
from .referrals import ReferralService
from .storage import InMemoryStorage
from .tasks import SocialTaskService
from .wallet import WalletService


@dataclass
class Services:
    storage: InMemoryStorage
    config: Settings
    notifier: Notifier
    wallet: WalletService
    otp: DonationOtpGate
    donations: DonationRecorder
    referrals: ReferralService
    members: MemberService
    tickets: QuizTicketSeller
    quizzes: QuizService
    tasks: SocialTaskService
    membership: MembershipService


def build_services(
    storage: Optional[InMemoryStorage] = None,
    config: Optional[Settings] = None,
    notifier: Optional[Notifier] = None,
) -> Services:
    """Wire every service onto one shared store."""
    storage = storage or InMemoryStorage()
    config = config or settings
    notifier = notifier or build_notifier(config)

    wallet = WalletService(storage, config)
    otp = DonationOtpGate(storage, config, notifier)
    referrals = ReferralService(storage, config, wallet)
    return Services(
        storage=storage,
        config=config,
        notifier=notifier,
        wallet=wallet,
        otp=otp,
        donations=DonationRecorder(storage, config, wallet, otp, notifier),
        referrals=referrals,
        members=MemberService(storage, config, referrals),
        tickets=QuizTicketSeller(storage, config, wallet),
        quizzes=QuizService(storage, config, wallet),
        tasks=SocialTaskService(storage, config, wallet),
        membership=MembershipService(storage, config, referrals),
    )
