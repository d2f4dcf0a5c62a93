import secrets
import string
from typing import Optional
from uuid import UUID

from loguru import logger

from .config import Settings, settings
from .donations import DONATIONS
from .errors import AuthenticationError, NotFoundError, ValidationError
from .membership import MEMBERSHIP_FEES
from .models import ZERO, AdminOverview, ReferralStatus, User, UserRole, Wallet
from .quiz import QUIZ_PARTICIPATIONS, QUIZ_TICKETS, QUIZZES
from .referrals import REFERRALS, ReferralService
from .storage import DuplicateKeyError, InMemoryStorage
from .tasks import SOCIAL_POSTS, TASK_COMPLETIONS
from .wallet import POINTS_LEDGER, USERS

SESSIONS = "sessions"

_CODE_ALPHABET = string.ascii_uppercase + string.digits


class MemberService:
    def __init__(
        self,
        storage: Optional[InMemoryStorage] = None,
        config: Optional[Settings] = None,
        referrals: Optional[ReferralService] = None,
    ):
        self.storage = storage or InMemoryStorage()
        self.config = config or settings
        self.referrals = referrals or ReferralService(self.storage, self.config)

    def next_member_id(self) -> str:
        return f"{self.config.org_prefix}-{self.storage.next_sequence('member_id'):06d}"

    @staticmethod
    def generate_referral_code(member_id: str) -> str:
        suffix = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(4))
        return member_id.replace("-", "") + suffix

    def create_member(
        self,
        name: str,
        email: Optional[str] = None,
        mobile: Optional[str] = None,
        role: UserRole = UserRole.MEMBER,
        referral_code: Optional[str] = None,
        membership_active: bool = False,
        member_id: Optional[str] = None,
    ) -> User:
        if not name or not name.strip():
            raise ValidationError("Member name required")

        with self.storage.transaction():
            member_id = member_id or self.next_member_id()
            try:
                data = self.storage.insert(USERS, {
                    "member_id": member_id,
                    "name": name.strip(),
                    "email": email.lower() if email else None,
                    "mobile": mobile,
                    "role": role,
                    "membership_active": membership_active,
                    "referral_code": self.generate_referral_code(member_id),
                    "referred_by": None,
                    "wallet": Wallet().model_dump(),
                })
            except DuplicateKeyError as e:
                raise ValidationError(f"A member with this {', '.join(e.keys)} already exists") from e

            if referral_code:
                self.referrals.register_referral(referral_code, data["id"])
                data = self.storage.find_one(USERS, {"id": data["id"]})

        logger.info(f"Member {member_id} created (role={role.value})")
        return User(**data)

    def ensure_admin(self) -> Optional[str]:
        """Seed the first admin when none exists.

        Returns a session token for the admin: the configured
        ``admin_session_token`` if set, otherwise a fresh one when the admin
        was just created, and ``None`` when there is nothing new to hand out.
        """
        admin = self.storage.find_one(USERS, {"role": UserRole.ADMIN})
        created = admin is None
        if created:
            admin_id = self.create_member(
                self.config.admin_name,
                email=self.config.admin_user,
                role=UserRole.ADMIN,
                membership_active=True,
                member_id=f"{self.config.org_prefix}-ADMIN-001",
            ).id
        else:
            admin_id = admin["id"]

        token = self.config.admin_session_token
        if token:
            if not self.storage.count(SESSIONS, {"token": token}):
                self.storage.insert(SESSIONS, {"token": token, "user_id": admin_id})
            return token
        return self.open_session(admin_id) if created else None

    def get(self, user_id: UUID) -> User:
        data = self.storage.find_one(USERS, {"id": user_id})
        if not data:
            raise NotFoundError(f"Member {user_id} not found")
        return User(**data)

    def get_by_member_id(self, member_id: str) -> User:
        data = self.storage.find_one(USERS, {"member_id": member_id})
        if not data:
            raise NotFoundError(f"Member {member_id} not found")
        return User(**data)

    def open_session(self, user_id: UUID) -> str:
        self.get(user_id)
        token = secrets.token_urlsafe(32)
        self.storage.insert(SESSIONS, {"token": token, "user_id": user_id})
        return token

    def resolve_session(self, token: Optional[str]) -> User:
        if not token:
            raise AuthenticationError("Not authenticated")
        session = self.storage.find_one(SESSIONS, {"token": token})
        if not session:
            raise AuthenticationError("Session expired or invalid")
        user = self.storage.find_one(USERS, {"id": session["user_id"]})
        if not user:
            raise AuthenticationError("Session expired or invalid")
        return User(**user)

    def delete_member(self, member_id: str) -> None:
        """Remove a member and everything that references them."""
        user = self.get_by_member_id(member_id)
        with self.storage.transaction():
            self.storage.delete_many(POINTS_LEDGER, {"user_id": user.id})
            self.storage.delete_many(DONATIONS, {"member_id": user.id})
            self.storage.delete_many(REFERRALS, {"referrer_id": user.id})
            self.storage.delete_many(REFERRALS, {"referred_user_id": user.id})
            self.storage.update_many(USERS, {"referred_by": user.id}, set={"referred_by": None})
            self.storage.delete_many(QUIZ_TICKETS, {"seller_id": user.id})
            for participation in self.storage.find(QUIZ_PARTICIPATIONS, {"user_id": user.id}):
                self.storage.update_one(
                    QUIZZES,
                    {"id": participation["quiz_id"]},
                    inc={"total_participants": -1, "total_collection": -participation["amount_paid"]},
                )
            self.storage.delete_many(QUIZ_PARTICIPATIONS, {"user_id": user.id})
            self.storage.delete_many(TASK_COMPLETIONS, {"user_id": user.id})
            self.storage.delete_many(SOCIAL_POSTS, {"user_id": user.id})
            self.storage.delete_many(MEMBERSHIP_FEES, {"user_id": user.id})
            self.storage.delete_many(SESSIONS, {"user_id": user.id})
            self.storage.delete_one(USERS, {"id": user.id})
        logger.info(f"Member {member_id} deleted")

    def admin_overview(self) -> AdminOverview:
        users = self.storage.find(USERS, {"role": UserRole.MEMBER})
        donations = self.storage.find(DONATIONS)
        return AdminOverview(
            members=len(users),
            active_members=sum(1 for u in users if u.get("membership_active")),
            total_points=sum((Wallet(**u["wallet"]).total_points_earned for u in users), ZERO),
            total_donations_count=len(donations),
            total_donations_amount=sum((d["amount"] for d in donations), ZERO),
            total_referrals=self.storage.count(REFERRALS),
            active_referrals=self.storage.count(REFERRALS, {"status": ReferralStatus.ACTIVE}),
            total_tickets_sold=self.storage.count(QUIZ_TICKETS),
        )
