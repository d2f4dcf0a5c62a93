from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Literal, Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict, computed_field


ZERO = Decimal("0")


class UserRole(str, Enum):
    MEMBER = "member"
    ADMIN = "admin"


class LedgerEntryType(str, Enum):
    DONATION = "donation"
    REFERRAL = "referral"
    QUIZ = "quiz"
    SOCIAL_TASK = "social_task"
    REDEEM = "redeem"
    ADJUSTMENT = "adjustment"
    SUPPORTER = "supporter"


class PointsSource(str, Enum):
    """Wallet counter that a credit is tagged against."""
    DONATIONS = "points_from_donations"
    REFERRALS = "points_from_referrals"
    QUIZ = "points_from_quiz"
    SOCIAL_TASKS = "points_from_social_tasks"


class ReferralStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    EXPIRED = "expired"


class KycStatus(str, Enum):
    NOT_REQUIRED = "not_required"
    OTP_VERIFIED = "otp_verified"
    PENDING_DOCS = "pending_docs"
    DOC_VERIFIED = "doc_verified"


class DonationSource(str, Enum):
    RAZORPAY = "razorpay"
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    UPI = "upi"


class OtpState(str, Enum):
    CREATED = "created"
    VERIFIED = "verified"
    EXPIRED = "expired"
    EXHAUSTED = "exhausted"


class QuizType(str, Enum):
    MONTHLY = "monthly"
    HALF_YEARLY = "half_yearly"
    YEARLY = "yearly"


class QuizStatus(str, Enum):
    UPCOMING = "upcoming"
    ACTIVE = "active"
    CLOSED = "closed"
    RESULT_DECLARED = "result_declared"


QUIZ_TRANSITIONS: dict[QuizStatus, QuizStatus] = {
    QuizStatus.UPCOMING: QuizStatus.ACTIVE,
    QuizStatus.ACTIVE: QuizStatus.CLOSED,
    QuizStatus.CLOSED: QuizStatus.RESULT_DECLARED,
}


class ParticipationStatus(str, Enum):
    ENROLLED = "enrolled"
    SUBMITTED = "submitted"
    WON = "won"
    LOST = "lost"


class PostType(str, Enum):
    WELFARE = "welfare"
    PLANTATION = "plantation"
    EDUCATION = "education"
    DONATION = "donation"
    AWARENESS = "awareness"
    TASK_COMPLETION = "task_completion"
    OTHER = "other"


class FeeType(str, Enum):
    JOINING = "joining"
    RENEWAL = "renewal"
    OTHER = "other"


class FeeStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"
    REFUNDED = "refunded"


# ---------- Stored documents ----------

class Wallet(BaseModel):
    balance_inr: Decimal = ZERO
    lifetime_earned_inr: Decimal = ZERO
    lifetime_applied_inr: Decimal = ZERO
    points_balance: Decimal = ZERO
    points_from_donations: Decimal = ZERO
    points_from_referrals: Decimal = ZERO
    points_from_quiz: Decimal = ZERO
    points_from_social_tasks: Decimal = ZERO
    total_points_earned: Decimal = ZERO
    updated_at: Optional[datetime] = None

    def source_sum(self) -> Decimal:
        return (
            self.points_from_donations + self.points_from_referrals
            + self.points_from_quiz + self.points_from_social_tasks
        )


class User(BaseModel):
    id: UUID
    member_id: str
    name: str
    email: Optional[str] = None
    mobile: Optional[str] = None
    role: UserRole = UserRole.MEMBER
    membership_active: bool = False
    referral_code: Optional[str] = None
    referred_by: Optional[UUID] = None
    wallet: Wallet = Field(default_factory=Wallet)
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class LedgerEntry(BaseModel):
    id: UUID
    user_id: UUID
    points: Decimal
    type: LedgerEntryType
    description: str = ""
    reference_id: Optional[UUID] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Donation(BaseModel):
    id: UUID
    donation_id: str
    member_id: Optional[UUID] = None
    amount: Decimal
    points_earned: Decimal = ZERO
    donor_name: str = "Anonymous"
    donor_email: Optional[str] = None
    donor_mobile: Optional[str] = None
    donor_pan: Optional[str] = None
    donor_address: Optional[str] = None
    source: DonationSource = DonationSource.RAZORPAY
    payment_id: Optional[str] = None
    order_id: Optional[str] = None
    kyc_required: bool = False
    otp_verified: bool = False
    kyc_status: KycStatus = KycStatus.NOT_REQUIRED
    receipt_issued: bool = False
    admin_notes: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DonationOtp(BaseModel):
    id: UUID
    email: str
    mobile: str
    name: str
    amount: Decimal
    otp: str
    verified: bool = False
    verified_token: Optional[str] = None
    verified_at: Optional[datetime] = None
    attempts: int = 0
    expires_at: datetime
    created_at: datetime

    def state(self, now: datetime, max_attempts: int) -> OtpState:
        if self.verified:
            return OtpState.VERIFIED
        if self.attempts >= max_attempts:
            return OtpState.EXHAUSTED
        if self.expires_at <= now:
            return OtpState.EXPIRED
        return OtpState.CREATED


class Referral(BaseModel):
    id: UUID
    referrer_id: UUID
    referred_user_id: UUID
    payment_amount: Decimal = ZERO
    referral_points: Decimal = ZERO
    status: ReferralStatus = ReferralStatus.PENDING
    created_at: datetime
    activated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    def can_activate(self) -> bool:
        return self.status == ReferralStatus.PENDING

    def can_expire(self) -> bool:
        return self.status == ReferralStatus.PENDING


class QuizTicket(BaseModel):
    id: UUID
    seller_id: UUID
    buyer_name: Optional[str] = None
    buyer_contact: Optional[str] = None
    ticket_price: Decimal
    points_earned: Decimal = ZERO
    sold_at: datetime


class QuizQuestion(BaseModel):
    q_no: int
    question: str
    options: list[str] = Field(default_factory=list)
    correct_answer: int = Field(..., ge=0, description="Index of the correct option")
    points: Decimal = Decimal("1")


class QuizPrizes(BaseModel):
    first: Decimal = ZERO
    second: Decimal = ZERO
    third: Decimal = ZERO

    def by_rank(self) -> list[Decimal]:
        return [self.first, self.second, self.third]


class QuizWinner(BaseModel):
    rank: int
    user_id: UUID
    member_id: str
    name: str
    enrollment_number: str
    prize_amount: Decimal
    score: Decimal


class Quiz(BaseModel):
    id: UUID
    quiz_ref: str
    title: str
    description: Optional[str] = None
    type: QuizType = QuizType.MONTHLY
    entry_fee: Decimal
    prize_pool: Decimal = ZERO
    questions: list[QuizQuestion] = Field(default_factory=list)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    result_date: Optional[datetime] = None
    status: QuizStatus = QuizStatus.UPCOMING
    total_participants: int = 0
    total_collection: Decimal = ZERO
    winners: list[QuizWinner] = Field(default_factory=list)
    prizes: QuizPrizes = Field(default_factory=QuizPrizes)
    created_at: datetime

    def can_transition_to(self, status: QuizStatus) -> bool:
        return QUIZ_TRANSITIONS.get(self.status) == status


class QuizAnswer(BaseModel):
    q_no: int
    selected: int
    is_correct: bool = False


class QuizParticipation(BaseModel):
    id: UUID
    quiz_id: UUID
    quiz_ref: str
    user_id: UUID
    member_id: str
    name: str
    enrollment_number: str
    payment_id: Optional[str] = None
    amount_paid: Decimal
    points_earned: Decimal = ZERO
    answers: list[QuizAnswer] = Field(default_factory=list)
    score: Decimal = ZERO
    quiz_submitted: bool = False
    submitted_at: Optional[datetime] = None
    referred_by: Optional[str] = None
    referrer_id: Optional[UUID] = None
    status: ParticipationStatus = ParticipationStatus.ENROLLED
    prize_won: Decimal = ZERO
    created_at: datetime


class SocialTask(BaseModel):
    id: UUID
    task_id: str
    week_number: int = Field(..., ge=1, le=10)
    title: str
    description: str
    photo_instruction: str
    icon: str = "🌱"
    points_reward: Decimal = Decimal("10")
    is_active: bool = True
    created_at: datetime


class TaskCompletion(BaseModel):
    id: UUID
    user_id: UUID
    member_id: str
    task_id: str
    week_number: int
    photo_url: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    location_address: Optional[str] = None
    points_earned: Decimal
    social_post_id: Optional[UUID] = None
    completed_at: datetime


class PostLocation(BaseModel):
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: Optional[str] = None


class SocialPost(BaseModel):
    id: UUID
    user_id: UUID
    member_id: str
    user_name: str
    post_type: PostType = PostType.OTHER
    content: str
    images: list[str] = Field(default_factory=list)
    task_completion_id: Optional[UUID] = None
    location: Optional[PostLocation] = None
    is_auto_generated: bool = False
    created_at: datetime


class MembershipFee(BaseModel):
    id: UUID
    txn_id: str
    member_id: str
    user_id: UUID
    member_name: str
    amount: Decimal
    fee_type: FeeType = FeeType.JOINING
    payment_mode: str = "online"
    payment_ref: Optional[str] = None
    status: FeeStatus = FeeStatus.PENDING
    verified_by: Optional[str] = None
    verified_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: datetime


# ---------- Service results ----------

class ReferralActivation(BaseModel):
    activated: bool
    points: Decimal = ZERO
    referral: Optional[Referral] = None


class ReferralStats(BaseModel):
    total: int
    active: int
    pending: int
    total_points: Decimal


class TaskCompletionResult(BaseModel):
    points: Decimal
    completion: TaskCompletion
    post: SocialPost


class WalletReconciliation(BaseModel):
    user_id: UUID
    wallet: Wallet
    ledger_totals: dict[LedgerEntryType, Decimal]
    ledger_earned: Decimal
    redeemed: Decimal
    source_sum_matches: bool
    balance_matches: bool
    ledger_matches: bool

    @computed_field
    @property
    def consistent(self) -> bool:
        return self.source_sum_matches and self.balance_matches and self.ledger_matches


# ---------- HTTP requests ----------

class _Request(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class RecordDonationRequest(_Request):
    amount: Optional[Decimal] = None
    donor_name: Optional[str] = Field(default=None, alias="donorName")
    donor_contact: Optional[str] = Field(default=None, alias="donorContact")
    verified_token: Optional[str] = None


class SellTicketRequest(_Request):
    buyer_name: Optional[str] = Field(default=None, alias="buyerName")
    buyer_contact: Optional[str] = Field(default=None, alias="buyerContact")
    ticket_price: Optional[Decimal] = Field(default=None, alias="ticketPrice")


class RegisterReferralRequest(_Request):
    referral_code: Optional[str] = Field(default=None, alias="referralCode")
    new_user_id: Optional[UUID] = Field(default=None, alias="newUserId")


class ActivateReferralRequest(_Request):
    referred_member_id: str = Field(..., alias="referredMemberId")
    payment_amount: Optional[Decimal] = Field(default=None, alias="paymentAmount")


class CompleteTaskRequest(_Request):
    task_id: str
    photo_url: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    location_address: Optional[str] = None


class DonationOtpRequest(_Request):
    action: Optional[Literal["send", "verify"]] = None
    email: Optional[str] = None
    mobile: Optional[str] = None
    name: Optional[str] = None
    amount: Optional[Decimal] = None
    otp: Optional[str] = None


class PayDonationRequest(_Request):
    amount: Optional[Decimal] = None
    name: Optional[str] = None
    email: Optional[str] = None
    mobile: Optional[str] = None
    pan: Optional[str] = None
    address: Optional[str] = None
    member_id: Optional[str] = Field(default=None, alias="memberId")
    verified_token: Optional[str] = None
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None


class ApplyWalletRequest(_Request):
    amount: Decimal


class CreateMemberRequest(_Request):
    name: str
    email: Optional[str] = None
    mobile: Optional[str] = None
    role: UserRole = UserRole.MEMBER
    referral_code: Optional[str] = Field(default=None, alias="referralCode")


class CreateQuizRequest(_Request):
    quiz_ref: str = Field(..., alias="quizRef")
    title: str
    description: Optional[str] = None
    type: QuizType = QuizType.MONTHLY
    entry_fee: Decimal = Field(..., alias="entryFee")
    questions: list[QuizQuestion] = Field(default_factory=list)
    prizes: QuizPrizes = Field(default_factory=QuizPrizes)
    start_date: Optional[datetime] = Field(default=None, alias="startDate")
    end_date: Optional[datetime] = Field(default=None, alias="endDate")
    result_date: Optional[datetime] = Field(default=None, alias="resultDate")


class QuizStatusRequest(_Request):
    status: QuizStatus


class EnrollQuizRequest(_Request):
    amount_paid: Decimal = Field(..., alias="amountPaid")
    payment_id: Optional[str] = Field(default=None, alias="paymentId")
    referral_code: Optional[str] = Field(default=None, alias="referralCode")


class AnswerInput(BaseModel):
    q_no: int
    selected: int


class SubmitQuizRequest(_Request):
    answers: list[AnswerInput]


class MembershipFeeRequest(_Request):
    member_id: str = Field(..., alias="memberId")
    amount: Decimal
    fee_type: FeeType = Field(default=FeeType.JOINING, alias="feeType")
    payment_mode: str = Field(default="online", alias="paymentMode")
    payment_ref: Optional[str] = Field(default=None, alias="paymentRef")
    status: FeeStatus = FeeStatus.PENDING
    notes: Optional[str] = None


class FeeStatusRequest(_Request):
    status: FeeStatus


class KycUpdateRequest(_Request):
    kyc_status: KycStatus
    admin_notes: Optional[str] = None


# ---------- HTTP responses ----------

class _Response(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ok: bool = True


class PointsResponse(_Response):
    points: Decimal
    message: str


class ActivateReferralResponse(_Response):
    points: Decimal
    activated: bool


class CompleteTaskResponse(_Response):
    points: Decimal
    message: str
    completion: TaskCompletion
    post: SocialPost


class OtpSendResponse(_Response):
    message: str
    masked_email: str = Field(..., alias="maskedEmail")
    masked_mobile: str = Field(..., alias="maskedMobile")


class OtpVerifyResponse(_Response):
    verified_token: str
    message: str


class PayDonationResponse(_Response):
    donation_id: str = Field(..., alias="donationId")
    points_earned: Decimal = Field(..., alias="pointsEarned")
    receipt_80g_sent: bool = Field(..., alias="receipt80GSent")


class PointsHistoryResponse(_Response):
    ledger: list[LedgerEntry]


class PointInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    point_value: Decimal = Field(..., alias="pointValue")
    donation_percent: Decimal = Field(..., alias="donationPercent")
    referral_percent: Decimal = Field(..., alias="referralPercent")
    quiz_percent: Decimal = Field(..., alias="quizPercent")
    ticket_price: Decimal = Field(..., alias="ticketPrice")


class MeResponse(_Response):
    user: User
    wallet: Wallet
    referral_stats: ReferralStats = Field(..., alias="referralStats")
    recent_donations: list[Donation] = Field(default_factory=list, alias="recentDonations")
    recent_points: list[LedgerEntry] = Field(default_factory=list, alias="recentPoints")
    point_info: PointInfo = Field(..., alias="pointInfo")


class ReferralListResponse(_Response):
    referral_code: Optional[str] = Field(default=None, alias="referralCode")
    referrals: list[Referral]
    stats: ReferralStats


class ReferralResponse(_Response):
    referral: Referral


class ApplyWalletResponse(_Response):
    applied: Decimal


class MemberResponse(_Response):
    user: User
    session_token: Optional[str] = Field(default=None, alias="sessionToken")


class TaskListItem(BaseModel):
    task: SocialTask
    completed: bool


class TaskListResponse(_Response):
    tasks: list[TaskListItem]


class QuizResponse(_Response):
    quiz: Quiz


class ParticipationResponse(_Response):
    participation: QuizParticipation


class MembershipFeeResponse(_Response):
    txn_id: str = Field(..., alias="txnId")
    fee: MembershipFee
    message: str


class DonationResponse(_Response):
    donation: Donation


class AdminOverview(BaseModel):
    members: int
    active_members: int
    total_points: Decimal
    total_donations_count: int
    total_donations_amount: Decimal
    total_referrals: int
    active_referrals: int
    total_tickets_sold: int


class AdminOverviewResponse(_Response):
    totals: AdminOverview
