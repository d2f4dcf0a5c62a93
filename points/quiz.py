"""
Quiz tickets, enrollment and prize draw.

Selling a ticket earns the seller quiz points. Enrolling in a quiz earns the
participant quiz points and, through a referral code, earns the referrer
referral points. The draw pays prizes into winners' cash balance only.
"""

from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional
from uuid import UUID

from loguru import logger

from .config import Settings, settings
from .errors import (
    AlreadyCompletedError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)
from .models import (
    ZERO,
    AnswerInput,
    ParticipationStatus,
    PointsSource,
    Quiz,
    QuizParticipation,
    QuizPrizes,
    QuizQuestion,
    QuizStatus,
    QuizTicket,
    QuizType,
    QuizWinner,
)
from .otp import utcnow
from .storage import DuplicateKeyError, InMemoryStorage
from .wallet import USERS, WalletService, reward_points

QUIZ_TICKETS = "quiz_tickets"
QUIZZES = "quizzes"
QUIZ_PARTICIPATIONS = "quiz_participations"


class QuizTicketSeller:
    def __init__(
        self,
        storage: Optional[InMemoryStorage] = None,
        config: Optional[Settings] = None,
        wallet: Optional[WalletService] = None,
    ):
        self.storage = storage or InMemoryStorage()
        self.config = config or settings
        self.wallet = wallet or WalletService(self.storage, self.config)

    def sell(
        self,
        seller_id: UUID,
        buyer_name: Optional[str] = None,
        buyer_contact: Optional[str] = None,
        ticket_price: Optional[Decimal] = None,
    ) -> QuizTicket:
        price = ticket_price or self.config.quiz_ticket_price
        if price <= 0:
            raise ValidationError("Ticket price must be positive")

        _, points = reward_points(price, self.config.quiz_ticket_points_percent, self.config.point_value)
        with self.storage.transaction():
            self.wallet.get_user(seller_id)
            data = self.storage.insert(QUIZ_TICKETS, {
                "seller_id": seller_id,
                "buyer_name": buyer_name,
                "buyer_contact": buyer_contact,
                "ticket_price": price,
                "points_earned": points,
                "sold_at": utcnow(),
            })
            self.wallet.credit(
                seller_id,
                points,
                PointsSource.QUIZ,
                f"Quiz ticket sold to {buyer_name or 'buyer'} (₹{price}) → {points} points",
                reference_id=data["id"],
            )
        return QuizTicket(**data)

    def tickets_sold(self, seller_id: UUID) -> list[QuizTicket]:
        docs = self.storage.find(QUIZ_TICKETS, {"seller_id": seller_id}, sort=[("sold_at", -1)])
        return [QuizTicket(**d) for d in docs]


class QuizService:
    def __init__(
        self,
        storage: Optional[InMemoryStorage] = None,
        config: Optional[Settings] = None,
        wallet: Optional[WalletService] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.storage = storage or InMemoryStorage()
        self.config = config or settings
        self.wallet = wallet or WalletService(self.storage, self.config)
        self.clock = clock

    def create_quiz(
        self,
        quiz_ref: str,
        title: str,
        entry_fee: Decimal,
        questions: Optional[list[QuizQuestion]] = None,
        prizes: Optional[QuizPrizes] = None,
        description: Optional[str] = None,
        type: QuizType = QuizType.MONTHLY,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        result_date: Optional[datetime] = None,
    ) -> Quiz:
        if entry_fee is None or entry_fee <= 0:
            raise ValidationError("Entry fee must be positive")
        questions = questions or []
        prizes = prizes or QuizPrizes()
        q_nos = [q.q_no for q in questions]
        if len(set(q_nos)) != len(q_nos):
            raise ValidationError("Question numbers must be unique")
        for q in questions:
            if q.options and q.correct_answer >= len(q.options):
                raise ValidationError(f"Question {q.q_no} has no option {q.correct_answer}")

        try:
            data = self.storage.insert(QUIZZES, {
                "quiz_ref": quiz_ref,
                "title": title,
                "description": description,
                "type": type,
                "entry_fee": entry_fee,
                "prize_pool": sum(prizes.by_rank(), ZERO),
                "questions": [q.model_dump() for q in questions],
                "prizes": prizes.model_dump(),
                "start_date": start_date,
                "end_date": end_date,
                "result_date": result_date,
                "status": QuizStatus.UPCOMING,
                "total_participants": 0,
                "total_collection": ZERO,
                "winners": [],
            })
        except DuplicateKeyError as e:
            raise ValidationError(f"Quiz {quiz_ref} already exists") from e

        logger.info(f"Quiz {quiz_ref} created with {len(questions)} questions")
        return Quiz(**data)

    def get_quiz(self, quiz_ref: str) -> Quiz:
        data = self.storage.find_one(QUIZZES, {"quiz_ref": quiz_ref})
        if not data:
            raise NotFoundError(f"Quiz {quiz_ref} not found")
        return Quiz(**data)

    def set_status(self, quiz_ref: str, status: QuizStatus) -> Quiz:
        quiz = self.get_quiz(quiz_ref)
        if not quiz.can_transition_to(status) or status == QuizStatus.RESULT_DECLARED:
            raise InvalidStateTransitionError(
                f"Cannot move quiz from {quiz.status.value} to {status.value}"
            )
        data = self.storage.find_one_and_update(
            QUIZZES, {"id": quiz.id, "status": quiz.status}, set={"status": status}
        )
        if data is None:
            raise InvalidStateTransitionError(f"Quiz {quiz_ref} changed state concurrently")
        logger.info(f"Quiz {quiz_ref}: {quiz.status.value} -> {status.value}")
        return Quiz(**data)

    def get_participation(self, quiz_ref: str, user_id: UUID) -> QuizParticipation:
        quiz = self.get_quiz(quiz_ref)
        data = self.storage.find_one(QUIZ_PARTICIPATIONS, {"quiz_id": quiz.id, "user_id": user_id})
        if not data:
            raise NotFoundError(f"Not enrolled in quiz {quiz_ref}")
        return QuizParticipation(**data)

    def enroll(
        self,
        quiz_ref: str,
        user_id: UUID,
        amount_paid: Decimal,
        payment_id: Optional[str] = None,
        referral_code: Optional[str] = None,
    ) -> QuizParticipation:
        quiz = self.get_quiz(quiz_ref)
        if quiz.status != QuizStatus.ACTIVE:
            raise ValidationError(f"Quiz {quiz_ref} is not open for enrollment")
        if amount_paid is None or amount_paid < quiz.entry_fee:
            raise ValidationError(f"Entry fee of ₹{quiz.entry_fee} required")

        _, points = reward_points(
            amount_paid, self.config.quiz_ticket_points_percent, self.config.point_value
        )
        referrer = self._resolve_referrer(referral_code, user_id)

        with self.storage.transaction():
            user = self.wallet.get_user(user_id)
            if self.storage.count(QUIZ_PARTICIPATIONS, {"quiz_id": quiz.id, "user_id": user_id}):
                raise AlreadyCompletedError(f"Already enrolled in quiz {quiz_ref}")

            seq = self.storage.next_sequence(f"quiz:{quiz_ref}")
            try:
                data = self.storage.insert(QUIZ_PARTICIPATIONS, {
                    "quiz_id": quiz.id,
                    "quiz_ref": quiz_ref,
                    "user_id": user_id,
                    "member_id": user.member_id,
                    "name": user.name,
                    "enrollment_number": f"{self.config.org_prefix}-{quiz_ref}-{seq:05d}",
                    "payment_id": payment_id,
                    "amount_paid": amount_paid,
                    "points_earned": points,
                    "answers": [],
                    "score": ZERO,
                    "quiz_submitted": False,
                    "submitted_at": None,
                    "referred_by": referral_code if referrer else None,
                    "referrer_id": referrer["id"] if referrer else None,
                    "status": ParticipationStatus.ENROLLED,
                    "prize_won": ZERO,
                })
            except DuplicateKeyError as e:
                raise AlreadyCompletedError(f"Already enrolled in quiz {quiz_ref}") from e

            self.storage.update_one(
                QUIZZES,
                {"id": quiz.id},
                inc={"total_participants": 1, "total_collection": amount_paid},
            )
            self.wallet.credit(
                user_id,
                points,
                PointsSource.QUIZ,
                f"Enrolled in quiz {quiz_ref} (₹{amount_paid}) → {points} points",
                reference_id=data["id"],
            )
            if referrer:
                _, referral_points = reward_points(
                    amount_paid, self.config.referral_points_percent, self.config.point_value
                )
                self.wallet.credit(
                    referrer["id"],
                    referral_points,
                    PointsSource.REFERRALS,
                    f"Quiz referral: {user.member_id} enrolled in {quiz_ref} → {referral_points} points",
                    reference_id=data["id"],
                )

        logger.info(f"{user.member_id} enrolled in quiz {quiz_ref} as {data['enrollment_number']}")
        return QuizParticipation(**data)

    def _resolve_referrer(self, referral_code: Optional[str], user_id: UUID) -> Optional[dict]:
        if not referral_code:
            return None
        referrer = self.storage.find_one(USERS, {"referral_code": referral_code})
        if not referrer or referrer["id"] == user_id:
            logger.warning(f"Ignoring quiz referral code {referral_code!r}")
            return None
        return referrer

    def submit(self, quiz_ref: str, user_id: UUID, answers: list[AnswerInput]) -> QuizParticipation:
        quiz = self.get_quiz(quiz_ref)
        if quiz.status != QuizStatus.ACTIVE:
            raise ValidationError(f"Quiz {quiz_ref} is not accepting answers")

        by_number = {q.q_no: q for q in quiz.questions}
        graded: dict[int, dict] = {}
        score = ZERO
        for answer in answers:
            question = by_number.get(answer.q_no)
            if question is None or answer.q_no in graded:
                continue
            is_correct = answer.selected == question.correct_answer
            if is_correct:
                score += question.points
            graded[answer.q_no] = {
                "q_no": answer.q_no,
                "selected": answer.selected,
                "is_correct": is_correct,
            }

        data = self.storage.find_one_and_update(
            QUIZ_PARTICIPATIONS,
            {"quiz_id": quiz.id, "user_id": user_id, "quiz_submitted": False},
            set={
                "answers": list(graded.values()),
                "score": score,
                "quiz_submitted": True,
                "submitted_at": self.clock(),
                "status": ParticipationStatus.SUBMITTED,
            },
        )
        if data is None:
            self.get_participation(quiz_ref, user_id)
            raise AlreadyCompletedError("Quiz already submitted")

        logger.info(f"{data['member_id']} submitted quiz {quiz_ref}: score {score}")
        return QuizParticipation(**data)

    def draw(self, quiz_ref: str) -> Quiz:
        quiz = self.get_quiz(quiz_ref)
        if quiz.status != QuizStatus.CLOSED:
            raise InvalidStateTransitionError(f"Quiz must be closed before the draw (is {quiz.status.value})")

        participants = self.storage.find(QUIZ_PARTICIPATIONS, {"quiz_id": quiz.id})
        submitted = [p for p in participants if p["quiz_submitted"]]
        submitted.sort(key=lambda p: (-p["score"], p["submitted_at"]))

        winners = []
        winner_ids = set()
        prizes = quiz.prizes.by_rank()
        with self.storage.transaction():
            for rank, participant in enumerate(submitted[:len(prizes)], start=1):
                prize = prizes[rank - 1]
                if prize <= 0:
                    continue
                self.wallet.credit_wallet(participant["user_id"], balance_inr=prize)
                self.storage.update_one(
                    QUIZ_PARTICIPATIONS,
                    {"id": participant["id"]},
                    set={"status": ParticipationStatus.WON, "prize_won": prize},
                )
                winner_ids.add(participant["id"])
                winners.append(QuizWinner(
                    rank=rank,
                    user_id=participant["user_id"],
                    member_id=participant["member_id"],
                    name=participant["name"],
                    enrollment_number=participant["enrollment_number"],
                    prize_amount=prize,
                    score=participant["score"],
                ))

            for participant in participants:
                if participant["id"] not in winner_ids:
                    self.storage.update_one(
                        QUIZ_PARTICIPATIONS,
                        {"id": participant["id"]},
                        set={"status": ParticipationStatus.LOST},
                    )

            data = self.storage.find_one_and_update(
                QUIZZES,
                {"id": quiz.id, "status": QuizStatus.CLOSED},
                set={
                    "status": QuizStatus.RESULT_DECLARED,
                    "winners": [w.model_dump() for w in winners],
                },
            )
            if data is None:
                raise InvalidStateTransitionError(f"Quiz {quiz_ref} results already declared")

        logger.info(f"Quiz {quiz_ref} draw complete: {len(winners)} winner(s)")
        return Quiz(**data)
