from typing import Optional, Union
from uuid import UUID

from fastapi import APIRouter, Depends, FastAPI, Header, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from .errors import PermissionDeniedError, PointsServiceError, ValidationError
from .logger import redact, setup_logging
from .models import (
    ActivateReferralRequest,
    ActivateReferralResponse,
    AdminOverviewResponse,
    ApplyWalletRequest,
    ApplyWalletResponse,
    CompleteTaskRequest,
    CompleteTaskResponse,
    CreateMemberRequest,
    CreateQuizRequest,
    DonationOtpRequest,
    DonationResponse,
    EnrollQuizRequest,
    FeeStatusRequest,
    KycUpdateRequest,
    MeResponse,
    MemberResponse,
    MembershipFeeRequest,
    MembershipFeeResponse,
    OtpSendResponse,
    OtpVerifyResponse,
    ParticipationResponse,
    PayDonationRequest,
    PayDonationResponse,
    PointInfo,
    PointsHistoryResponse,
    PointsResponse,
    QuizResponse,
    QuizStatusRequest,
    RecordDonationRequest,
    ReferralListResponse,
    ReferralResponse,
    RegisterReferralRequest,
    SellTicketRequest,
    SubmitQuizRequest,
    TaskListResponse,
    User,
    UserRole,
    WalletReconciliation,
)
from .services import Services, build_services

router = APIRouter()


def get_services(request: Request) -> Services:
    return request.app.state.services


def current_user(
    request: Request,
    x_session_token: Optional[str] = Header(default=None),
    services: Services = Depends(get_services),
) -> User:
    token = request.cookies.get("session") or x_session_token
    return services.members.resolve_session(token)


def require_admin(user: User = Depends(current_user)) -> User:
    if user.role != UserRole.ADMIN:
        raise PermissionDeniedError("Admin access required")
    return user


@router.get("/health", tags=["Health"])
def health_check():
    return {"status": "healthy", "service": "fwf-points"}


# ---------- Member ----------

@router.get("/api/member/me", response_model=MeResponse, tags=["Member"])
def get_me(user: User = Depends(current_user), services: Services = Depends(get_services)):
    config = services.config
    return MeResponse(
        user=user,
        wallet=user.wallet,
        referral_stats=services.referrals.stats(user.id),
        recent_donations=services.donations.list_donations(user.id, limit=5),
        recent_points=services.wallet.points_history(user.id, limit=10),
        point_info=PointInfo(
            point_value=config.point_value,
            donation_percent=config.donation_points_percent,
            referral_percent=config.referral_points_percent,
            quiz_percent=config.quiz_ticket_points_percent,
            ticket_price=config.quiz_ticket_price,
        ),
    )


@router.post("/api/member/record-donation", response_model=PointsResponse, tags=["Member"])
def record_donation(
    request: RecordDonationRequest,
    user: User = Depends(current_user),
    services: Services = Depends(get_services),
):
    donation = services.donations.record_for_member(
        user.id,
        request.amount,
        donor_name=request.donor_name,
        donor_contact=request.donor_contact,
        verified_token=request.verified_token,
    )
    return PointsResponse(
        points=donation.points_earned,
        message=f"₹{donation.amount} donation recorded. You earned {donation.points_earned} points!",
    )


@router.post("/api/member/sell-ticket", response_model=PointsResponse, tags=["Member"])
def sell_ticket(
    request: SellTicketRequest,
    user: User = Depends(current_user),
    services: Services = Depends(get_services),
):
    ticket = services.tickets.sell(user.id, request.buyer_name, request.buyer_contact, request.ticket_price)
    return PointsResponse(
        points=ticket.points_earned,
        message=f"Ticket sold! You earned {ticket.points_earned} points.",
    )


@router.get("/api/member/referrals", response_model=ReferralListResponse, tags=["Member"])
def list_referrals(user: User = Depends(current_user), services: Services = Depends(get_services)):
    return ReferralListResponse(
        referral_code=user.referral_code,
        referrals=services.referrals.list_referrals(user.id),
        stats=services.referrals.stats(user.id),
    )


@router.post("/api/member/register-referral", tags=["Member"])
def register_referral(request: RegisterReferralRequest, services: Services = Depends(get_services)):
    services.referrals.register_referral(request.referral_code, request.new_user_id)
    return {"ok": True}


@router.post("/api/member/activate-referral", response_model=ActivateReferralResponse, tags=["Member"])
def activate_referral(
    request: ActivateReferralRequest,
    admin: User = Depends(require_admin),
    services: Services = Depends(get_services),
):
    result = services.referrals.activate(request.referred_member_id, request.payment_amount)
    return ActivateReferralResponse(points=result.points, activated=result.activated)


@router.get("/api/member/tasks", response_model=TaskListResponse, tags=["Member"])
def list_tasks(user: User = Depends(current_user), services: Services = Depends(get_services)):
    return TaskListResponse(tasks=services.tasks.list_tasks(user.id))


@router.post("/api/member/complete-task", response_model=CompleteTaskResponse, tags=["Member"])
def complete_task(
    request: CompleteTaskRequest,
    user: User = Depends(current_user),
    services: Services = Depends(get_services),
):
    result = services.tasks.complete(
        user.id,
        request.task_id,
        request.photo_url,
        latitude=request.latitude,
        longitude=request.longitude,
        location_address=request.location_address,
    )
    return CompleteTaskResponse(
        points=result.points,
        message=f"Task completed! You earned {result.points} points.",
        completion=result.completion,
        post=result.post,
    )


@router.get("/api/member/points-history", response_model=PointsHistoryResponse, tags=["Member"])
def points_history(user: User = Depends(current_user), services: Services = Depends(get_services)):
    return PointsHistoryResponse(ledger=services.wallet.points_history(user.id))


@router.post("/api/member/apply-wallet", response_model=ApplyWalletResponse, tags=["Member"])
def apply_wallet(
    request: ApplyWalletRequest,
    user: User = Depends(current_user),
    services: Services = Depends(get_services),
):
    return ApplyWalletResponse(applied=services.wallet.apply_wallet(user.id, request.amount))


# ---------- Public donations ----------

@router.post(
    "/api/donation-otp",
    response_model=Union[OtpSendResponse, OtpVerifyResponse],
    tags=["Donations"],
)
def donation_otp(request: DonationOtpRequest, services: Services = Depends(get_services)):
    if request.action == "send":
        return services.otp.send(request.email, request.mobile, request.name, request.amount)
    if request.action == "verify":
        return services.otp.verify(request.email, request.otp)
    raise ValidationError("Invalid action. Use 'send' or 'verify'.")


@router.post("/api/pay/donation", response_model=PayDonationResponse, tags=["Donations"])
def pay_donation(request: PayDonationRequest, services: Services = Depends(get_services)):
    return services.donations.pay(request)


# ---------- Quiz ----------

@router.post("/api/quiz/{quiz_ref}/enroll", response_model=ParticipationResponse, tags=["Quiz"])
def enroll_quiz(
    quiz_ref: str,
    request: EnrollQuizRequest,
    user: User = Depends(current_user),
    services: Services = Depends(get_services),
):
    participation = services.quizzes.enroll(
        quiz_ref, user.id, request.amount_paid, request.payment_id, request.referral_code
    )
    return ParticipationResponse(participation=participation)


@router.post("/api/quiz/{quiz_ref}/submit", response_model=ParticipationResponse, tags=["Quiz"])
def submit_quiz(
    quiz_ref: str,
    request: SubmitQuizRequest,
    user: User = Depends(current_user),
    services: Services = Depends(get_services),
):
    return ParticipationResponse(participation=services.quizzes.submit(quiz_ref, user.id, request.answers))


# ---------- Admin ----------

@router.post(
    "/api/admin/quiz",
    response_model=QuizResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Admin"],
)
def create_quiz(
    request: CreateQuizRequest,
    admin: User = Depends(require_admin),
    services: Services = Depends(get_services),
):
    quiz = services.quizzes.create_quiz(
        request.quiz_ref,
        request.title,
        request.entry_fee,
        questions=request.questions,
        prizes=request.prizes,
        description=request.description,
        type=request.type,
        start_date=request.start_date,
        end_date=request.end_date,
        result_date=request.result_date,
    )
    return QuizResponse(quiz=quiz)


@router.post("/api/admin/quiz/{quiz_ref}/status", response_model=QuizResponse, tags=["Admin"])
def set_quiz_status(
    quiz_ref: str,
    request: QuizStatusRequest,
    admin: User = Depends(require_admin),
    services: Services = Depends(get_services),
):
    return QuizResponse(quiz=services.quizzes.set_status(quiz_ref, request.status))


@router.post("/api/admin/quiz/{quiz_ref}/draw", response_model=QuizResponse, tags=["Admin"])
def draw_quiz(
    quiz_ref: str,
    admin: User = Depends(require_admin),
    services: Services = Depends(get_services),
):
    return QuizResponse(quiz=services.quizzes.draw(quiz_ref))


@router.post("/api/admin/membership-fee", response_model=MembershipFeeResponse, tags=["Admin"])
def record_membership_fee(
    request: MembershipFeeRequest,
    admin: User = Depends(require_admin),
    services: Services = Depends(get_services),
):
    fee = services.membership.record_fee(
        request.member_id,
        request.amount,
        fee_type=request.fee_type,
        payment_mode=request.payment_mode,
        payment_ref=request.payment_ref,
        status=request.status,
        notes=request.notes,
        verified_by=admin.member_id,
    )
    return MembershipFeeResponse(txn_id=fee.txn_id, fee=fee, message="Fee record added!")


@router.post(
    "/api/admin/membership-fee/{txn_id}/status",
    response_model=MembershipFeeResponse,
    tags=["Admin"],
)
def update_membership_fee(
    txn_id: str,
    request: FeeStatusRequest,
    admin: User = Depends(require_admin),
    services: Services = Depends(get_services),
):
    fee = services.membership.update_status(txn_id, request.status, verified_by=admin.member_id)
    return MembershipFeeResponse(txn_id=fee.txn_id, fee=fee, message="Transaction updated")


@router.post(
    "/api/admin/members",
    response_model=MemberResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Admin"],
)
def create_member(
    request: CreateMemberRequest,
    admin: User = Depends(require_admin),
    services: Services = Depends(get_services),
):
    user = services.members.create_member(
        request.name, request.email, request.mobile, request.role, request.referral_code
    )
    return MemberResponse(user=user, session_token=services.members.open_session(user.id))


@router.delete("/api/admin/member/{member_id}", tags=["Admin"])
def delete_member(
    member_id: str,
    admin: User = Depends(require_admin),
    services: Services = Depends(get_services),
):
    services.members.delete_member(member_id)
    return {"ok": True, "message": f"Member {member_id} deleted"}


@router.post("/api/admin/referral/{referral_id}/expire", response_model=ReferralResponse, tags=["Admin"])
def expire_referral(
    referral_id: UUID,
    admin: User = Depends(require_admin),
    services: Services = Depends(get_services),
):
    return ReferralResponse(referral=services.referrals.expire(referral_id))


@router.post("/api/admin/donation/{donation_id}/kyc", response_model=DonationResponse, tags=["Admin"])
def update_donation_kyc(
    donation_id: str,
    request: KycUpdateRequest,
    admin: User = Depends(require_admin),
    services: Services = Depends(get_services),
):
    donation = services.donations.update_kyc(donation_id, request.kyc_status, request.admin_notes)
    return DonationResponse(donation=donation)


@router.get("/api/admin/overview", response_model=AdminOverviewResponse, tags=["Admin"])
def admin_overview(admin: User = Depends(require_admin), services: Services = Depends(get_services)):
    return AdminOverviewResponse(totals=services.members.admin_overview())


@router.get(
    "/api/admin/wallet/{member_id}/reconcile",
    response_model=WalletReconciliation,
    tags=["Admin"],
)
def reconcile_wallet(
    member_id: str,
    admin: User = Depends(require_admin),
    services: Services = Depends(get_services),
):
    user = services.members.get_by_member_id(member_id)
    return services.wallet.reconcile(user.id)


async def points_error_handler(request: Request, exc: PointsServiceError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"ok": False, "error": str(exc)})


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [{"loc": list(e["loc"]), "msg": e["msg"]} for e in exc.errors()]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"ok": False, "error": "Invalid request", "details": details},
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.opt(exception=exc).error(
        f"Unhandled error on {request.method} {request.url.path} "
        f"headers={redact(dict(request.headers))}"
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"ok": False, "error": "Internal server error"},
    )


def create_app(services: Optional[Services] = None) -> FastAPI:
    services = services or build_services()
    setup_logging(services.config.log_level)
    services.tasks.seed_default_tasks()
    admin_token = services.members.ensure_admin()
    if admin_token and not services.config.admin_session_token:
        logger.warning(f"Admin created -> user: {services.config.admin_user} | session token: {admin_token}")

    app = FastAPI(
        title="FWF Points API",
        description="Member points, wallet and referral accounting",
        version="1.0.0",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.services = services
    app.add_exception_handler(PointsServiceError, points_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
