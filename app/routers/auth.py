"""Auth routes: OTP signup, password and OTP login, email verification, password reset."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.config import Settings
from app.database import get_db
from app.dependencies import (
    get_app_settings,
    get_client_info,
    get_current_user,
    get_email_sender,
    get_otp_manager,
)
from app.models.user import User
from app.schemas.auth import (
    EmailRequest,
    ErrorResponse,
    MessageResponse,
    OtpVerifyRequest,
    PasswordResetRequest,
    SignupOtpRequest,
    SignupResponse,
    Token,
    UserLogin,
    UserResponse,
)
from app.services import accounts
from app.services.audit_log import ClientInfo
from app.services.notifications import EmailSender
from app.services.otp import OtpManager

router = APIRouter(prefix="/auth", tags=["auth"])

_THROTTLED = {429: {"model": ErrorResponse, "description": "OTP already sent; retry later"}}


def _token(grant: accounts.SessionGrant) -> Token:
    return Token(token=grant.token, user=UserResponse.from_user(grant.user))


@router.post("/request-otp", response_model=MessageResponse, responses=_THROTTLED)
@router.post("/register/otp", response_model=MessageResponse, responses=_THROTTLED, include_in_schema=False)
def request_signup_otp(
    data: SignupOtpRequest,
    db: Session = Depends(get_db),
    otp: OtpManager = Depends(get_otp_manager),
    sender: EmailSender = Depends(get_email_sender),
    settings: Settings = Depends(get_app_settings),
):
    message = accounts.request_signup_otp(
        db, otp, sender, settings, data.full_name, data.email, data.password
    )
    return MessageResponse(message=message)


@router.post("/verify-otp", response_model=SignupResponse, status_code=201)
def verify_signup_otp(
    data: OtpVerifyRequest,
    db: Session = Depends(get_db),
    otp: OtpManager = Depends(get_otp_manager),
    settings: Settings = Depends(get_app_settings),
    client: ClientInfo = Depends(get_client_info),
):
    grant = accounts.verify_signup_otp(db, otp, settings, data.email, data.otp, client=client)
    return SignupResponse(token=grant.token, user=UserResponse.from_user(grant.user))


@router.post("/login", response_model=Token)
def login(
    data: UserLogin,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    client: ClientInfo = Depends(get_client_info),
):
    return _token(accounts.login(db, settings, data.email, data.password, client=client))


@router.post("/login-otp", response_model=MessageResponse)
def request_login_otp(
    data: EmailRequest,
    db: Session = Depends(get_db),
    otp: OtpManager = Depends(get_otp_manager),
    sender: EmailSender = Depends(get_email_sender),
):
    return MessageResponse(message=accounts.request_login_otp(db, otp, sender, data.email))


@router.post("/login-otp/verify", response_model=Token)
def verify_login_otp(
    data: OtpVerifyRequest,
    db: Session = Depends(get_db),
    otp: OtpManager = Depends(get_otp_manager),
    settings: Settings = Depends(get_app_settings),
    client: ClientInfo = Depends(get_client_info),
):
    return _token(accounts.verify_login_otp(db, otp, settings, data.email, data.otp, client=client))


@router.post("/verify-email", response_model=Token)
def verify_email(
    data: OtpVerifyRequest,
    db: Session = Depends(get_db),
    otp: OtpManager = Depends(get_otp_manager),
    settings: Settings = Depends(get_app_settings),
    client: ClientInfo = Depends(get_client_info),
):
    """Verify an existing, unverified account with the code sent by /login-otp or /resend-verification."""
    return _token(accounts.verify_email(db, otp, settings, data.email, data.otp, client=client))


@router.post("/resend-verification", response_model=MessageResponse, responses=_THROTTLED)
def resend_verification(
    data: EmailRequest,
    db: Session = Depends(get_db),
    otp: OtpManager = Depends(get_otp_manager),
    sender: EmailSender = Depends(get_email_sender),
):
    return MessageResponse(message=accounts.resend_verification(db, otp, sender, data.email))


@router.post("/forgot-password/request-otp", response_model=MessageResponse, responses=_THROTTLED)
def request_password_reset(
    data: EmailRequest,
    db: Session = Depends(get_db),
    otp: OtpManager = Depends(get_otp_manager),
    sender: EmailSender = Depends(get_email_sender),
):
    return MessageResponse(message=accounts.request_password_reset(db, otp, sender, data.email))


@router.post("/forgot-password/reset", response_model=MessageResponse)
def reset_password(
    data: PasswordResetRequest,
    db: Session = Depends(get_db),
    otp: OtpManager = Depends(get_otp_manager),
    settings: Settings = Depends(get_app_settings),
    client: ClientInfo = Depends(get_client_info),
):
    message = accounts.reset_password(
        db, otp, settings, data.email, data.otp, data.new_password, client=client
    )
    return MessageResponse(message=message)


@router.get("/me", response_model=UserResponse)
def me(current_user: User = Depends(get_current_user)):
    return UserResponse.from_user(current_user)
