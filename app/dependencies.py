"""Shared dependencies: settings, DB session, OTP manager, email sender, current user."""
from datetime import timedelta

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from app.config import Settings
from app.database import get_db
from app.models.user import User
from app.services.audit_log import ClientInfo
from app.services.auth import decode_token_with_error
from app.services.exceptions import InvalidTokenError, UnauthorizedError
from app.services.notifications import EmailSender
from app.services.otp import OtpManager

security = HTTPBearer(auto_error=False)


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_email_sender(request: Request) -> EmailSender:
    return request.app.state.email_sender


def get_otp_manager(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> OtpManager:
    return OtpManager(
        db,
        ttl=timedelta(minutes=settings.otp_ttl_minutes),
        hash_rounds=settings.bcrypt_rounds,
    )


def get_client_info(request: Request) -> ClientInfo:
    ip = request.client.host if request.client else None
    ua = (request.headers.get("user-agent") or "").strip() or None
    return ClientInfo(ip_address=ip, user_agent=ua)


def get_current_user(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> User:
    if not credentials:
        raise UnauthorizedError()
    token_str = (credentials.credentials or "").strip()
    payload, _ = decode_token_with_error(token_str, settings)
    if not payload:
        raise InvalidTokenError()
    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise InvalidTokenError("Invalid token")
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise InvalidTokenError("User not found")
    return user
