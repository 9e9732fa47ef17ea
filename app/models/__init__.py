"""
All SQLAlchemy models. Schema is the source of truth for new DBs.
Database.create_all() creates every table; no migration scripts needed for fresh installs.
"""
from app.models.user import User, UserRole, UserStatus
from app.models.pending_signup import PendingSignup
from app.models.otp_code import OtpCode, OtpPurpose
from app.models.audit_log import AuditLog

__all__ = [
    "User",
    "UserRole",
    "UserStatus",
    "PendingSignup",
    "OtpCode",
    "OtpPurpose",
    "AuditLog",
]
