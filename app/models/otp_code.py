"""One-time passcodes. Only the bcrypt hash is stored; rows are never deleted."""
import enum

from sqlalchemy import Column, Integer, String, DateTime, Enum as SQLEnum, Index

from app.database import Base


class OtpPurpose(str, enum.Enum):
    register = "register"
    login = "login"
    verify = "verify"  # email verification of an existing, unverified user
    reset = "reset"


class OtpCode(Base):
    __tablename__ = "otp_codes"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), nullable=False)
    purpose = Column(SQLEnum(OtpPurpose), nullable=False)
    code_hash = Column(String(255), nullable=False)

    expires_at = Column(DateTime(timezone=True), nullable=False)
    # Null while the code is active; set on successful verification or when superseded
    used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_otp_codes_email_purpose_created", "email", "purpose", "created_at"),
    )
