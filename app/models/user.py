"""User accounts."""
from sqlalchemy import Column, Integer, String, Enum as SQLEnum, DateTime, Boolean
from sqlalchemy.sql import func
from app.database import Base
import enum


class UserRole(str, enum.Enum):
    user = "user"
    seller = "seller"
    admin = "admin"


class UserStatus(str, enum.Enum):
    pending = "Pending"
    active = "Active"
    blocked = "Blocked"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)  # always lower-cased
    hashed_password = Column(String(255), nullable=False)
    role = Column(SQLEnum(UserRole), nullable=False, default=UserRole.user)

    full_name = Column(String(255), nullable=True)

    is_verified = Column(Boolean, default=False, nullable=False)
    # Stored as the display tags ("Pending", "Active", "Blocked")
    status = Column(
        SQLEnum(UserStatus, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=UserStatus.pending,
    )

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


def display_name(user: User) -> str:
    """Name shown to clients; the only place a missing name is defaulted."""
    return (user.full_name or "").strip() or "Unnamed"
