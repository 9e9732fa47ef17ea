"""Auth request and response schemas. Field aliases match the camelCase JSON the frontends send."""
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from app.models.user import User, UserRole, display_name


class _Request(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    @field_validator("otp", mode="before", check_fields=False)
    @classmethod
    def otp_as_text(cls, v):
        # Some clients post the code as a JSON number
        return str(v) if isinstance(v, int) else v


class SignupOtpRequest(_Request):
    full_name: str | None = Field(default=None, alias="fullName")
    email: EmailStr | None = None
    password: str | None = None


class OtpVerifyRequest(_Request):
    email: EmailStr | None = None
    otp: str | None = None


class UserLogin(_Request):
    email: EmailStr | None = None
    password: str | None = None


class EmailRequest(_Request):
    email: EmailStr | None = None


class PasswordResetRequest(_Request):
    email: EmailStr | None = None
    otp: str | None = None
    new_password: str | None = Field(default=None, alias="newPassword")


class UserResponse(BaseModel):
    id: int
    name: str
    email: str
    role: UserRole

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(id=user.id, name=display_name(user), email=user.email, role=user.role or UserRole.user)


class Token(BaseModel):
    token: str
    user: UserResponse


class SignupResponse(Token):
    message: str = "Account created successfully"


class MessageResponse(BaseModel):
    message: str


class ErrorResponse(BaseModel):
    message: str
    code: str
    retry_after_seconds: int | None = Field(default=None, alias="retryAfterSeconds")
