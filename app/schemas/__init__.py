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
