"""Authentication routes."""

from typing import Annotated

import asyncpg
from fastapi import APIRouter, Depends, Request, status
from pydantic import Field, field_validator

from app.api.deps import CurrentUser
from app.api.schemas import CamelModel, UserOut, dump
from app.core.database import get_db
from app.core.exceptions import Conflict, Forbidden, Unauthenticated
from app.core.logging_config import get_logger, security_logger
from app.core.responses import ErrorResponse, message_response
from app.core.security import create_user_token, hash_password, verify_password
from app.core.validation import (
    EmailValidator,
    PasswordValidator,
    UsernameValidator,
    sanitize_string,
)
from app.services.users import create_user, get_user_by_login, public_user, user_exists

router = APIRouter(
    prefix="/auth",
    tags=["Authentication"],
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
)
logger = get_logger(__name__)


class RegisterRequest(CamelModel):
    """User registration request with validation."""

    username: str = Field(..., description="Username (3-50 characters)")
    email: str = Field(..., max_length=255)
    password: str = Field(..., description="Password (min 6 characters)")
    role: str | None = Field(None, description="Ignored unless 'admin', which is refused")

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        """Validate username format."""
        v = sanitize_string(v, max_length=100)
        is_valid, error = UsernameValidator.validate(v)
        if not is_valid:
            raise ValueError(error)
        return v

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        v = sanitize_string(v, max_length=255).lower()
        is_valid, error = EmailValidator.validate(v)
        if not is_valid:
            raise ValueError(error)
        return v

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        """Validate password length."""
        is_valid, error = PasswordValidator.validate(v)
        if not is_valid:
            raise ValueError(error)
        return v


class LoginRequest(CamelModel):
    """User login request: username or email plus password."""

    username: str = Field(..., max_length=255)
    password: str = Field(..., max_length=128)

    @field_validator("username")
    @classmethod
    def sanitize_field(cls, v: str) -> str:
        return sanitize_string(v, max_length=255)


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(
    request: RegisterRequest,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
):
    """
    Register a new voter account.

    The role is always 'user'; asking for 'admin' is refused.
    """
    if request.role == "admin":
        security_logger.log_unauthorized_access(
            "/auth/register", reason=f"admin self-registration by {request.username}"
        )
        raise Forbidden("Cannot register admin users through this endpoint")

    if await user_exists(conn, request.username, request.email):
        raise Conflict("User with this username or email already exists")

    try:
        user = await create_user(
            conn,
            username=request.username,
            email=request.email,
            password_hash=hash_password(request.password),
            role="user",
        )
    except asyncpg.UniqueViolationError as e:
        raise Conflict("User with this username or email already exists") from e
    security_logger.log_user_registration(user["username"], user["role"])

    token = create_user_token(user)
    security_logger.log_token_creation(user["id"])

    return message_response(
        "User registered successfully",
        user=dump(UserOut, public_user(user)),
        token=token,
    )


@router.post("/login")
async def login(
    request: LoginRequest,
    req: Request,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
):
    """Exchange username-or-email and password for an access token."""
    client_ip = req.client.host if req.client else None

    user = await get_user_by_login(conn, request.username)
    if not user or not verify_password(request.password, user["password_hash"]):
        security_logger.log_login_attempt(
            request.username,
            success=False,
            ip_address=client_ip,
            reason="unknown user" if not user else "wrong password",
        )
        raise Unauthenticated("Invalid credentials")

    security_logger.log_login_attempt(request.username, success=True, ip_address=client_ip)
    token = create_user_token(user)
    security_logger.log_token_creation(user["id"])

    return message_response(
        "Login successful", user=dump(UserOut, public_user(user)), token=token
    )


@router.get("/profile")
async def get_profile(current_user: CurrentUser):
    """Get the authenticated user's profile."""
    return message_response(
        "Profile retrieved successfully", user=dump(UserOut, current_user)
    )


@router.get("/verify")
async def verify_token(current_user: CurrentUser):
    """Check that the bearer token is still valid."""
    return message_response(
        "Token is valid", valid=True, user=dump(UserOut, current_user)
    )
