"""Authentication schemas."""
from typing import Optional

from pydantic import EmailStr, Field

from tasksync.schemas.task import CamelModel


class TokenResponse(CamelModel):
    """Response containing JWT token after sign in."""
    token: str
    user_id: str
    email: str
    plan: str


class SignUpRequest(CamelModel):
    """Sign up request body."""
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    name: Optional[str] = Field(None, max_length=255)


class SignInRequest(CamelModel):
    """Sign in request body."""
    email: EmailStr
    password: str
