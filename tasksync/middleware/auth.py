"""JWT authentication dependencies for FastAPI."""
from datetime import timedelta
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from jose import ExpiredSignatureError, JWTError, jwt
from pydantic import BaseModel
from sqlmodel import Session

from tasksync.config import SETTINGS
from tasksync.db.config import get_session
from tasksync.models.user import User
from tasksync.utils.logger import get_logger
from tasksync.utils.timestamps import utcnow

logger = get_logger("tasksync.auth")

ALGORITHM = "HS256"


class CurrentUser(BaseModel):
    """User information extracted from JWT."""
    user_id: str
    email: Optional[str] = None


def create_access_token(user_id: str, email: str) -> str:
    now = utcnow()
    payload = {
        "sub": user_id,
        "email": email,
        "iat": now,
        "exp": now + timedelta(days=SETTINGS.token_expire_days),
    }
    return jwt.encode(payload, SETTINGS.auth_secret, algorithm=ALGORITHM)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(request: Request) -> CurrentUser:
    """
    Validate JWT token from Authorization header and extract user information.

    Args:
        request: FastAPI request object to extract Authorization header

    Returns:
        CurrentUser with user_id and email from token

    Raises:
        HTTPException: If token is missing, invalid or expired
    """
    auth_header = request.headers.get("authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise _unauthorized("Missing or invalid Authorization header")

    token = auth_header[7:]  # Remove "Bearer " prefix

    try:
        payload = jwt.decode(token, SETTINGS.auth_secret, algorithms=[ALGORITHM])
    except ExpiredSignatureError:
        raise _unauthorized("Token has expired")
    except JWTError as e:
        raise _unauthorized(f"Invalid token: {str(e)}")

    user_id = payload.get("sub")
    if not user_id:
        raise _unauthorized("Invalid token: missing user ID")

    return CurrentUser(user_id=user_id, email=payload.get("email"))


def require_known_user(
    current_user: CurrentUser = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> CurrentUser:
    """The token must belong to a user that still exists."""
    if session.get(User, current_user.user_id) is None:
        logger.warning("Token for unknown user", user_id=current_user.user_id)
        raise _unauthorized("Unknown user")
    return current_user


def require_sync_entitlement(
    current_user: CurrentUser = Depends(require_known_user),
    session: Session = Depends(get_session),
) -> CurrentUser:
    """Sync is a paid feature; the user must hold the premium plan."""
    user = session.get(User, current_user.user_id)
    if SETTINGS.sync_requires_premium and not user.is_premium:
        logger.info("Sync denied: plan lacks sync", user_id=user.id, plan=user.plan)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Sync requires a premium subscription",
        )
    return current_user
