"""Authentication router: account creation and token issuance."""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from tasksync.db.config import get_session
from tasksync.middleware.auth import create_access_token
from tasksync.models.user import User
from tasksync.schemas.auth import SignInRequest, SignUpRequest, TokenResponse
from tasksync.services.passwords import hash_password, verify_password
from tasksync.utils.logger import get_logger

router = APIRouter(tags=["Authentication"])  # No prefix since main.py adds /auth

logger = get_logger("tasksync.auth")


def _token_for(user: User) -> TokenResponse:
    return TokenResponse(
        token=create_access_token(user.id, user.email),
        user_id=user.id,
        email=user.email,
        plan=user.plan,
    )


@router.post("/sign-up", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def sign_up(request: SignUpRequest, session: Session = Depends(get_session)):
    email = request.email.lower()
    existing = session.exec(select(User).where(User.email == email)).first()
    if existing:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="User with this email already exists"
        )

    user = User(email=email, name=request.name, password_hash=hash_password(request.password))
    session.add(user)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="User with this email already exists"
        )
    session.refresh(user)
    logger.info("User signed up", user_id=user.id)
    return _token_for(user)


@router.post("/sign-in", response_model=TokenResponse)
async def sign_in(request: SignInRequest, session: Session = Depends(get_session)):
    user = session.exec(select(User).where(User.email == request.email.lower())).first()
    if not user or not verify_password(request.password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password"
        )
    logger.info("User signed in", user_id=user.id)
    return _token_for(user)
