import logging

from fastapi import APIRouter, Depends, HTTPException, Response
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.rate_limit import rate_limit
from app.core.security import (
    TOKEN_COOKIE,
    create_access_token,
    get_current_user,
    hash_password,
    verify_password,
)
from app.db.session import get_db
from app.models.notification import UserPoints
from app.models.user import User, UserRole
from app.schemas.auth import MeResponse, RegisterRequest, TokenResponse

router = APIRouter(prefix="/auth", tags=["auth"])

logger = logging.getLogger(__name__)


def _normalize_email(email: str) -> str:
    return (email or "").strip().lower()


@router.post("/register", response_model=MeResponse, status_code=201)
def register(
    body: RegisterRequest,
    db: Session = Depends(get_db),
    _: object = rate_limit(key_prefix="auth_register", limit=10, window_seconds=60),
):
    if not settings.allow_public_register:
        raise HTTPException(status_code=403, detail="registration is disabled")

    if len(body.password or "") < int(settings.password_min_length):
        raise HTTPException(
            status_code=400,
            detail=f"password must be at least {settings.password_min_length} characters",
        )

    email = _normalize_email(body.email)
    exists = db.scalar(select(func.count(User.id)).where(User.email == email))
    if exists:
        raise HTTPException(status_code=409, detail="user already exists")

    # Self-service accounts are always learners; elevated roles are granted by admins.
    user = User(
        email=email,
        name=body.name.strip() or email,
        role=UserRole.learner,
        password_hash=hash_password(body.password),
    )
    db.add(user)
    db.commit()
    logger.info("registered learner %s", user.id)

    return MeResponse(id=str(user.id), email=user.email, name=user.name, role=user.role.value, points=0, level=1)


@router.post("/token", response_model=TokenResponse)
def token(
    response: Response,
    form: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db),
    _: object = rate_limit(key_prefix="auth_token", limit=20, window_seconds=60),
):
    email = _normalize_email(form.username)
    user = db.scalar(select(User).where(User.email == email))
    if user is None or not verify_password(form.password, user.password_hash):
        logger.info("failed login for %s", email)
        raise HTTPException(status_code=401, detail="invalid credentials")

    access_token = create_access_token(user_id=str(user.id), role=user.role.value)
    expires_in = int(settings.jwt_access_token_minutes) * 60
    response.set_cookie(
        key=TOKEN_COOKIE,
        value=access_token,
        httponly=True,
        samesite="lax",
        secure=(settings.app_env or "").strip().lower() in {"prod", "production"},
        max_age=expires_in,
    )
    return TokenResponse(access_token=access_token, expires_in=expires_in)


@router.get("/me", response_model=MeResponse)
def me(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    row = db.get(UserPoints, user.id)
    return MeResponse(
        id=str(user.id),
        email=user.email,
        name=user.name,
        role=user.role.value,
        points=int(row.points) if row else 0,
        level=int(row.level) if row else 1,
    )
