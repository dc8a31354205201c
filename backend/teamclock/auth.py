from __future__ import annotations

import base64
import datetime as dt
import hashlib
import hmac
import logging
import os
from typing import Optional, Tuple

import bcrypt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from .config import settings
from .database import get_db
from .models import ApiSession, User, as_utc

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def _now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def validate_password(password: str) -> None:
    if len(password or "") < settings.password_min_length:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Password must be at least {settings.password_min_length} characters",
        )


def generate_token_value() -> str:
    raw = os.urandom(32)
    return base64.urlsafe_b64encode(raw).decode("utf-8").rstrip("=")


def token_hash(token: str) -> str:
    digest = hmac.new(settings.token_secret.encode(), msg=token.encode(), digestmod=hashlib.sha256)
    return digest.hexdigest()


def create_api_session(db: Session, user: User) -> Tuple[ApiSession, str]:
    token_value = generate_token_value()
    record = ApiSession(
        token_hash=token_hash(token_value),
        user_id=user.id,
        expires_at=_now() + dt.timedelta(hours=settings.session_ttl_hours),
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    return record, token_value


def resolve_api_session(db: Session, token_value: str) -> Optional[ApiSession]:
    record = db.query(ApiSession).filter(ApiSession.token_hash == token_hash(token_value)).one_or_none()
    if record is None:
        return None
    if as_utc(record.expires_at) <= _now():
        db.delete(record)
        db.commit()
        return None
    record.last_used_at = _now()
    db.add(record)
    db.commit()
    return record


def login(db: Session, email: str, password: str) -> Tuple[User, str]:
    user = db.query(User).filter(User.email == email.strip().lower()).one_or_none()
    if user is None or not verify_password(password, user.password_hash):
        logger.warning("Rejected login for %s", email)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password")
    _, token_value = create_api_session(db, user)
    logger.info("User %s signed in", user.id)
    return user, token_value


def logout(db: Session, token_value: str) -> None:
    db.query(ApiSession).filter(ApiSession.token_hash == token_hash(token_value)).delete()
    db.commit()


def change_password(db: Session, user: User, current_password: str, new_password: str) -> None:
    if not verify_password(current_password, user.password_hash):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Current password is incorrect")
    validate_password(new_password)
    user.password_hash = hash_password(new_password)
    db.add(user)
    db.commit()
    logger.info("User %s changed their password", user.id)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    record = resolve_api_session(db, credentials.credentials)
    if record is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return record.user


def require_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        logger.warning("User %s denied admin operation", user.id)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user
