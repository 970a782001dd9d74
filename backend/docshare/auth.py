import hashlib
from datetime import timedelta
from typing import Optional

import bcrypt
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import jwt
from sqlalchemy import or_
from sqlalchemy.orm import Session

from docshare.config import settings
from docshare.credentials import Principal, verify_bearer
from docshare.database import get_db
from docshare.errors import UnauthorizedError, ValidationError
from docshare.logging import get_logger
from docshare.models import User, utcnow
from docshare.store import storage_errors

logger = get_logger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/auth/token", auto_error=False)

BCRYPT_MAX_BYTES = 72
INVALID_LOGIN = "Invalid credentials"


def _normalize_password(password: str) -> bytes:
    encoded = password.encode("utf-8")
    # bcrypt only looks at the first 72 bytes; longer inputs get a fixed-length digest.
    if len(encoded) <= BCRYPT_MAX_BYTES:
        return encoded
    return hashlib.sha256(encoded).hexdigest().encode("ascii")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    if not plain_password or not hashed_password:
        return False
    try:
        return bcrypt.checkpw(_normalize_password(plain_password), hashed_password.encode("utf-8"))
    except ValueError:
        # Stored value is not a bcrypt hash.
        return False


def get_password_hash(password: str) -> str:
    return bcrypt.hashpw(_normalize_password(password), bcrypt.gensalt()).decode("utf-8")


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    now = utcnow()
    expire = now + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire, "iat": now})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def register_user(db: Session, username: str, email: str, password: str) -> User:
    username = username.strip()
    email = email.strip()
    if not 3 <= len(username) <= 100:
        raise ValidationError("Username must be 3-100 characters")
    if not 6 <= len(password) <= 200:
        raise ValidationError("Password must be 6-200 characters")

    with storage_errors(db, "register user"):
        taken = (
            db.query(User)
            .filter(or_(User.username == username, User.email == email))
            .count()
        )
        if taken:
            raise ValidationError("Username or email already exists")

        user = User(
            username=username,
            email=email,
            password_hash=get_password_hash(password),
            is_active=True,
        )
        db.add(user)
        db.commit()
        db.refresh(user)

    logger.info("Registered user %s (%s)", user.username, user.id)
    return user


def authenticate_user(db: Session, username: str, password: str) -> User:
    with storage_errors(db, "load user"):
        user = (
            db.query(User)
            .filter(User.username == username, User.deleted_at.is_(None))
            .first()
        )
    if user is None or not user.is_active or not user.password_hash:
        raise UnauthorizedError(INVALID_LOGIN)
    if not verify_password(password, user.password_hash):
        raise UnauthorizedError(INVALID_LOGIN)
    return user


def login(db: Session, username: str, password: str) -> tuple:
    """Return ``(user, session_token)`` for valid, active credentials."""
    user = authenticate_user(db, username, password)
    return user, create_access_token({"sub": user.id})


def deactivate_user(db: Session, user_id: str) -> None:
    with storage_errors(db, "deactivate user"):
        affected = (
            db.query(User)
            .filter(User.id == user_id)
            .update({User.is_active: False}, synchronize_session=False)
        )
        db.commit()
    if affected:
        logger.info("Deactivated user %s", user_id)


def get_current_principal(
    token: Optional[str] = Depends(oauth2_scheme), db: Session = Depends(get_db)
) -> Principal:
    if not token:
        raise UnauthorizedError("Authorization header required")
    return verify_bearer(db, token)


def get_current_user(
    principal: Principal = Depends(get_current_principal), db: Session = Depends(get_db)
) -> User:
    with storage_errors(db, "load user"):
        user = db.query(User).filter(User.id == principal.user_id).first()
    if user is None:
        raise UnauthorizedError("User inactive or not found")
    return user
