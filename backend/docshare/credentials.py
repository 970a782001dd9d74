"""Bearer credential verification and API token management.

A bearer string is either a session token (a JWT signed with the server
secret) or an opaque API token issued by :func:`issue_token`. Nothing in the
string says which, so :func:`verify_bearer` runs an ordered chain of parsers;
each one returns a :class:`Principal` or ``None`` for "not mine", and only
when every parser declines is the request rejected. Rejections always carry
the same message so callers cannot tell which kind was tried.

API token secrets are returned exactly once, from :func:`issue_token` or
:func:`refresh_token`. Only their SHA-256 digest is persisted.
"""

from __future__ import annotations

import enum
import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from jose import JWTError, jwt
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from docshare.config import settings
from docshare.errors import NotFoundError, UnauthorizedError, ValidationError
from docshare.logging import get_logger
from docshare.models import User, UserToken, utcnow
from docshare.store import storage_errors

logger = get_logger(__name__)

INVALID_CREDENTIAL = "Invalid or revoked token"
TOKEN_NAME_MAX = 100
TOKEN_SECRET_BYTES = 32


class CredentialKind(str, enum.Enum):
    SESSION = "session"
    API_TOKEN = "api_token"


@dataclass(frozen=True)
class Principal:
    user_id: str
    kind: CredentialKind
    token_label: Optional[str] = None


@dataclass(frozen=True)
class IssuedToken:
    id: str
    name: str
    token: str
    created_at: Optional[datetime] = None


def hash_token(raw: str) -> str:
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def generate_token_secret() -> str:
    return secrets.token_hex(TOKEN_SECRET_BYTES)


def parse_session_token(db: Session, raw: str) -> Optional[Principal]:
    """Accept a JWT signed with one of the configured HMAC algorithms."""
    # Anything that isn't header.payload.signature is left for the next parser.
    if raw.count(".") != 2:
        return None
    try:
        header = jwt.get_unverified_header(raw)
        if header.get("alg") not in settings.ACCEPTED_ALGORITHMS:
            return None
        payload = jwt.decode(raw, settings.SECRET_KEY, algorithms=settings.ACCEPTED_ALGORITHMS)
    except JWTError:
        return None

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        return None
    return Principal(user_id=subject, kind=CredentialKind.SESSION)


def _touch_last_used(db: Session, token_id: str) -> None:
    """Best effort; a failure here never affects the authentication result."""
    try:
        db.query(UserToken).filter(UserToken.id == token_id).update(
            {UserToken.last_used_at: utcnow()}, synchronize_session=False
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("Could not record last use of token %s: %s", token_id, exc)


def parse_api_token(db: Session, raw: str) -> Optional[Principal]:
    """Look the secret's digest up among live, unrevoked tokens of active users."""
    digest = hash_token(raw)
    with storage_errors(db, "look up token"):
        token = (
            db.query(UserToken)
            .filter(
                UserToken.token_hash == digest,
                UserToken.revoked.is_(False),
                UserToken.deleted_at.is_(None),
            )
            .first()
        )
        if token is None:
            return None
        user = (
            db.query(User)
            .filter(User.id == token.user_id, User.is_active.is_(True), User.deleted_at.is_(None))
            .first()
        )
    if user is None:
        logger.warning("Token %s rejected: owner inactive or missing", token.id)
        return None

    principal = Principal(user_id=user.id, kind=CredentialKind.API_TOKEN, token_label=token.name)
    _touch_last_used(db, token.id)
    return principal


CREDENTIAL_PARSERS: List[Callable[[Session, str], Optional[Principal]]] = [
    parse_session_token,
    parse_api_token,
]


def verify_bearer(db: Session, raw: Optional[str]) -> Principal:
    raw = (raw or "").strip()
    if raw:
        for parser in CREDENTIAL_PARSERS:
            principal = parser(db, raw)
            if principal is not None:
                return principal
    logger.warning("Bearer credential rejected")
    raise UnauthorizedError(INVALID_CREDENTIAL)


def _require_active_user(db: Session, user_id: str) -> User:
    with storage_errors(db, "load user"):
        user = (
            db.query(User)
            .filter(User.id == user_id, User.is_active.is_(True), User.deleted_at.is_(None))
            .first()
        )
    if user is None:
        raise UnauthorizedError("User inactive or not found")
    return user


def _owned_token(db: Session, user_id: str, token_id: str) -> Optional[UserToken]:
    with storage_errors(db, "load token"):
        return (
            db.query(UserToken)
            .filter(
                UserToken.id == token_id,
                UserToken.user_id == user_id,
                UserToken.revoked.is_(False),
                UserToken.deleted_at.is_(None),
            )
            .first()
        )


def list_tokens(db: Session, user_id: str) -> List[UserToken]:
    with storage_errors(db, "list tokens"):
        return (
            db.query(UserToken)
            .filter(UserToken.user_id == user_id, UserToken.deleted_at.is_(None))
            .order_by(UserToken.created_at.desc())
            .all()
        )


def issue_token(db: Session, user_id: str, name: str) -> IssuedToken:
    name = (name or "").strip()
    if not name or len(name) > TOKEN_NAME_MAX:
        raise ValidationError(f"Token name must be 1-{TOKEN_NAME_MAX} characters")
    _require_active_user(db, user_id)

    raw = generate_token_secret()
    token = UserToken(user_id=user_id, name=name, token_hash=hash_token(raw))
    with storage_errors(db, "save token"):
        db.add(token)
        db.commit()
        db.refresh(token)

    logger.info("Issued API token %s for user %s", token.id, user_id)
    return IssuedToken(id=token.id, name=token.name, token=raw, created_at=token.created_at)


def refresh_token(db: Session, user_id: str, token_id: str) -> IssuedToken:
    """Rotate the secret of a live token, keeping its id and label."""
    token = _owned_token(db, user_id, token_id)
    if token is None:
        raise NotFoundError("Token not found")
    _require_active_user(db, user_id)

    raw = generate_token_secret()
    token.token_hash = hash_token(raw)
    with storage_errors(db, "refresh token"):
        db.commit()
        db.refresh(token)

    logger.info("Refreshed API token %s for user %s", token.id, user_id)
    return IssuedToken(id=token.id, name=token.name, token=raw, created_at=token.created_at)


def revoke_token(db: Session, user_id: str, token_id: str) -> None:
    with storage_errors(db, "revoke token"):
        affected = (
            db.query(UserToken)
            .filter(
                UserToken.id == token_id,
                UserToken.user_id == user_id,
                UserToken.revoked.is_(False),
                UserToken.deleted_at.is_(None),
            )
            .update({UserToken.revoked: True}, synchronize_session=False)
        )
        db.commit()
    if affected == 0:
        raise NotFoundError("Token not found or already revoked")
    logger.info("Revoked API token %s for user %s", token_id, user_id)
