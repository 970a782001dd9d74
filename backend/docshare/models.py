import secrets
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from docshare.database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how SQLite hands datetimes back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_share_id() -> str:
    return secrets.token_hex(16)


def new_user_id() -> str:
    return "user_" + secrets.token_hex(16)


def new_token_id() -> str:
    return "tok_" + secrets.token_hex(12)


class User(Base):
    __tablename__ = "users"

    id = Column(String(64), primary_key=True, default=new_user_id)
    username = Column(String(100), unique=True, index=True, nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False, default="")
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime, nullable=True, index=True)

    tokens = relationship("UserToken", back_populates="user")


class UserToken(Base):
    __tablename__ = "user_tokens"

    id = Column(String(64), primary_key=True, default=new_token_id)
    user_id = Column(String(64), ForeignKey("users.id"), index=True, nullable=False)
    name = Column(String(100), nullable=False)
    # SHA-256 of the secret; the secret itself is never stored.
    token_hash = Column(String(255), unique=True, nullable=False)
    revoked = Column(Boolean, nullable=False, default=False)
    last_used_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime, nullable=True, index=True)

    user = relationship("User", back_populates="tokens")


class Share(Base):
    __tablename__ = "shares"
    __table_args__ = (
        Index("idx_user_doc", "user_id", "doc_id"),
        Index("idx_user_created", "user_id", "created_at"),
    )

    id = Column(String(64), primary_key=True, default=new_share_id)
    user_id = Column(String(64), nullable=False)
    doc_id = Column(String(64), nullable=False)
    doc_title = Column(String(255), nullable=False, default="")
    content = Column(Text, nullable=False, default="")
    # JSON list of block reference descriptors supplied at publish time.
    references = Column(Text, nullable=False, default="")
    parent_share_id = Column(String(64), nullable=True, index=True)
    require_password = Column(Boolean, nullable=False, default=False)
    password_hash = Column(String(255), nullable=False, default="")
    expire_at = Column(DateTime, nullable=False, index=True)
    is_public = Column(Boolean, nullable=False, default=True)
    view_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime, nullable=True, index=True)

    def is_expired(self, now: datetime = None) -> bool:
        return (now or utcnow()) >= self.expire_at
