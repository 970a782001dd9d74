"""SQLAlchemy-backed storage adapter for share rows.

The adapter owns every query the lifecycle code needs and converts driver
failures into :class:`StorageError`, so callers only ever see the error
taxonomy from :mod:`docshare.errors`. Nothing here retries.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from docshare.errors import StorageError, ValidationError
from docshare.logging import get_logger
from docshare.models import Share

logger = get_logger(__name__)


@contextmanager
def storage_errors(db: Session, action: str) -> Iterator[None]:
    """Roll back and re-raise database failures as ``StorageError``."""
    try:
        yield
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Storage failure while trying to %s: %s", action, exc)
        raise StorageError(f"Failed to {action}") from exc


def check_password_invariant(share: Share) -> None:
    if share.require_password and not share.password_hash:
        raise ValidationError("Password-protected share is missing its password hash")
    if not share.require_password and share.password_hash:
        raise ValidationError("Unprotected share must not carry a password hash")


class ShareStore:
    """Share persistence bound to one request's session."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def _live(self):
        return self.db.query(Share).filter(Share.deleted_at.is_(None))

    def get(self, share_id: str) -> Optional[Share]:
        with storage_errors(self.db, "fetch share"):
            return self._live().filter(Share.id == share_id).first()

    def find_active_by_doc(self, user_id: str, doc_id: str, now: datetime) -> Optional[Share]:
        """Newest non-deleted, unexpired share for ``(user_id, doc_id)``."""
        with storage_errors(self.db, "query share"):
            return (
                self._live()
                .filter(
                    Share.user_id == user_id,
                    Share.doc_id == doc_id,
                    Share.expire_at > now,
                )
                .order_by(Share.created_at.desc())
                .first()
            )

    def save(self, share: Share) -> Share:
        try:
            check_password_invariant(share)
        except ValidationError:
            # Discard in-memory edits to an already persistent row.
            self.db.rollback()
            raise
        with storage_errors(self.db, "save share"):
            self.db.add(share)
            self.db.commit()
            self.db.refresh(share)
        return share

    def list_by_user(self, user_id: str, offset: int, limit: int) -> List[Share]:
        with storage_errors(self.db, "fetch shares"):
            return (
                self._live()
                .filter(Share.user_id == user_id)
                .order_by(Share.created_at.desc())
                .offset(offset)
                .limit(limit)
                .all()
            )

    def count_by_user(self, user_id: str) -> int:
        with storage_errors(self.db, "count shares"):
            return self._live().filter(Share.user_id == user_id).count()

    def soft_delete(self, user_id: str, share_id: str, now: datetime) -> bool:
        with storage_errors(self.db, "delete share"):
            affected = (
                self._live()
                .filter(Share.id == share_id, Share.user_id == user_id)
                .update({Share.deleted_at: now}, synchronize_session=False)
            )
            self.db.commit()
        return affected > 0

    def soft_delete_by_user(self, user_id: str, now: datetime) -> int:
        with storage_errors(self.db, "delete shares"):
            affected = (
                self._live()
                .filter(Share.user_id == user_id)
                .update({Share.deleted_at: now}, synchronize_session=False)
            )
            self.db.commit()
        return affected

    def sync_children(self, parent: Share) -> int:
        """Copy the parent's access policy onto all of its live child shares."""
        with storage_errors(self.db, "update child shares"):
            affected = (
                self._live()
                .filter(Share.parent_share_id == parent.id, Share.user_id == parent.user_id)
                .update(
                    {
                        Share.require_password: parent.require_password,
                        Share.password_hash: parent.password_hash,
                        Share.is_public: parent.is_public,
                        Share.expire_at: parent.expire_at,
                    },
                    synchronize_session=False,
                )
            )
            self.db.commit()
        return affected

    def increment_view_count(self, share_id: str) -> None:
        with storage_errors(self.db, "update view count"):
            self.db.query(Share).filter(Share.id == share_id).update(
                {Share.view_count: Share.view_count + 1}, synchronize_session=False
            )
            self.db.commit()
