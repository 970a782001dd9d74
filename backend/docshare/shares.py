"""Service layer for share publication, viewing and deletion."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

from docshare.auth import get_password_hash, verify_password
from docshare.errors import (
    DocShareError,
    ExpiredError,
    NotFoundError,
    StorageError,
    UnauthorizedError,
    ValidationError,
)
from docshare.logging import get_logger
from docshare.models import Share, new_share_id, utcnow
from docshare.references import (
    BlockReference,
    derive_block_title,
    dump_references,
    parse_references,
    rewrite_references,
)
from docshare.store import ShareStore

logger = get_logger(__name__)

MIN_EXPIRE_DAYS = 1
MAX_EXPIRE_DAYS = 365
MIN_PASSWORD_LENGTH = 4
DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


@dataclass
class PublishResult:
    share: Share
    reused: bool


@dataclass
class ShareView:
    id: str
    doc_title: str
    content: str
    require_password: bool
    expire_at: datetime
    view_count: int
    created_at: datetime


@dataclass
class ShareListing:
    items: List[Share]
    page: int
    size: int
    total: int


@dataclass
class BatchDeleteResult:
    deleted: List[str] = field(default_factory=list)
    not_found: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    deleted_all_count: Optional[int] = None


def _resolve_password_hash(
    require_password: bool, password: Optional[str], existing: Optional[Share]
) -> str:
    """Password hash the published share ends up with ("" for no gate).

    An empty password keeps the gate of the share being republished; a new
    share (or one that was never protected) has nothing to keep.
    """
    if not require_password:
        return ""

    password = (password or "").strip()
    if password:
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        return get_password_hash(password)

    if existing is not None and existing.password_hash:
        return existing.password_hash
    raise ValidationError("Password must be provided for new share")


def _upsert(
    store: ShareStore,
    existing: Optional[Share],
    owner: str,
    doc_id: str,
    *,
    title: str,
    content: str,
    references: Optional[str],
    password_hash: str,
    is_public: bool,
    expire_at: datetime,
    parent_share_id: Optional[str] = None,
) -> PublishResult:
    reused = existing is not None
    share = existing if reused else Share(id=new_share_id(), user_id=owner, doc_id=doc_id)

    share.doc_title = title
    share.content = content
    if references is not None:
        share.references = references
    elif not reused:
        share.references = ""
    share.require_password = bool(password_hash)
    share.password_hash = password_hash
    share.is_public = is_public
    share.expire_at = expire_at
    if parent_share_id is not None:
        share.parent_share_id = parent_share_id

    return PublishResult(share=store.save(share), reused=reused)


def _publish_children(
    store: ShareStore,
    parent: Share,
    references: Sequence[BlockReference],
    now: datetime,
) -> None:
    """Publish one share per referenced block, mirroring the parent's access policy.

    Each block is independent; a failure is logged and the rest continue.
    """
    owner = parent.user_id
    parent_id = parent.id
    parent_doc_id = parent.doc_id
    password_hash = parent.password_hash
    is_public = parent.is_public
    expire_at = parent.expire_at

    for ref in references:
        block_id = ref.block_id.strip()
        if not block_id:
            continue
        if block_id == parent_doc_id:
            logger.warning("Skipping self reference %s in share %s", block_id, parent_id)
            continue
        try:
            existing = store.find_active_by_doc(owner, block_id, now)
            result = _upsert(
                store,
                existing,
                owner,
                block_id,
                title=derive_block_title(ref),
                content=ref.content,
                references=None,
                password_hash=password_hash,
                is_public=is_public,
                expire_at=expire_at,
                parent_share_id=parent_id,
            )
        except DocShareError as exc:
            logger.warning("Failed to publish block %s for share %s: %s", block_id, parent_id, exc.message)
            continue
        logger.debug(
            "%s block share %s for %s", "Updated" if result.reused else "Created", result.share.id, block_id
        )


def publish_share(
    store: ShareStore,
    owner: str,
    doc_id: str,
    title: str,
    content: str,
    *,
    require_password: bool = False,
    password: Optional[str] = None,
    is_public: bool = True,
    expire_days: int,
    references: Sequence[BlockReference] = (),
) -> PublishResult:
    """Create a share for ``doc_id`` or republish the owner's active one.

    Republishing keeps the share id, so links handed out earlier stay valid.
    Expiry is always reset to ``expire_days`` from now.
    """
    doc_id = (doc_id or "").strip()
    if not doc_id:
        raise ValidationError("docId is required")
    if not (title or "").strip():
        raise ValidationError("docTitle is required")
    if not content:
        raise ValidationError("content is required")
    if not MIN_EXPIRE_DAYS <= expire_days <= MAX_EXPIRE_DAYS:
        raise ValidationError(f"expireDays must be between {MIN_EXPIRE_DAYS} and {MAX_EXPIRE_DAYS}")

    now = utcnow()
    existing = store.find_active_by_doc(owner, doc_id, now)
    password_hash = _resolve_password_hash(require_password, password, existing)

    result = _upsert(
        store,
        existing,
        owner,
        doc_id,
        title=title,
        content=content,
        references=dump_references(references),
        password_hash=password_hash,
        is_public=is_public,
        expire_at=now + timedelta(days=expire_days),
    )
    logger.info(
        "%s share %s for doc %s (user %s)",
        "Republished" if result.reused else "Created",
        result.share.id,
        doc_id,
        owner,
    )

    # Children from earlier publishes follow the parent even when no longer referenced.
    parent_id = result.share.id
    try:
        store.sync_children(result.share)
    except StorageError as exc:
        logger.warning("Failed to update child shares of %s: %s", parent_id, exc.message)

    if references:
        _publish_children(store, result.share, references, now)
    return result


def view_share(
    store: ShareStore, share_id: str, password: Optional[str] = None, base_url: str = ""
) -> ShareView:
    share = store.get(share_id)
    if share is None:
        raise NotFoundError("Share not found")

    now = utcnow()
    if share.is_expired(now):
        raise ExpiredError("Share has expired")

    # Missing and wrong passwords are reported identically.
    if share.require_password and not verify_password(password or "", share.password_hash):
        raise UnauthorizedError("Password required or invalid")

    result = ShareView(
        id=share.id,
        doc_title=share.doc_title,
        content=share.content,
        require_password=share.require_password,
        expire_at=share.expire_at,
        view_count=share.view_count,
        created_at=share.created_at,
    )
    owner = share.user_id
    stored_references = share.references

    # Counting is best effort: concurrent viewers may lose increments.
    try:
        store.increment_view_count(result.id)
        result.view_count += 1
    except StorageError as exc:
        logger.warning("Could not count view of share %s: %s", result.id, exc.message)

    references = parse_references(stored_references)
    if references:

        def find_child(block_id: str) -> Optional[str]:
            child = store.find_active_by_doc(owner, block_id, now)
            return child.id if child is not None else None

        result.content = rewrite_references(result.content, references, base_url, find_child)
    return result


def list_shares(
    store: ShareStore, owner: str, page: Optional[int] = None, size: Optional[int] = None
) -> ShareListing:
    page = page if page and page > 0 else 1
    size = size if size and size > 0 else DEFAULT_PAGE_SIZE
    size = min(size, MAX_PAGE_SIZE)

    total = store.count_by_user(owner)
    items = store.list_by_user(owner, offset=(page - 1) * size, limit=size)
    return ShareListing(items=items, page=page, size=size, total=total)


def delete_share(store: ShareStore, owner: str, share_id: str) -> None:
    if not store.soft_delete(owner, share_id, utcnow()):
        raise NotFoundError("Share not found or unauthorized")


def batch_delete_shares(store: ShareStore, owner: str, share_ids: Sequence[str]) -> BatchDeleteResult:
    """Delete the given shares, or every share of ``owner`` when none are given."""
    if not share_ids:
        count = store.soft_delete_by_user(owner, utcnow())
        logger.info("Deleted all %d shares of user %s", count, owner)
        return BatchDeleteResult(deleted_all_count=count)

    result = BatchDeleteResult()
    for share_id in share_ids:
        share_id = (share_id or "").strip()
        if not share_id:
            continue
        try:
            deleted = store.soft_delete(owner, share_id, utcnow())
        except StorageError as exc:
            result.failed[share_id] = exc.message
            continue
        if deleted:
            result.deleted.append(share_id)
        else:
            result.not_found.append(share_id)
    return result
