"""Block reference rewriting.

Published content may embed references to other blocks using the
``((<block-id> "display text"))`` syntax. At view time each reference is
replaced with a markdown link to the block's own published share, or with
plain text when no such share exists.
"""

from __future__ import annotations

import json
import re
from typing import Callable, Iterable, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from docshare.logging import get_logger

logger = get_logger(__name__)

BLOCK_REF_PATTERN = re.compile(r"""\(\(([0-9]{14,}-[0-9a-z]{7,})(?:\s+["']([^"']+)["'])?\)\)""")

UNRESOLVED_PLACEHOLDER = "[ref]"
DEFAULT_LINK_TEXT = "link"
DEFAULT_BLOCK_TITLE = "Referenced block"

LINK_TEXT_LIMIT = 30
TITLE_LIMIT = 50

ChildLookup = Callable[[str], Optional[str]]


class BlockReference(BaseModel):
    """A referenced block as supplied by the publishing client."""

    model_config = ConfigDict(populate_by_name=True)

    block_id: str = Field(alias="blockId")
    content: str = ""
    display_text: str = Field(default="", alias="displayText")
    ref_count: int = Field(default=0, alias="refCount")


def _truncate(text: str, limit: int) -> str:
    if len(text) > limit:
        return text[:limit] + "..."
    return text


def derive_block_title(ref: BlockReference) -> str:
    """Title for a block's own share: display text, else its first useful line."""
    if ref.display_text:
        return ref.display_text

    lines = [line.strip() for line in ref.content.split("\n")]
    for line in lines:
        if line and not line.startswith("#"):
            return _truncate(line, TITLE_LIMIT)

    # Everything is a heading or blank.
    for line in lines:
        if line:
            return _truncate(line.lstrip("# "), TITLE_LIMIT)

    return DEFAULT_BLOCK_TITLE


def parse_references(raw: str) -> List[BlockReference]:
    """Decode the descriptor list stored with a share; bad data yields no references."""
    if not raw:
        return []
    try:
        items = json.loads(raw)
        return [BlockReference.model_validate(item) for item in items]
    except (ValueError, TypeError, PydanticValidationError) as exc:
        logger.warning("Ignoring malformed stored references: %s", exc)
        return []


def dump_references(refs: Iterable[BlockReference]) -> str:
    payload = [ref.model_dump(by_alias=True) for ref in refs]
    if not payload:
        return ""
    return json.dumps(payload, ensure_ascii=False)


def build_share_url(base_url: str, share_id: str) -> str:
    return f"{base_url.rstrip('/')}/s/{share_id}"


def _fallback_text(quoted: str, ref: BlockReference, default: str) -> str:
    if quoted:
        return quoted
    if ref.display_text:
        return ref.display_text
    if ref.content:
        return _truncate(ref.content, LINK_TEXT_LIMIT)
    return default


def rewrite_references(
    content: str,
    references: Iterable[BlockReference],
    base_url: str,
    find_child: ChildLookup,
) -> str:
    """Replace every block reference token in ``content``.

    ``find_child`` maps a block id to the id of its most recent active
    share (or ``None``). It is only consulted for block ids present in
    ``references``; this function performs no writes.
    """
    by_id: Mapping[str, BlockReference] = {ref.block_id: ref for ref in references}

    def replace(match: "re.Match[str]") -> str:
        block_id = match.group(1)
        quoted = match.group(2) or ""

        ref = by_id.get(block_id)
        if ref is None:
            return quoted or UNRESOLVED_PLACEHOLDER

        child_id = find_child(block_id)
        if not child_id:
            return _fallback_text(quoted, ref, UNRESOLVED_PLACEHOLDER)

        text = _fallback_text(quoted, ref, DEFAULT_LINK_TEXT)
        return f"[{text}]({build_share_url(base_url, child_id)})"

    return BLOCK_REF_PATTERN.sub(replace, content)
