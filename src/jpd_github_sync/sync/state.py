"""Sync state embedded in GitHub issue bodies.

There is no state file or database: correspondence between a JPD idea and
a GitHub issue lives in an HTML comment inside the issue body, invisible
when GitHub renders the markdown::

    <!-- jpd-sync-metadata
    jpd_id: MTT-12
    jpd_updated: 2026-01-05T10:00:00.000+0000
    sync_hash: 3f2a...
    parent_jpd_id: MTT-3
    original_link: https://acme.atlassian.net/browse/MTT-12
    -->

Key design choices:

* **Last block wins** -- ``decode_state()`` reads the last marker in the
  body, so text quoted from another issue above it never shadows ours.
* **Replace in place** -- ``encode_state()`` rewrites an existing block
  where it sits (even a corrupt one) and appends otherwise, so sections
  added after the block survive.
* **Never raises** -- a missing or unreadable block decodes to ``None``,
  which callers treat as "not ours".
* **Content hashing** -- ``content_hash()`` normalises text (BOM,
  line-endings, trailing whitespace) and hashes canonical JSON, so the
  digest is stable across platforms and key order.
"""

from __future__ import annotations

import hashlib
import json
import logging
from typing import Any

from pydantic import BaseModel

logger = logging.getLogger(__name__)

MARKER = "jpd-sync-metadata"
BLOCK_START = f"<!-- {MARKER}"
BLOCK_END = "-->"

_FIELD_ORDER = (
    "jpd_id",
    "jpd_updated",
    "sync_hash",
    "parent_jpd_id",
    "original_link",
)


class SyncStateBlock(BaseModel):
    """Decoded contents of a state block.

    Attributes:
        jpd_id: Key of the upstream idea.
        jpd_updated: Upstream ``updated`` timestamp at the last write.
        sync_hash: Hash of the mapped output at the last write.
        parent_jpd_id: Upstream key of the parent, if any.
        original_link: Browse URL of the upstream idea.
    """

    jpd_id: str
    jpd_updated: str = ""
    sync_hash: str = ""
    parent_jpd_id: str | None = None
    original_link: str | None = None

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def render_block(block: SyncStateBlock) -> str:
    """Render *block* in wire format, omitting absent optional keys."""
    lines = [BLOCK_START]
    for name in _FIELD_ORDER:
        value = getattr(block, name)
        if value is None:
            continue
        lines.append(f"{name}: {_single_line(str(value))}")
    lines.append(BLOCK_END)
    return "\n".join(lines)


def encode_state(
    body: str | None,
    jpd_id: str,
    jpd_updated: str,
    sync_hash: str,
    parent_jpd_id: str | None = None,
    original_link: str | None = None,
) -> str:
    """Return *body* carrying a state block with the given values.

    The last terminated block is replaced in place; otherwise the block
    is appended after a blank line.  A bare marker with no closing
    ``-->`` is user text (a quoted example, say) and is left alone.
    """
    block = render_block(
        SyncStateBlock(
            jpd_id=jpd_id,
            jpd_updated=jpd_updated or "",
            sync_hash=sync_hash or "",
            parent_jpd_id=parent_jpd_id or None,
            original_link=original_link or None,
        )
    )
    body = body or ""

    span = find_state_block(body)
    if span is not None:
        start, end = span
        return body[:start] + block + body[end:]

    if not body.strip():
        return block
    return body.rstrip() + "\n\n" + block


def strip_state(body: str | None) -> str:
    """Return *body* with its state block removed and trailing space trimmed."""
    body = body or ""
    span = find_state_block(body)
    if span is None:
        return body.rstrip()
    start, end = span
    parts = [body[:start].strip(), body[end:].strip()]
    return "\n\n".join(part for part in parts if part)


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


def decode_state(body: str | None) -> SyncStateBlock | None:
    """Parse the state block out of *body*.

    Returns:
        The decoded block, or ``None`` when the body has no block, the
        block is unterminated, or it lacks a ``jpd_id``.
    """
    if not body:
        return None

    span = find_state_block(body)
    if span is None:
        return None
    start, end = span

    payload = body[start + len(BLOCK_START) : end - len(BLOCK_END)].strip()
    if payload.startswith("{"):
        values = _parse_json_payload(payload)
    else:
        values = _parse_key_values(payload)

    jpd_id = str(values.get("jpd_id") or "").strip()
    if not jpd_id:
        logger.debug("State block without jpd_id ignored")
        return None

    return SyncStateBlock(
        jpd_id=jpd_id,
        jpd_updated=str(values.get("jpd_updated") or ""),
        sync_hash=str(values.get("sync_hash") or ""),
        parent_jpd_id=values.get("parent_jpd_id") or None,
        original_link=values.get("original_link") or None,
    )


def _parse_key_values(payload: str) -> dict[str, str]:
    values: dict[str, str] = {}
    for line in payload.splitlines():
        name, sep, value = line.partition(":")
        if not sep:
            continue
        values[name.strip()] = value.strip()
    return values


def _parse_json_payload(payload: str) -> dict[str, Any]:
    """Read the JSON payload written by older releases."""
    try:
        data = json.loads(payload)
    except ValueError:
        logger.debug("Unparsable JSON state block ignored")
        return {}
    if not isinstance(data, dict):
        return {}
    return {k: (str(v) if v is not None else None) for k, v in data.items()}


def find_state_block(body: str) -> tuple[int, int] | None:
    """Return ``(start, end)`` of the last terminated block, or ``None``."""
    start = body.rfind(BLOCK_START)
    while start != -1:
        end = body.find(BLOCK_END, start + len(BLOCK_START))
        if end != -1:
            return start, end + len(BLOCK_END)
        logger.debug("Unterminated %s marker left as body text", MARKER)
        start = body.rfind(BLOCK_START, 0, start)
    return None


def _single_line(value: str) -> str:
    return " ".join(value.replace(BLOCK_END, "--").split())


# ---------------------------------------------------------------------------
# Content hashing
# ---------------------------------------------------------------------------


def normalise_text(content: str) -> str:
    """Normalise *content* before hashing.

    Normalisation steps (applied in order):

    1. Strip BOM (``\\ufeff``).
    2. Replace ``\\r\\n`` with ``\\n``.
    3. Right-strip each line.
    4. Strip trailing empty lines.
    """
    text = content.lstrip("\ufeff")
    text = text.replace("\r\n", "\n")
    lines = [line.rstrip() for line in text.split("\n")]
    while lines and lines[-1] == "":
        lines.pop()
    return "\n".join(lines)


def content_hash(payload: dict[str, Any]) -> str:
    """SHA-256 hex digest of the canonical JSON rendering of *payload*.

    String values are normalised first; key order does not matter.
    """
    canonical = json.dumps(
        _normalise_values(payload),
        sort_keys=True,
        ensure_ascii=False,
        separators=(",", ":"),
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _normalise_values(value: Any) -> Any:
    if isinstance(value, str):
        return normalise_text(value)
    if isinstance(value, dict):
        return {str(k): _normalise_values(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalise_values(v) for v in value]
    return value
