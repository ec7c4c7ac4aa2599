"""Comment mirroring between a JPD idea and its GitHub issue.

Neither tracker lets us post as another user, so mirrored comments carry
an attribution line and a hidden marker naming the source comment::

    **[Ada Lovelace](https://acme.atlassian.net/people/123)** commented in JPD:

    Looks good to me.

    <!-- comment-sync:{"source_comment_id": "10001", ...}-->

A comment is mirrored once: comments that carry a marker are never
mirrored back, and a source comment whose id already appears in a marker
on the other side is skipped.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from typing import Any, Literal

from pydantic import BaseModel

from ..core.gateway import ApiGateway

logger = logging.getLogger(__name__)

MARKER_PREFIX = "<!-- comment-sync:"
MARKER_SUFFIX = "-->"
_MARKER_PATTERN = re.compile(
    re.escape(MARKER_PREFIX) + r"(.+?)" + re.escape(MARKER_SUFFIX), re.DOTALL
)


class Comment(BaseModel):
    """A comment from either tracker, in a common shape."""

    id: str
    author_name: str
    author_url: str | None = None
    body: str
    created: str | None = None
    source: Literal["jpd", "github"]

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def parse_jpd_comment(raw: dict[str, Any], base_url: str) -> Comment:
    author = raw.get("author") or raw.get("updateAuthor") or {}
    account_id = author.get("accountId")
    return Comment(
        id=str(raw["id"]),
        author_name=author.get("displayName")
        or author.get("emailAddress")
        or "Unknown",
        author_url=f"{base_url.rstrip('/')}/people/{account_id}"
        if account_id
        else None,
        body=adf_to_markdown(raw.get("body")),
        created=raw.get("created"),
        source="jpd",
    )


def parse_github_comment(raw: dict[str, Any]) -> Comment:
    user = raw.get("user") or {}
    return Comment(
        id=str(raw["id"]),
        author_name=user.get("login") or "unknown",
        author_url=user.get("html_url"),
        body=raw.get("body") or "",
        created=raw.get("created_at"),
        source="github",
    )


def adf_to_markdown(body: Any) -> str:
    """Convert an Atlassian Document Format tree to markdown.

    Plain strings pass through.  Unknown block nodes fall back to their
    text content.
    """
    if body is None:
        return ""
    if isinstance(body, str):
        return body
    if not isinstance(body, dict):
        return str(body)

    blocks = [_adf_block(node) for node in body.get("content") or []]
    return "\n\n".join(block for block in blocks if block).strip()


def _adf_block(node: dict[str, Any]) -> str:
    content = node.get("content") or []
    match node.get("type"):
        case "paragraph":
            return _adf_inline(content)
        case "heading":
            level = (node.get("attrs") or {}).get("level", 1)
            return "#" * level + " " + _adf_inline(content)
        case "bulletList":
            return "\n".join(
                "- " + _adf_list_item(item) for item in content
            )
        case "orderedList":
            return "\n".join(
                f"{n}. " + _adf_list_item(item)
                for n, item in enumerate(content, start=1)
            )
        case "codeBlock":
            language = (node.get("attrs") or {}).get("language") or ""
            return f"```{language}\n{_adf_inline(content)}\n```"
        case "blockquote":
            inner = "\n\n".join(_adf_block(child) for child in content)
            return "\n".join("> " + line for line in inner.split("\n"))
        case "rule":
            return "---"
        case _:
            return _adf_inline(content)


def _adf_list_item(item: dict[str, Any]) -> str:
    return " ".join(
        _adf_block(child) for child in item.get("content") or []
    ).strip()


def _adf_inline(nodes: list[dict[str, Any]]) -> str:
    parts: list[str] = []
    for node in nodes:
        match node.get("type"):
            case "text":
                parts.append(_apply_marks(node.get("text") or "", node.get("marks")))
            case "hardBreak":
                parts.append("\n")
            case "mention":
                parts.append((node.get("attrs") or {}).get("text") or "@someone")
            case "emoji":
                parts.append((node.get("attrs") or {}).get("text") or "")
            case "inlineCard":
                parts.append((node.get("attrs") or {}).get("url") or "")
            case _:
                parts.append(_adf_inline(node.get("content") or []))
    return "".join(parts)


def _apply_marks(text: str, marks: list[dict[str, Any]] | None) -> str:
    for mark in marks or []:
        match mark.get("type"):
            case "strong":
                text = f"**{text}**"
            case "em":
                text = f"*{text}*"
            case "code":
                text = f"`{text}`"
            case "strike":
                text = f"~~{text}~~"
            case "link":
                href = (mark.get("attrs") or {}).get("href")
                if href:
                    text = f"[{text}]({href})"
    return text


# ---------------------------------------------------------------------------
# Formatting and dedup
# ---------------------------------------------------------------------------


def comment_hash(comment: Comment) -> str:
    content = f"{comment.author_name}:{comment.body}:{comment.created}"
    return hashlib.sha256(content.encode("utf-8")).hexdigest()[:16]


def format_comment(comment: Comment) -> str:
    """Render *comment* for the other tracker, with attribution and marker."""
    author = (
        f"[{comment.author_name}]({comment.author_url})"
        if comment.author_url
        else comment.author_name
    )
    origin = "JPD" if comment.source == "jpd" else "GitHub"
    marker = json.dumps(
        {
            "synced_from": comment.source,
            "source_comment_id": comment.id,
            "sync_hash": comment_hash(comment),
        },
        sort_keys=True,
    )
    return (
        f"**{author}** commented in {origin}:\n\n"
        f"{comment.body.strip()}\n\n"
        f"{MARKER_PREFIX}{marker}{MARKER_SUFFIX}"
    )


def extract_sync_metadata(body: str | None) -> dict[str, Any] | None:
    match = _MARKER_PATTERN.search(body or "")
    if match is None:
        return None
    try:
        data = json.loads(match.group(1))
    except ValueError:
        logger.debug("Ignoring unparsable comment-sync marker")
        return None
    return data if isinstance(data, dict) else None


def should_sync_comment(comment: Comment, existing: list[Comment]) -> bool:
    """Whether *comment* still needs mirroring into a side holding *existing*."""
    if extract_sync_metadata(comment.body) is not None:
        return False
    for other in existing:
        metadata = extract_sync_metadata(other.body)
        if metadata and str(metadata.get("source_comment_id")) == comment.id:
            return False
    return True


class CommentSyncer:
    """Mirror comments of one record pair in both directions.

    Args:
        gateway: API gateway (dry-run aware).
        jpd_base_url: Site URL used to build author profile links.
    """

    def __init__(self, gateway: ApiGateway, jpd_base_url: str) -> None:
        self.gateway = gateway
        self.jpd_base_url = jpd_base_url

    def sync(self, key: str, issue_number: int) -> int:
        """Mirror missing comments; returns how many were (or would be) posted."""
        jpd_comments = [
            parse_jpd_comment(raw, self.jpd_base_url)
            for raw in self.gateway.source_comments(key)
        ]
        github_comments = [
            parse_github_comment(raw)
            for raw in self.gateway.destination_comments(issue_number)
        ]

        mirrored = 0
        for comment in jpd_comments:
            if should_sync_comment(comment, github_comments):
                self.gateway.add_destination_comment(
                    issue_number, format_comment(comment)
                )
                mirrored += 1
        for comment in github_comments:
            if should_sync_comment(comment, jpd_comments):
                self.gateway.add_source_comment(key, format_comment(comment))
                mirrored += 1

        if mirrored:
            logger.info(
                "Mirrored %d comment(s) between %s and #%s",
                mirrored,
                key,
                issue_number,
            )
        return mirrored
