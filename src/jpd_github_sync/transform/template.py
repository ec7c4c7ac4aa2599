"""``{{ path | filter }}`` template rendering.

Placeholders are resolved against the raw upstream record with
:func:`~jpd_github_sync.transform.paths.get_path` and then piped through
filters left to right.  Supported filters:

``lowercase``, ``uppercase``, ``trim``, ``slugify``,
``replace(old, new)`` and ``join(separator)``.

Unknown filters are ignored and missing values render as ``""`` so that a
half-filled idea still produces an issue.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from ..errors import TemplateError
from .paths import get_path, unwrap_select

logger = logging.getLogger(__name__)

_PLACEHOLDER_PATTERN = re.compile(r"\{\{([^}]+)\}\}")
_FILTER_PATTERN = re.compile(r"^(\w+)(?:\((.*)\))?$", re.DOTALL)
# One argument: single-quoted, double-quoted or bare, followed by , or end.
_ARG_PATTERN = re.compile(
    r"""\s*(?:'([^']*)'|"([^"]*)"|([^,]*?))\s*(?:,|$)"""
)
_SLUG_PATTERN = re.compile(r"[^a-z0-9]+")


def parse_filter_args(raw: str | None) -> list[str]:
    """Split a filter argument string such as ``', ', "x"`` into values."""
    if raw is None or not raw.strip():
        return []
    args: list[str] = []
    pos = 0
    while pos < len(raw):
        match = _ARG_PATTERN.match(raw, pos)
        if match is None or match.end() == pos:
            break
        single, double, bare = match.groups()
        if single is not None:
            args.append(single)
        elif double is not None:
            args.append(double)
        else:
            args.append(bare.strip())
        pos = match.end()
    return args


def apply_filter(value: Any, expression: str) -> Any:
    """Apply a single filter *expression* (``name`` or ``name(args)``)."""
    match = _FILTER_PATTERN.match(expression.strip())
    if match is None:
        logger.debug("Ignoring malformed filter %r", expression)
        return value

    name = match.group(1).lower()
    args = parse_filter_args(match.group(2))
    value = unwrap_select(value)

    match name:
        case "lowercase":
            return value.lower() if isinstance(value, str) else value
        case "uppercase":
            return value.upper() if isinstance(value, str) else value
        case "trim":
            return value.strip() if isinstance(value, str) else value
        case "slugify":
            if not isinstance(value, str):
                return value
            return _SLUG_PATTERN.sub("-", value.lower()).strip("-")
        case "replace":
            if isinstance(value, str) and len(args) >= 2:
                return value.replace(args[0], args[1])
            return value
        case "join":
            if isinstance(value, (list, tuple)):
                separator = args[0] if args else ", "
                return separator.join(
                    _to_text(unwrap_select(item)) for item in value
                )
            return value
        case _:
            logger.debug("Unknown template filter %r ignored", name)
            return value


def _to_text(value: Any) -> str:
    value = unwrap_select(value)
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ", ".join(_to_text(item) for item in value)
    return str(value)


def render_template(template: str, data: dict[str, Any]) -> str:
    """Render every ``{{ }}`` placeholder of *template* against *data*.

    Raises:
        TemplateError: If a filter blows up on an unexpected value.
    """

    def _replace(match: re.Match) -> str:
        parts = [part.strip() for part in match.group(1).split("|")]
        value = get_path(data, parts[0])
        for expression in parts[1:]:
            try:
                value = apply_filter(value, expression)
            except Exception as exc:
                raise TemplateError(
                    f"Filter '{expression}' failed on '{parts[0]}': {exc}",
                    record_key=data.get("key"),
                ) from exc
        return _to_text(value)

    return _PLACEHOLDER_PATTERN.sub(_replace, template)
