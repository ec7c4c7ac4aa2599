"""Field-path lookup over raw upstream records.

Paths are dot separated and may carry one or more ``[index]`` suffixes
per segment, e.g. ``fields.customfield_10001[0].value``.  Lookups never
raise: anything that cannot be resolved yields ``None``.
"""

from __future__ import annotations

import re
from typing import Any

# name[0][1] -> ("name", "[0][1]")
_SEGMENT_PATTERN = re.compile(r"^([^\[\]]*)((?:\[\d+\])*)$")
_INDEX_PATTERN = re.compile(r"\[(\d+)\]")


def get_path(data: Any, path: str) -> Any:
    """Resolve *path* against nested dicts and lists.

    Args:
        data: The record (usually the raw JPD issue dict).
        path: Dot path such as ``fields.summary`` or ``fields.labels[0]``.

    Returns:
        The value found, or ``None`` when any step is missing.
    """
    current = data
    for segment in path.strip().split("."):
        if current is None:
            return None
        match = _SEGMENT_PATTERN.match(segment.strip())
        if match is None:
            return None
        name, indexes = match.groups()
        if name:
            if not isinstance(current, dict):
                return None
            current = current.get(name)
        for index in _INDEX_PATTERN.findall(indexes):
            if not isinstance(current, (list, tuple)):
                return None
            position = int(index)
            if position >= len(current):
                return None
            current = current[position]
    return current


def unwrap_select(value: Any) -> Any:
    """Flatten JPD select shapes into plain values.

    ``{"value": "High"}`` becomes ``"High"`` and
    ``[{"value": "a"}, {"value": "b"}]`` becomes ``["a", "b"]``.
    Other values are returned unchanged.
    """
    if isinstance(value, dict) and value.get("value") is not None:
        return value["value"]
    if (
        isinstance(value, list)
        and value
        and all(isinstance(item, dict) and "value" in item for item in value)
    ):
        return [item["value"] for item in value]
    return value
