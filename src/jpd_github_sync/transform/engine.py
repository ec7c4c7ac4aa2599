"""Field transformation: JPD record in, GitHub issue attributes out.

``TransformerEngine.transform`` resolves one ``FieldMapping`` against a
raw JPD issue.  ``TransformerEngine.apply`` runs every configured mapping
and folds the results into an issue payload (``title``, ``body``,
``labels`` plus anything else the config names).

The engine has no I/O beyond importing user transform functions once.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from ..config_schema import FieldMapping
from ..errors import MissingFieldError
from .custom_functions import FunctionLoader
from .paths import get_path, unwrap_select
from .template import render_template

logger = logging.getLogger(__name__)


class TransformerEngine:
    """Resolve field mappings against upstream records.

    Args:
        base_dir: Directory used to resolve relative ``transform_function``
            file references.
    """

    def __init__(self, base_dir: Path | None = None) -> None:
        self.functions = FunctionLoader(base_dir)

    def transform(self, mapping: FieldMapping, record: dict[str, Any]) -> Any:
        """Compute the value for *mapping* from *record*.

        Missing data yields ``None`` (or ``""`` for templates), never an
        exception.  Failures in user functions raise
        ``CustomFunctionError``.
        """
        # 1. Custom function
        if mapping.transform_function:
            return self.functions.execute(mapping.transform_function, record)

        # 2. Template
        if mapping.template:
            return render_template(mapping.template, record)

        # 3. Lookup table
        if mapping.mapping is not None and isinstance(mapping.jpd, str):
            value = unwrap_select(get_path(record, mapping.jpd))
            if isinstance(value, list):
                return [mapping.mapping.get(str(v), v) for v in value]
            if value is None:
                return None
            return mapping.mapping.get(str(value), value)

        # 4. Legacy template
        if mapping.transform:
            return render_template(mapping.transform, record)

        # 5. Direct field access
        if isinstance(mapping.jpd, str):
            return unwrap_select(get_path(record, mapping.jpd))

        if isinstance(mapping.jpd, list):
            return {path: get_path(record, path) for path in mapping.jpd}

        return None

    def apply(
        self, mappings: list[FieldMapping], record: dict[str, Any]
    ) -> dict[str, Any]:
        """Run all *mappings* and build a GitHub issue payload.

        ``labels`` targets accumulate (lists are flattened, blanks and
        duplicates dropped, order kept); every other target is last
        writer wins.

        Raises:
            MissingFieldError: If a ``required`` mapping resolves to an
                empty value.
        """
        payload: dict[str, Any] = {"labels": []}
        for mapping in mappings:
            value = self.transform(mapping, record)

            if _is_empty(value):
                if mapping.required:
                    raise MissingFieldError(
                        f"Required field for '{mapping.github}' is empty",
                        record_key=record.get("key"),
                    )
                continue

            if mapping.github == "labels":
                values = value if isinstance(value, list) else [value]
                for label in values:
                    text = str(label).strip() if label is not None else ""
                    if text and text not in payload["labels"]:
                        payload["labels"].append(text)
            else:
                payload[mapping.github] = value

        return payload


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict)):
        return len(value) == 0
    return False
