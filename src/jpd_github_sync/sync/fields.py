"""Pre-flight check of the JPD fields the mappings depend on.

A mistyped ``customfield_...`` path would otherwise resolve to nothing on
every record and quietly blank the mapped GitHub attribute.  The check
reads the site's field metadata once per pass and compares each
configured ``FieldDefinition`` against it:

* a required field that does not exist is an error;
* an existing field whose schema type does not fit the expected type is
  an error;
* a missing optional field is only logged.

Any error aborts the pass with ``ConfigError`` before the first search.
"""

from __future__ import annotations

import logging
from typing import Any, Literal

from pydantic import BaseModel

from ..config_schema import FieldDefinition
from ..core.gateway import ApiGateway
from ..errors import ConfigError

logger = logging.getLogger(__name__)

# Jira custom field type suffixes that narrow the plain schema type.
_CUSTOM_TYPES = {
    "textarea": "text",
    "textfield": "string",
    "url": "url",
    "select": "select",
    "radiobuttons": "select",
    "multiselect": "multiselect",
    "multicheckboxes": "multiselect",
    "float": "number",
    "datepicker": "date",
    "datetime": "datetime",
    "userpicker": "user",
}

_SCHEMA_TYPES = {
    "string": "string",
    "number": "number",
    "option": "select",
    "user": "user",
    "date": "date",
    "datetime": "datetime",
}

COMPATIBLE_TYPES = {
    "string": {"text", "url"},
    "text": {"string"},
    "url": {"string"},
    "array": {"multiselect"},
    "multiselect": {"array"},
    "object": {"select", "user"},
}


class FieldProblem(BaseModel):
    """One configured field that failed the check."""

    field_id: str
    error: Literal["missing", "wrong_type"]
    message: str
    expected: str | None = None
    actual: str | None = None

    model_config = {"frozen": True}


def field_type(meta: dict[str, Any]) -> str:
    """Classify Jira field metadata into a ``FieldType`` name.

    Unknown schemas come back as ``"object"``.
    """
    schema = meta.get("schema") or {}
    custom = str(schema.get("custom") or "")
    if custom:
        suffix = custom.rsplit(":", 1)[-1]
        if suffix in _CUSTOM_TYPES:
            return _CUSTOM_TYPES[suffix]

    kind = schema.get("type")
    if kind == "array":
        return "multiselect" if schema.get("items") == "option" else "array"
    return _SCHEMA_TYPES.get(kind, "object")


def is_compatible(actual: str, expected: str) -> bool:
    return actual == expected or expected in COMPATIBLE_TYPES.get(actual, set())


def check_fields(
    definitions: list[FieldDefinition], metadata: list[dict[str, Any]]
) -> list[FieldProblem]:
    """Compare *definitions* against the site's field *metadata*."""
    known: dict[str, dict[str, Any]] = {}
    for meta in metadata:
        for ident in (meta.get("id"), meta.get("key")):
            if ident:
                known.setdefault(str(ident), meta)

    problems: list[FieldProblem] = []
    for definition in definitions:
        meta = known.get(definition.id)
        if meta is None:
            if definition.required:
                problems.append(
                    FieldProblem(
                        field_id=definition.id,
                        error="missing",
                        expected=definition.type,
                        message=(
                            f"Required field {definition.label} not found in JPD"
                        ),
                    )
                )
            else:
                logger.info("Optional field %s not found in JPD", definition.label)
            continue

        actual = field_type(meta)
        if not is_compatible(actual, definition.type):
            problems.append(
                FieldProblem(
                    field_id=definition.id,
                    error="wrong_type",
                    expected=definition.type,
                    actual=actual,
                    message=(
                        f"Field {definition.label} has type '{actual}' "
                        f"but '{definition.type}' is configured"
                    ),
                )
            )
    return problems


def validate_fields(
    gateway: ApiGateway, definitions: list[FieldDefinition]
) -> None:
    """Abort with ``ConfigError`` unless every configured field checks out.

    Does nothing (and makes no request) when no fields are configured.
    """
    if not definitions:
        return

    problems = check_fields(definitions, gateway.source_fields())
    if problems:
        for problem in problems:
            logger.error(problem.message)
        raise ConfigError(
            "JPD field validation failed: "
            + "; ".join(problem.message for problem in problems)
        )
    logger.info("Validated %d configured JPD field(s)", len(definitions))
