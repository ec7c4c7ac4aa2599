"""Loading of user-supplied transform functions.

A mapping may point ``transform_function`` at Python code instead of a
template.  Supported references:

* ``transforms/derive_priority.py`` -- file exporting ``transform(record)``
* ``transforms/labels.py:combine`` -- file plus explicit function name
* ``my_package.transforms:combine`` -- importable module plus function

Relative file paths resolve against the loader's ``base_dir`` (the
directory of the config file, or CWD).  Each reference is imported once
per loader and cached.
"""

from __future__ import annotations

import importlib
import importlib.util
import json
import logging
from pathlib import Path
from typing import Any, Callable

from ..errors import CustomFunctionError

logger = logging.getLogger(__name__)

TransformFunction = Callable[[dict[str, Any]], Any]

DEFAULT_FUNCTION_NAME = "transform"


class FunctionLoader:
    """Import and cache transform functions by reference.

    Args:
        base_dir: Directory used to resolve relative file references.
    """

    def __init__(self, base_dir: Path | None = None) -> None:
        self._base_dir = base_dir or Path.cwd()
        self._cache: dict[str, TransformFunction] = {}

    def load(self, reference: str) -> TransformFunction:
        """Return the callable for *reference*, importing it on first use.

        Raises:
            CustomFunctionError: If the module cannot be imported or does
                not expose a callable of the expected name.
        """
        cached = self._cache.get(reference)
        if cached is not None:
            return cached

        target, _, func_name = reference.partition(":")
        func_name = func_name or DEFAULT_FUNCTION_NAME

        try:
            if target.endswith(".py") or "/" in target or "\\" in target:
                module = self._import_file(target)
            else:
                module = importlib.import_module(target)
        except CustomFunctionError:
            raise
        except Exception as exc:
            raise CustomFunctionError(reference, str(exc)) from exc

        func = getattr(module, func_name, None)
        if not callable(func):
            raise CustomFunctionError(
                reference,
                f"module does not define a callable '{func_name}'",
            )

        logger.debug("Loaded custom transform %s", reference)
        self._cache[reference] = func
        return func

    def execute(self, reference: str, record: dict[str, Any]) -> Any:
        """Load *reference* and call it with *record*.

        The return value must be JSON-serialisable because it ends up in
        the hashed payload.

        Raises:
            CustomFunctionError: On load failure, on any exception raised
                by the function, or on a non-serialisable result.
        """
        func = self.load(reference)
        record_key = record.get("key")
        try:
            result = func(record)
        except Exception as exc:
            raise CustomFunctionError(
                reference, f"{type(exc).__name__}: {exc}", record_key
            ) from exc

        try:
            json.dumps(result)
        except (TypeError, ValueError) as exc:
            raise CustomFunctionError(
                reference,
                f"returned a non JSON-serialisable value ({type(result).__name__})",
                record_key,
            ) from exc
        return result

    def _import_file(self, target: str) -> Any:
        path = Path(target)
        if not path.is_absolute():
            path = self._base_dir / path
        path = path.resolve()

        if not path.exists():
            raise CustomFunctionError(target, f"file not found: {path}")

        module_name = f"jpd_sync_transform_{abs(hash(str(path)))}"
        spec = importlib.util.spec_from_file_location(module_name, path)
        if spec is None or spec.loader is None:
            raise CustomFunctionError(target, f"cannot import {path}")
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
        return module
