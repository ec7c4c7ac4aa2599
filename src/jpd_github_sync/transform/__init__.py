"""Field transformation from JPD records to GitHub issue attributes."""

from .custom_functions import FunctionLoader
from .engine import TransformerEngine
from .paths import get_path, unwrap_select
from .template import apply_filter, render_template

__all__ = [
    "FunctionLoader",
    "TransformerEngine",
    "apply_filter",
    "get_path",
    "render_template",
    "unwrap_select",
]
