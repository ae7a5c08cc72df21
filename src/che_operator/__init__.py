"""Che routing operator runtime helpers."""

from .config import OperatorConfig, load_config  # noqa: F401
from .handlers import OperatorContext, build_context  # noqa: F401

__all__ = [
    "OperatorConfig",
    "OperatorContext",
    "build_context",
    "load_config",
]
