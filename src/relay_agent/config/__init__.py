"""Config module - layered settings."""

from .config import Config
from .defaults import DEFAULT_CONFIG

__all__ = [
    "Config",
    "DEFAULT_CONFIG",
]
