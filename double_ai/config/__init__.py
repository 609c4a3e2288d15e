from .config import Config, Settings, DEFAULT_SYSTEM_PROMPT
from .logging_setup import setup_logging

__all__ = [
    "Config",
    "Settings",
    "DEFAULT_SYSTEM_PROMPT",
    "setup_logging",
]
