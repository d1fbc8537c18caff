# === MODULE PURPOSE ===
# Common utilities shared across all modules.

from .config import Config, load_config

__all__ = [
    "Config",
    "load_config",
]
