"""Configuration files (YAML) and the :class:`ConfigManager` that reads them.

Packaged defaults live next to this module and are merged with user
overrides at load time.
"""

from .manager import ConfigManager

__all__ = [
    "ConfigManager",
]
