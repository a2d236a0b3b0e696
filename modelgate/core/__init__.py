"""
Core Application Components

Configuration and dependencies.
"""

from modelgate.core.config import Settings, settings, get_settings

__all__ = [
    "Settings",
    "settings",
    "get_settings",
]
