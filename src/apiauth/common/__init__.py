"""Common utilities for apiauth."""

from apiauth.common.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
