# Shared library for the remote job sync engine
from shared.config.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
