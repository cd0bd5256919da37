from .config import settings, Settings
from .concurrency import ConcurrencyController, ReadWriteLock

__all__ = [
    "settings",
    "Settings",
    # Concurrency
    "ConcurrencyController",
    "ReadWriteLock",
]
