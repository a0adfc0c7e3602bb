"""Notification service package."""

from .backend import (
    EmailBackend,
    InMemoryEmailBackend,
    InMemoryPushBackend,
    PushBackend,
    SMTPEmailBackend,
)
from .dispatcher import NotificationDispatcher

__all__ = [
    "EmailBackend",
    "InMemoryEmailBackend",
    "InMemoryPushBackend",
    "NotificationDispatcher",
    "PushBackend",
    "SMTPEmailBackend",
]
