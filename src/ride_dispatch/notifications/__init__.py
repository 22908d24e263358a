from .dispatch import (
    LoggingNotifier,
    Notification,
    NotificationDeduplicator,
    NotificationDispatch,
    NotificationKind,
    RedisNotificationDeduplicator,
)

__all__ = [
    "LoggingNotifier",
    "Notification",
    "NotificationDeduplicator",
    "NotificationDispatch",
    "NotificationKind",
    "RedisNotificationDeduplicator",
]
