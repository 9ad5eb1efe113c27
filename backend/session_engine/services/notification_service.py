"""Notification dispatch, injected into the engine at app creation.

The engine never talks to a delivery transport directly. After a mutation
has committed it hands a ``Notification`` to whichever dispatcher the
application was built with; a failing dispatcher is logged and never undoes
the mutation.
"""
import json
from dataclasses import dataclass, asdict, field
from enum import Enum
from typing import Iterable, Optional
import redis
from flask import current_app
from session_engine.utils import clock

class NotificationType(Enum):
    ATTENDANCE = 'attendance'
    ASSIGNMENT = 'assignment'
    GRADE = 'grade'
    EXAM = 'exam'

@dataclass
class Notification:
    recipient_id: int
    type: NotificationType
    title: str
    message: str
    entity_type: str
    entity_id: int
    priority: str = 'normal'
    action_url: Optional[str] = None
    created_at: str = field(default_factory=lambda: clock.utcnow().isoformat())

    def to_dict(self) -> dict:
        data = asdict(self)
        data['type'] = self.type.value
        return data

class NotificationDispatcher:
    """Interface for fire-and-forget delivery."""

    def dispatch(self, notification: Notification) -> None:
        raise NotImplementedError

class LogNotificationDispatcher(NotificationDispatcher):
    """Default dispatcher: records notifications in the application log."""

    def dispatch(self, notification: Notification) -> None:
        current_app.logger.info(
            f"Notify {notification.recipient_id} [{notification.type.value}] {notification.title}"
        )

class RedisNotificationDispatcher(NotificationDispatcher):
    """Publishes notifications on a Redis channel for the delivery service."""

    def __init__(self, client: redis.Redis, channel: str):
        self.client = client
        self.channel = channel

    def dispatch(self, notification: Notification) -> None:
        self.client.publish(self.channel, json.dumps(notification.to_dict()))

def build_dispatcher(config) -> NotificationDispatcher:
    redis_url = config.get('REDIS_URL')
    channel = config.get('NOTIFICATION_CHANNEL')

    if redis_url and channel:
        return RedisNotificationDispatcher(redis.from_url(redis_url), channel)
    return LogNotificationDispatcher()

def notify(notification: Notification) -> bool:
    """Dispatch one notification; failures are logged, never raised."""
    dispatcher = current_app.extensions['notification_dispatcher']
    try:
        dispatcher.dispatch(notification)
        return True
    except Exception as e:
        current_app.logger.warning(
            f"Notification to {notification.recipient_id} failed: {str(e)}"
        )
        return False

def notify_all(notifications: Iterable[Notification]) -> int:
    return sum(1 for notification in notifications if notify(notification))
