"""
travelmate/features/notifications/sink.py

Notification sinks. Delivery transport is owned by the notification
service; matching only hands notifications off.

- LoggingNotificationSink: structured log line per notification
- InMemoryNotificationSink: keeps notifications in a list
- RqNotificationSink: enqueues a delivery job on the Redis-backed rq queue
"""

from datetime import datetime, timezone
from typing import List, Optional

from travelmate.core.logging import log_event
from travelmate.models.notification import Notification, NotificationKind


class NotificationSink:
    """Fire-and-forget notification hand-off."""

    def send(self, target_user_id: str, sender_name: str, kind: NotificationKind, message: str) -> None:
        raise NotImplementedError


def _build(target_user_id: str, sender_name: str, kind: NotificationKind, message: str) -> Notification:
    return Notification(
        target_user_id=target_user_id,
        sender_name=sender_name,
        kind=NotificationKind(kind),
        message=message,
        created_at=datetime.now(timezone.utc),
    )


class LoggingNotificationSink(NotificationSink):

    def send(self, target_user_id, sender_name, kind, message):
        notification = _build(target_user_id, sender_name, kind, message)
        log_event(
            "info",
            "notification.sent",
            user_id=notification.target_user_id,
            event_type=notification.kind.value,
            extra={"sender_name": notification.sender_name, "notification_message": notification.message},
        )


class InMemoryNotificationSink(NotificationSink):

    def __init__(self):
        self.sent: List[Notification] = []

    def send(self, target_user_id, sender_name, kind, message):
        self.sent.append(_build(target_user_id, sender_name, kind, message))

    def for_user(self, user_id: str) -> List[Notification]:
        return [n for n in self.sent if n.target_user_id == user_id]


class RqNotificationSink(NotificationSink):
    """Enqueue deliveries; the worker in travelmate.workers.notification_delivery sends them."""

    def __init__(self, queue=None, redis_url: Optional[str] = None, queue_name: str = "notifications"):
        if queue is None:
            from redis import Redis
            from rq import Queue

            from travelmate.core.config import settings

            redis_conn = Redis.from_url(redis_url or settings.REDIS_URL)
            queue = Queue(queue_name, connection=redis_conn)
        self.queue = queue

    def send(self, target_user_id, sender_name, kind, message):
        notification = _build(target_user_id, sender_name, kind, message)
        job = self.queue.enqueue(
            "travelmate.workers.notification_delivery.deliver_notification",
            notification.model_dump(mode="json"),
            job_timeout="1m",
            result_ttl=3600,
        )
        log_event(
            "info",
            "notification.enqueued",
            user_id=notification.target_user_id,
            event_type=notification.kind.value,
            extra={"job_id": job.id},
        )


def build_notification_sink(backend: str) -> NotificationSink:
    """Pick a sink from the NOTIFICATIONS_BACKEND setting."""
    if backend == "memory":
        return InMemoryNotificationSink()
    if backend == "rq":
        from travelmate.core.config import settings

        return RqNotificationSink(queue_name=settings.NOTIFICATIONS_QUEUE)
    return LoggingNotificationSink()
