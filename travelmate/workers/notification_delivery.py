"""Notification delivery worker.

Jobs are enqueued by RqNotificationSink on the NOTIFICATIONS_QUEUE queue.

Usage:
    rq worker notifications --url $REDIS_URL
    python -m travelmate.workers.notification_delivery
"""
from __future__ import annotations

import argparse
from typing import Dict

from travelmate.core.logging import log_event
from travelmate.models.notification import Notification


def deliver_notification(payload: Dict) -> Dict:
    """
    Deliver one notification.

    Args:
        payload: Notification.model_dump(mode="json")

    Returns:
        Dict with delivered flag and target user
    """
    notification = Notification.model_validate(payload)
    log_event(
        "info",
        "notification.delivered",
        user_id=notification.target_user_id,
        event_type=notification.kind.value,
        extra={"sender_name": notification.sender_name},
    )
    return {"delivered": True, "target_user_id": notification.target_user_id}


def main() -> None:
    from redis import Redis
    from rq import Queue, Worker

    from travelmate.core.config import settings

    parser = argparse.ArgumentParser(description="Notification delivery worker")
    parser.add_argument("--queue", default=settings.NOTIFICATIONS_QUEUE, help="Queue name to listen on")
    parser.add_argument("--burst", action="store_true", help="Drain the queue and exit")
    args = parser.parse_args()

    redis_conn = Redis.from_url(settings.REDIS_URL)
    print(f"[notification-worker] Listening on '{args.queue}'. CTRL+C to stop.")
    worker = Worker([Queue(args.queue, connection=redis_conn)], connection=redis_conn)
    worker.work(burst=args.burst)


if __name__ == "__main__":
    main()
