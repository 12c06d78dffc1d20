"""
backend/agenda/services/events.py

Event emitter: pushes agenda events to Redis lists for the notification sender.

Two queues:
- events:notifications: already-decided patient messages (channel, template, recipient)
- events:agenda: internal agenda changes (series created or changed)

Delivery (WhatsApp, email) happens in the consumer; nothing here decides
whether a patient may be contacted.
"""

import json
import time
import logging
from dataclasses import asdict

from ..redis_client import redis_client
from .scheduling.status import NotificationIntent

logger = logging.getLogger(__name__)

NOTIFICATIONS_QUEUE = "events:notifications"
AGENDA_QUEUE = "events:agenda"


def _push(queue: str, event: dict) -> bool:
    try:
        redis_client.rpush(queue, json.dumps(event, default=str))
    except Exception as e:
        logger.error(f"Failed to emit event {event.get('type')} → {queue}: {e}")
        return False
    logger.info(f"Event emitted: {event.get('type')} → {queue}")
    return True


def emit_event(event_type: str, payload: dict) -> bool:
    """Emit an internal agenda event."""
    return _push(AGENDA_QUEUE, {
        "type": event_type,
        **payload,
        "ts": int(time.time()),
    })


def emit_notification(intent: NotificationIntent) -> bool:
    """Queue one patient notification."""
    return _push(NOTIFICATIONS_QUEUE, {
        "type": intent.template,
        **asdict(intent),
        "channel": intent.channel.value,
        "ts": int(time.time()),
    })


def emit_notifications(intents: list[NotificationIntent]) -> int:
    """Queue every intent; returns how many were accepted by Redis."""
    return sum(1 for intent in intents if emit_notification(intent))
