"""
Activity Queue
==============

Append-only message channel backed by the queue_messages table.

Message body format (JSON):
    {"timestamp": "2026-01-31T09:15:00+00:00", "message": "New product added: 'Kettle'"}

Readers only peek: messages are never dequeued, and a peek returns the oldest
messages first, up to max_messages.
"""

import json
import logging
from typing import List

from sqlalchemy import select
from sqlalchemy.orm import Session

from retail.models import QueueMessage, utcnow

logger = logging.getLogger(__name__)

# Same per-call cap as a cloud storage queue peek
MAX_PEEK_MESSAGES = 32


def send_message(db: Session, queue_name: str, message: str) -> QueueMessage:
    body = json.dumps({"timestamp": utcnow().isoformat(), "message": message})
    queued = QueueMessage(queue_name=queue_name, body=body)
    db.add(queued)
    db.commit()
    logger.debug("queued message on %s: %s", queue_name, message)
    return queued


def peek_messages(db: Session, queue_name: str, max_messages: int = 10) -> List[str]:
    """Return raw message bodies, oldest first, without removing them."""
    max_messages = max(1, min(max_messages, MAX_PEEK_MESSAGES))
    stmt = (
        select(QueueMessage.body)
        .where(QueueMessage.queue_name == queue_name)
        .order_by(QueueMessage.id)
        .limit(max_messages)
    )
    return list(db.scalars(stmt).all())


def format_activity(raw: str) -> str:
    """Render a queued body as "[timestamp] message".

    Anything that is not a JSON object with both keys is returned verbatim.
    """
    try:
        payload = json.loads(raw)
        return f"[{payload['timestamp']}] {payload['message']}"
    except (ValueError, TypeError, KeyError):
        return raw
