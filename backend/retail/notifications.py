"""
Activity notifications: "New product added", "Order placed", ...

Delivery is best effort. notify() reports the outcome as a NotificationResult
instead of raising, so a dead queue can never fail the operation that
triggered the message. Callers are free to ignore the result.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from retail import queues

logger = logging.getLogger(__name__)

LOAD_FAILED_MESSAGE = "Failed to load activities"


@dataclass(frozen=True)
class NotificationResult:
    delivered: bool
    error: Optional[str] = None


class ActivityNotifier:
    def __init__(self, db: Session, queue_name: str):
        self.db = db
        self.queue_name = queue_name

    def notify(self, message: str) -> NotificationResult:
        try:
            queues.send_message(self.db, self.queue_name, message)
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.warning("activity not delivered to %s: %s (%s)", self.queue_name, message, exc)
            return NotificationResult(delivered=False, error=str(exc))
        return NotificationResult(delivered=True)

    def recent_activities(self, max_messages: int = 10) -> List[str]:
        try:
            raw_messages = queues.peek_messages(self.db, self.queue_name, max_messages)
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.warning("could not peek %s: %s", self.queue_name, exc)
            return [LOAD_FAILED_MESSAGE]
        return [queues.format_activity(raw) for raw in raw_messages]
