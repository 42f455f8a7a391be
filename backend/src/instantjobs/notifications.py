"""
Notification sink and the post-commit outbox.

Notifications are best-effort: the engine queues them on an ``Outbox``
while it works and flushes the outbox only after the authoritative state
change has been written. A failing sink is logged and never reaches the
caller.
"""
import json
import boto3
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import List, Optional
from botocore.config import Config as BotoConfig
from .config import config
from .logging import logger

ROLE_ADMIN = 'admin'
ADMIN_RECIPIENT = 'admins'


@dataclass
class Notification:
    """One event record for one recipient."""
    recipient_id: str
    recipient_role: str
    title: str
    body: str
    related_task_id: Optional[str] = None
    kind: str = 'general'


class NotificationSink(ABC):
    """Fire-and-forget delivery of notification records."""

    @abstractmethod
    def notify(
        self,
        recipient_id: str,
        recipient_role: str,
        title: str,
        body: str,
        related_task_id: Optional[str] = None,
        kind: str = 'general'
    ) -> None:
        """Deliver one notification. May raise; callers treat failures as non-critical."""


class SqsNotificationSink(NotificationSink):
    """Publishes notifications to an SQS queue consumed by the delivery service."""

    def __init__(self, queue_url: str, client=None):
        self.queue_url = queue_url
        self.client = client or boto3.client(
            'sqs',
            region_name=config.AWS_REGION,
            config=BotoConfig(
                connect_timeout=config.EXTERNAL_CALL_TIMEOUT_SECONDS,
                read_timeout=config.EXTERNAL_CALL_TIMEOUT_SECONDS,
                retries={'max_attempts': config.EXTERNAL_CALL_MAX_ATTEMPTS}
            )
        )

    @classmethod
    def from_config(cls) -> 'SqsNotificationSink':
        return cls(config.NOTIFICATIONS_QUEUE_URL)

    def notify(self, recipient_id, recipient_role, title, body, related_task_id=None, kind='general'):
        message = {
            'recipientId': recipient_id,
            'recipientRole': recipient_role,
            'title': title,
            'body': body,
            'relatedTaskId': related_task_id,
            'type': kind,
            'read': False,
            'createdAt': datetime.now(timezone.utc).isoformat()
        }
        self.client.send_message(
            QueueUrl=self.queue_url,
            MessageBody=json.dumps(message, default=str)
        )
        logger.info(f"Notification '{title}' queued for {recipient_role} {recipient_id}")


class Outbox:
    """
    Collects notifications during an engine operation.
    Nothing is sent until ``flush`` is called after the state change commits.
    """

    def __init__(self, sink: NotificationSink):
        self.sink = sink
        self.pending: List[Notification] = []

    def add(self, recipient_id, recipient_role, title, body, related_task_id=None, kind='general'):
        if not recipient_id:
            logger.warning(f"Dropping notification '{title}' with no recipient")
            return
        self.pending.append(Notification(recipient_id, recipient_role, title, body, related_task_id, kind))

    def flush(self) -> int:
        """Deliver every pending notification. Returns how many were delivered."""
        delivered = 0
        pending, self.pending = self.pending, []
        for notification in pending:
            try:
                self.sink.notify(**asdict(notification))
                delivered += 1
            except Exception as e:
                logger.warning(
                    f"Notification '{notification.title}' to {notification.recipient_id} failed (non-critical): {e}"
                )
        return delivered
