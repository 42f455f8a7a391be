"""
Per-task message channel between a requester and the selected worker.

Messages are append-only and ordered by creation time. Attachment bytes go
to the blob store; the message keeps only the references.
"""
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional

from .config import config
from .dynamo import RecordStore, TASKS, MESSAGES
from .errors import ConditionFailed, Forbidden, NotFound, ValidationError
from .logging import logger
from .models import Message, SenderRole, Task
from .notifications import NotificationSink, Outbox
from .s3_utils import BlobStore, attachment_key


@dataclass
class Attachment:
    """An uploaded file on its way into the blob store."""
    filename: str
    data: bytes
    content_type: Optional[str] = None


class MessagingChannel:
    """Append-only message log keyed by task id."""

    def __init__(
        self,
        store: RecordStore,
        blob_store: BlobStore,
        sink: NotificationSink,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.store = store
        self.blob_store = blob_store
        self.sink = sink
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def _load_task(self, task_id: str) -> Task:
        item = self.store.get(TASKS, task_id) if task_id else None
        if not item:
            raise NotFound(f"Task {task_id} not found")
        return Task.from_item(item)

    def _validate(self, body: str, attachments: List[Attachment]) -> None:
        if not body and not attachments:
            raise ValidationError("A message needs text or at least one attachment")
        if len(body) > config.MAX_MESSAGE_LENGTH:
            raise ValidationError(f"Message must be at most {config.MAX_MESSAGE_LENGTH} characters")
        if len(attachments) > config.MAX_ATTACHMENTS_PER_MESSAGE:
            raise ValidationError(f"At most {config.MAX_ATTACHMENTS_PER_MESSAGE} attachments per message")
        for attachment in attachments:
            if not isinstance(attachment.data, (bytes, bytearray)) or not attachment.data:
                raise ValidationError(f"Attachment {attachment.filename} is empty")
            if len(attachment.data) > config.MAX_ATTACHMENT_BYTES:
                raise ValidationError(f"Attachment {attachment.filename} exceeds {config.MAX_ATTACHMENT_BYTES} bytes")

    def post_message(
        self,
        task_id: str,
        sender_id: str,
        sender_role,
        body: str,
        attachments: Optional[List[Attachment]] = None,
        sender_name: Optional[str] = None
    ) -> Message:
        try:
            role = SenderRole(sender_role)
        except ValueError:
            raise ValidationError(f"Unknown sender role: {sender_role}")

        body = (body or '').strip()
        attachments = list(attachments or [])
        self._validate(body, attachments)

        task = self._load_task(task_id)
        if role is SenderRole.REQUESTER and sender_id != task.requester_id:
            raise Forbidden("Only the task's requester can post as requester")
        if role is SenderRole.WORKER and (not sender_id or sender_id != task.selected_worker_id):
            raise Forbidden("Only the task's selected worker can post as worker")

        references = [
            self.blob_store.upload(bytes(a.data), attachment_key(task_id, a.filename), a.content_type)
            for a in attachments
        ]

        now = self.clock().isoformat()
        message = Message(
            message_id=str(uuid.uuid4()),
            task_id=task_id,
            sender_id=sender_id,
            sender_role=role,
            body=body,
            created_at=now,
            attachments=references,
            sender_name=sender_name,
        )
        self.store.insert(MESSAGES, message.to_item())
        logger.info(f"Message {message.message_id} posted on task {task_id} by {role.value}")

        try:
            self.store.conditional_update(TASKS, task_id, {}, {'lastActivityAt': now})
        except Exception as e:
            logger.warning(f"Could not touch last activity for task {task_id}: {e}")

        recipient_id = task.selected_worker_id if role is SenderRole.REQUESTER else task.requester_id
        text = f"New message for task \"{task.title}\""
        if references:
            text = f"New message with {len(references)} attachment(s) for task \"{task.title}\""

        outbox = Outbox(self.sink)
        outbox.add(recipient_id, role.counterpart.value, "New message", text, task_id, kind='message')
        outbox.flush()
        return message

    def list_messages(self, task_id: str) -> List[Message]:
        self._load_task(task_id)
        messages = [Message.from_item(item) for item in self.store.query(MESSAGES, {'taskId': task_id})]
        messages.sort(key=lambda m: (m.created_at, m.message_id))
        return messages

    def attachment_urls(self, message: Message) -> List[str]:
        return [self.blob_store.url_for(ref) for ref in message.attachments]

    def mark_message_read(self, message_id: str, reader_id: str) -> Message:
        item = self.store.get(MESSAGES, message_id) if message_id else None
        if not item:
            raise NotFound(f"Message {message_id} not found")
        message = Message.from_item(item)

        task = self._load_task(message.task_id)
        if not task.is_party(reader_id) or reader_id == message.sender_id:
            raise Forbidden("Only the message's recipient can mark it read")
        if message.is_read:
            return message

        try:
            item = self.store.conditional_update(MESSAGES, message_id, {'isRead': False}, {'isRead': True})
        except ConditionFailed:
            item = self.store.get(MESSAGES, message_id)
        return Message.from_item(item)
