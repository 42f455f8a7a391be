"""
Post Message Handler.
POST /instant-jobs/{taskId}/messages
Body: {
    "message": "...",
    "attachments": [{"filename": "brief.pdf", "contentType": "application/pdf", "data": "<base64>"}]
}

The sender's role is derived from the task: the requester posts as
requester, anyone else as worker. Open tasks have nobody to talk to yet.
"""
import base64
import binascii
from instantjobs.auth import get_user_sub, get_user_name
from instantjobs.errors import InvalidState, ValidationError
from instantjobs.factory import default_engine, default_channel
from instantjobs.logging import log_event
from instantjobs.messaging import Attachment
from instantjobs.models import SenderRole, TaskStatus
from instantjobs.utils import format_response, error_response, get_path_param, parse_body


def decode_attachments(raw_attachments) -> list:
    attachments = []
    for raw in raw_attachments or []:
        try:
            data = base64.b64decode(raw.get('data') or '', validate=True)
        except (binascii.Error, ValueError, AttributeError):
            raise ValidationError("Attachments must be base64 encoded")
        attachments.append(Attachment(
            filename=raw.get('filename') or 'attachment',
            data=data,
            content_type=raw.get('contentType')
        ))
    return attachments


def handler(event, context):
    log_event(event)

    sender_id = get_user_sub(event)
    if not sender_id:
        return format_response(401, {'error': 'Unauthorized'})

    body = parse_body(event)
    task_id = get_path_param(event, 'taskId')
    try:
        task = default_engine().get_task(task_id)
        if task.status == TaskStatus.OPEN:
            raise InvalidState("Messaging opens once a worker has been selected")

        role = SenderRole.REQUESTER if task.requester_id == sender_id else SenderRole.WORKER
        channel = default_channel()
        message = channel.post_message(
            task_id,
            sender_id,
            role,
            body.get('message', ''),
            attachments=decode_attachments(body.get('attachments')),
            sender_name=get_user_name(event)
        )
        return format_response(201, {
            'message': message,
            'attachmentUrls': channel.attachment_urls(message)
        })
    except Exception as e:
        return error_response(e)
