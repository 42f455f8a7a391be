"""
List Messages Handler.
GET /instant-jobs/{taskId}/messages
"""
from instantjobs.auth import get_user_sub, is_admin
from instantjobs.factory import default_engine, default_channel
from instantjobs.logging import log_event
from instantjobs.utils import format_response, error_response, get_path_param


def handler(event, context):
    log_event(event)

    user_id = get_user_sub(event)
    if not user_id:
        return format_response(401, {'error': 'Unauthorized'})

    task_id = get_path_param(event, 'taskId')
    try:
        task = default_engine().get_task(task_id)
        if not task.is_party(user_id) and not is_admin(event):
            return format_response(403, {'error': 'Forbidden', 'message': 'Not a party to this task'})

        channel = default_channel()
        messages = []
        for message in channel.list_messages(task_id):
            item = message.to_item()
            item['attachmentUrls'] = channel.attachment_urls(message)
            messages.append(item)

        return format_response(200, {'messages': messages})
    except Exception as e:
        return error_response(e)
