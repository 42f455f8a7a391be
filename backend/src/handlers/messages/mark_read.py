"""
Mark Message Read Handler.
POST /messages/{messageId}/read
"""
from instantjobs.auth import get_user_sub
from instantjobs.factory import default_channel
from instantjobs.logging import log_event
from instantjobs.utils import format_response, error_response, get_path_param


def handler(event, context):
    log_event(event)

    reader_id = get_user_sub(event)
    if not reader_id:
        return format_response(401, {'error': 'Unauthorized'})

    try:
        message = default_channel().mark_message_read(get_path_param(event, 'messageId'), reader_id)
        return format_response(200, {'message': message})
    except Exception as e:
        return error_response(e)
