"""
Get Instant Job Handler.
GET /instant-jobs/{taskId}
"""
from instantjobs.auth import get_user_sub
from instantjobs.factory import default_engine
from instantjobs.logging import log_event
from instantjobs.utils import format_response, error_response, get_path_param


def handler(event, context):
    log_event(event)

    if not get_user_sub(event):
        return format_response(401, {'error': 'Unauthorized'})

    try:
        task = default_engine().get_task(get_path_param(event, 'taskId'))
        return format_response(200, {'task': task})
    except Exception as e:
        return error_response(e)
