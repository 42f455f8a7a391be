"""
Mark Complete Handler.
POST /worker/instant-jobs/{taskId}/complete
"""
from instantjobs.auth import get_user_sub
from instantjobs.factory import default_engine
from instantjobs.logging import log_event
from instantjobs.utils import format_response, error_response, get_path_param


def handler(event, context):
    log_event(event)

    worker_id = get_user_sub(event)
    if not worker_id:
        return format_response(401, {'error': 'Unauthorized'})

    try:
        task = default_engine().mark_complete(get_path_param(event, 'taskId'), worker_id)
        return format_response(200, {'message': 'Micro-task marked as completed', 'task': task})
    except Exception as e:
        return error_response(e)
