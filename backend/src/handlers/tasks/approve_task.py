"""
Approve Task Handler.
POST /requester/instant-jobs/{taskId}/approve

Releases the escrow and books the platform commission. Safe to retry:
approving an approved task returns it unchanged.
"""
from instantjobs.auth import get_user_sub
from instantjobs.factory import default_engine
from instantjobs.logging import log_event
from instantjobs.utils import format_response, error_response, get_path_param


def handler(event, context):
    log_event(event)

    requester_id = get_user_sub(event)
    if not requester_id:
        return format_response(401, {'error': 'Unauthorized'})

    try:
        task = default_engine().approve_task(get_path_param(event, 'taskId'), requester_id)
        return format_response(200, {'message': 'Micro-task approved', 'task': task})
    except Exception as e:
        return error_response(e)
