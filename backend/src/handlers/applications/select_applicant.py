"""
Select Applicant Handler.
POST /requester/instant-jobs/{taskId}/applications/{applicationId}/approve

Approves one application, rejects the others and moves the task to accepted.
Two concurrent selections on the same task: one wins, the other gets 409.
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
        task = default_engine().select_applicant(
            get_path_param(event, 'taskId'),
            get_path_param(event, 'applicationId'),
            requester_id
        )
        return format_response(200, {'message': 'Applicant selected', 'task': task})
    except Exception as e:
        return error_response(e)
