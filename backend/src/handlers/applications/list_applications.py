"""
List Applications Handler.
GET /requester/instant-jobs/{taskId}/applications  -> applications on a task (requester only)
GET /worker/applications                          -> the caller's own applications
"""
from instantjobs.auth import get_user_sub, is_admin
from instantjobs.factory import default_engine
from instantjobs.logging import log_event
from instantjobs.utils import format_response, error_response, get_path_param


def handler(event, context):
    log_event(event)

    user_id = get_user_sub(event)
    if not user_id:
        return format_response(401, {'error': 'Unauthorized'})

    try:
        engine = default_engine()
        task_id = get_path_param(event, 'taskId')
        if not task_id:
            applications = engine.list_applications_by_worker(user_id)
            return format_response(200, {'applications': applications})

        task = engine.get_task(task_id)
        if task.requester_id != user_id and not is_admin(event):
            return format_response(403, {'error': 'Forbidden', 'message': 'Only the requester can list applications'})

        applications = engine.list_applications(task_id)
        return format_response(200, {'applications': applications})
    except Exception as e:
        return error_response(e)
