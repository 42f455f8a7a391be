"""
List My Tasks Handler.
GET /requester/instant-jobs  -> tasks the caller posted
GET /worker/my-instant-jobs   -> tasks the caller was selected for (?role=worker)
"""
from instantjobs.auth import get_user_sub
from instantjobs.factory import default_engine
from instantjobs.logging import log_event
from instantjobs.utils import format_response, error_response, get_query_param


def handler(event, context):
    log_event(event)

    user_id = get_user_sub(event)
    if not user_id:
        return format_response(401, {'error': 'Unauthorized'})

    try:
        engine = default_engine()
        if get_query_param(event, 'role', 'requester') == 'worker':
            tasks = engine.list_tasks_by_worker(user_id)
        else:
            tasks = engine.list_tasks_by_requester(user_id)

        status = get_query_param(event, 'status')
        if status:
            tasks = [t for t in tasks if t.status.value == status]

        return format_response(200, {'tasks': tasks, 'totalTasks': len(tasks)})
    except Exception as e:
        return error_response(e)
