"""
Close Task Handler (admin).
POST /admin/instant-jobs/{taskId}/close
Body: { "reason": "..." }

Refunds any escrowed funds to the requester, then closes the task.
"""
from instantjobs.auth import get_user_sub, is_admin
from instantjobs.factory import default_engine
from instantjobs.logging import log_event
from instantjobs.utils import format_response, error_response, get_path_param, parse_body


def handler(event, context):
    log_event(event)

    admin_id = get_user_sub(event)
    if not admin_id:
        return format_response(401, {'error': 'Unauthorized'})

    body = parse_body(event)
    try:
        task = default_engine().close_task(
            get_path_param(event, 'taskId'),
            admin_id,
            body.get('reason', ''),
            as_admin=is_admin(event)
        )
        return format_response(200, {'message': 'Micro-task closed', 'task': task})
    except Exception as e:
        return error_response(e)
