"""
Start Dispute Handler.
POST /instant-jobs/{taskId}/dispute
Body: { "reason": "..." }
"""
from instantjobs.auth import get_user_sub, is_admin
from instantjobs.factory import default_engine
from instantjobs.logging import log_event
from instantjobs.utils import format_response, error_response, get_path_param, parse_body


def handler(event, context):
    log_event(event)

    user_id = get_user_sub(event)
    if not user_id:
        return format_response(401, {'error': 'Unauthorized'})

    body = parse_body(event)
    reason = (body.get('reason') or '').strip()
    if not reason:
        return format_response(400, {'error': 'ValidationError', 'message': 'Missing reason'})

    try:
        task = default_engine().open_dispute(
            get_path_param(event, 'taskId'),
            user_id,
            reason,
            as_admin=is_admin(event)
        )
        return format_response(200, {'message': 'Dispute opened', 'task': task})
    except Exception as e:
        return error_response(e)
