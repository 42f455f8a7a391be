"""
Apply Handler.
POST /worker/instant-jobs/{taskId}/apply
Body: { "walletAddress": "0x..." }  (optional, can be attached later)
"""
from instantjobs.auth import get_user_sub, get_user_name
from instantjobs.factory import default_engine
from instantjobs.logging import log_event
from instantjobs.utils import format_response, error_response, get_path_param, parse_body


def handler(event, context):
    log_event(event)

    worker_id = get_user_sub(event)
    if not worker_id:
        return format_response(401, {'error': 'Unauthorized'})

    body = parse_body(event)
    try:
        application = default_engine().apply(
            get_path_param(event, 'taskId'),
            worker_id,
            body.get('workerName') or get_user_name(event),
            payout_address=body.get('walletAddress')
        )
        return format_response(201, {'message': 'Application submitted', 'application': application})
    except Exception as e:
        return error_response(e)
