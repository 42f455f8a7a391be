"""
Update Payout Address Handler.
PUT /worker/applications/{applicationId}/wallet
Body: { "walletAddress": "0x..." }
"""
from instantjobs.auth import get_user_sub
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
        application = default_engine().update_application_payout_address(
            get_path_param(event, 'applicationId'),
            worker_id,
            body.get('walletAddress')
        )
        return format_response(200, {'message': 'Wallet address updated', 'application': application})
    except Exception as e:
        return error_response(e)
