"""
Deposit Escrow Handler.
POST /requester/instant-jobs/{taskId}/deposit
Body: { "walletAddress": "0x..." }  worker payout address, defaults to the one on the application

Calls the escrow custodian first and records the deposit only once it
confirms; a 502 means nothing changed and the call can be repeated.
"""
from instantjobs.auth import get_user_sub
from instantjobs.factory import default_engine
from instantjobs.logging import log_event
from instantjobs.utils import format_response, error_response, get_path_param, parse_body


def handler(event, context):
    log_event(event)

    requester_id = get_user_sub(event)
    if not requester_id:
        return format_response(401, {'error': 'Unauthorized'})

    body = parse_body(event)
    try:
        task = default_engine().deposit_escrow(
            get_path_param(event, 'taskId'),
            requester_id,
            payout_address=body.get('walletAddress')
        )
        return format_response(200, {
            'message': 'Funds deposited in escrow',
            'escrowReference': task.escrow_reference,
            'task': task
        })
    except Exception as e:
        return error_response(e)
