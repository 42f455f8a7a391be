"""
Create Instant Job Handler.
POST /requester/instant-jobs
Body: { "title", "description", "category", "budget", "currency", "deadline",
        "tags": [...], "requiredSkills": [...], "estimatedTime" }
"""
from instantjobs.auth import get_user_sub, get_user_name
from instantjobs.factory import default_engine
from instantjobs.logging import log_event
from instantjobs.utils import format_response, error_response, parse_body


def handler(event, context):
    log_event(event)

    requester_id = get_user_sub(event)
    if not requester_id:
        return format_response(401, {'error': 'Unauthorized'})

    body = parse_body(event)
    try:
        task = default_engine().create_task(
            requester_id=requester_id,
            requester_name=body.get('requesterName') or get_user_name(event),
            title=body.get('title'),
            description=body.get('description'),
            budget=body.get('budget'),
            currency=body.get('currency'),
            deadline=body.get('deadline'),
            category=body.get('category') or 'general',
            tags=body.get('tags'),
            required_skills=body.get('requiredSkills'),
            estimated_time=body.get('estimatedTime')
        )
        return format_response(201, {'message': 'Micro-task created', 'task': task})
    except Exception as e:
        return error_response(e)
