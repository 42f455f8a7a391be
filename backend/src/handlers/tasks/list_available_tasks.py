"""
List Available Tasks Handler.
GET /worker/instant-jobs
Returns open tasks, optionally narrowed by category or required skill.
"""
from instantjobs.factory import default_engine
from instantjobs.logging import log_event
from instantjobs.utils import format_response, error_response, get_query_param


def handler(event, context):
    log_event(event)

    try:
        tasks = default_engine().list_open_tasks()

        category = get_query_param(event, 'category')
        skill = get_query_param(event, 'skill')
        if category:
            tasks = [t for t in tasks if t.category == category]
        if skill:
            tasks = [t for t in tasks if skill in t.required_skills]

        return format_response(200, {'tasks': tasks, 'totalTasks': len(tasks)})
    except Exception as e:
        return error_response(e)
