"""
Common utility functions for Lambda handlers.
"""
import base64
import json
from dataclasses import is_dataclass, asdict
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional
from .errors import InstantJobsError
from .logging import logger


class DecimalEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal types from DynamoDB and engine records."""

    def default(self, o):
        if isinstance(o, Decimal):
            # Amounts travel as strings so no precision is lost in the browser
            return str(o)
        if isinstance(o, Enum):
            return o.value
        if hasattr(o, 'to_item'):
            return o.to_item()
        if is_dataclass(o):
            return asdict(o)
        return super().default(o)


def format_response(
    status_code: int,
    body: Any,
    headers: Dict[str, str] = None
) -> Dict[str, Any]:
    """
    Format a standard API Gateway response with CORS headers.

    Args:
        status_code: HTTP status code
        body: Response body (will be JSON serialized)
        headers: Additional headers to include

    Returns:
        API Gateway response dict
    """
    default_headers = {
        'Access-Control-Allow-Origin': '*',
        'Access-Control-Allow-Credentials': True,
        'Content-Type': 'application/json'
    }

    if headers:
        default_headers.update(headers)

    return {
        'statusCode': status_code,
        'headers': default_headers,
        'body': json.dumps(body, cls=DecimalEncoder)
    }


def error_response(error: Exception) -> Dict[str, Any]:
    """Turn an engine error (or anything unexpected) into a response."""
    if isinstance(error, InstantJobsError):
        logger.info(f"{type(error).__name__}: {error.message}")
        return format_response(error.status_code, error.to_dict())
    logger.exception(f"Unhandled error: {error}")
    return format_response(500, {'error': 'InternalError', 'message': 'Internal Server Error', 'retryable': True})


def parse_body(event: dict) -> dict:
    """
    Safely parse JSON body from API Gateway event.

    Args:
        event: API Gateway Lambda proxy event

    Returns:
        Parsed body dict or empty dict if invalid
    """
    try:
        body = event.get('body') or '{}'
        if event.get('isBase64Encoded') and isinstance(body, str):
            body = base64.b64decode(body).decode('utf-8')
        if isinstance(body, str):
            parsed = json.loads(body)
            return parsed if isinstance(parsed, dict) else {}
        return body or {}
    except (json.JSONDecodeError, TypeError, ValueError):
        return {}


def get_path_param(event: dict, param_name: str) -> Optional[str]:
    """Extract path parameter from event."""
    try:
        return event['pathParameters'][param_name]
    except (KeyError, TypeError):
        return None


def get_query_param(event: dict, param_name: str, default: str = None) -> str:
    """Extract query string parameter from event."""
    params = event.get('queryStringParameters') or {}
    return params.get(param_name, default)
