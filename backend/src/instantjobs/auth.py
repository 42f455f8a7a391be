"""
Authentication utilities for extracting user info from Cognito tokens.
"""
from typing import Optional


def _claims(event: dict) -> dict:
    try:
        return event['requestContext']['authorizer']['claims'] or {}
    except (KeyError, TypeError):
        return {}


def get_user_sub(event: dict) -> Optional[str]:
    """
    Extract user sub (unique ID) from Cognito authorizer claims.

    Args:
        event: API Gateway Lambda proxy event

    Returns:
        User sub string or None if not authenticated
    """
    return _claims(event).get('sub')


def get_user_name(event: dict) -> str:
    """Display name for the caller, falling back to email or sub."""
    claims = _claims(event)
    return claims.get('name') or claims.get('email') or claims.get('sub') or ''


def get_user_groups(event: dict) -> list:
    """Extract user groups (requester, worker, admin) from Cognito claims."""
    groups = _claims(event).get('cognito:groups', '')
    if isinstance(groups, str):
        return groups.split(',') if groups else []
    return groups or []


def is_admin(event: dict) -> bool:
    """Check if user belongs to admin group."""
    return 'admin' in get_user_groups(event)
