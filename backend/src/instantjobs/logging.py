"""
Logging utilities for the instant jobs backend.
"""
import logging
import json

# Configure logger
logger = logging.getLogger('instantjobs')
logger.setLevel(logging.INFO)

# Add handler if not already configured
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    ))
    logger.addHandler(handler)


LOGGED_CLAIMS = ('sub', 'cognito:groups')


def _redact(event: dict) -> dict:
    """Drop bodies (attachments, payout addresses), headers and identity claims."""
    safe_event = {k: v for k, v in event.items() if k not in ('body', 'headers', 'multiValueHeaders')}

    authorizer = (safe_event.get('requestContext') or {}).get('authorizer') or {}
    claims = authorizer.get('claims')
    if isinstance(claims, dict):
        safe_event['requestContext'] = dict(safe_event['requestContext'])
        safe_event['requestContext']['authorizer'] = dict(
            authorizer,
            claims={k: v for k, v in claims.items() if k in LOGGED_CLAIMS}
        )
    return safe_event


def log_event(event: dict) -> None:
    """Log incoming Lambda event for debugging."""
    try:
        logger.info(f"Lambda event: {json.dumps(_redact(event), default=str)}")
    except Exception as e:
        logger.warning(f"Could not log event: {e}")
