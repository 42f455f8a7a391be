"""
Configuration module for the instant jobs backend.
Loads all environment variables needed by the engine and its handlers.
"""
import os
from decimal import Decimal


class Config:
    """Centralized configuration from environment variables."""

    # AWS Region
    AWS_REGION = os.environ.get('AWS_REGION', 'us-east-1')

    # DynamoDB Tables
    TASKS_TABLE = os.environ.get('TASKS_TABLE', 'instant-jobs-tasks')
    APPLICATIONS_TABLE = os.environ.get('APPLICATIONS_TABLE', 'instant-jobs-applications')
    MESSAGES_TABLE = os.environ.get('MESSAGES_TABLE', 'instant-jobs-messages')
    COMMISSIONS_TABLE = os.environ.get('COMMISSIONS_TABLE', 'instant-jobs-commissions')

    # SQS Queues
    NOTIFICATIONS_QUEUE_URL = os.environ.get('NOTIFICATIONS_QUEUE_URL', '')

    # S3 Buckets
    ATTACHMENTS_BUCKET = os.environ.get('ATTACHMENTS_BUCKET', '')
    PRESIGNED_URL_EXPIRATION = int(os.environ.get('PRESIGNED_URL_EXPIRATION', '3600'))

    # Escrow custodian (Lambda wrapping the on-chain escrow contract)
    ESCROW_FUNCTION_NAME = os.environ.get('ESCROW_FUNCTION_NAME', '')

    # Bounds for every call leaving the process
    EXTERNAL_CALL_TIMEOUT_SECONDS = int(os.environ.get('EXTERNAL_CALL_TIMEOUT_SECONDS', '10'))
    EXTERNAL_CALL_MAX_ATTEMPTS = int(os.environ.get('EXTERNAL_CALL_MAX_ATTEMPTS', '2'))

    # Platform economics
    COMMISSION_PERCENT = Decimal(os.environ.get('COMMISSION_PERCENT', '5'))

    # Sibling applications rejected per batch when an applicant is selected
    SELECTION_BATCH_SIZE = int(os.environ.get('SELECTION_BATCH_SIZE', '25'))

    # Messaging limits
    MAX_ATTACHMENTS_PER_MESSAGE = int(os.environ.get('MAX_ATTACHMENTS_PER_MESSAGE', '5'))
    MAX_ATTACHMENT_BYTES = int(os.environ.get('MAX_ATTACHMENT_BYTES', str(10 * 1024 * 1024)))
    MAX_MESSAGE_LENGTH = int(os.environ.get('MAX_MESSAGE_LENGTH', '5000'))


config = Config()
