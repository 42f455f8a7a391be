"""
Builds the engine and message channel for Lambda handlers.
Cached per container so warm invocations reuse the boto3 clients.
"""
from functools import lru_cache
from .dynamo import DynamoRecordStore
from .escrow import LambdaEscrowCustodian
from .lifecycle import TaskLifecycleEngine
from .messaging import MessagingChannel
from .notifications import SqsNotificationSink
from .s3_utils import S3BlobStore


@lru_cache(maxsize=None)
def default_store() -> DynamoRecordStore:
    return DynamoRecordStore.from_config()


@lru_cache(maxsize=None)
def default_sink() -> SqsNotificationSink:
    return SqsNotificationSink.from_config()


@lru_cache(maxsize=None)
def default_engine() -> TaskLifecycleEngine:
    return TaskLifecycleEngine(
        store=default_store(),
        custodian=LambdaEscrowCustodian.from_config(),
        sink=default_sink()
    )


@lru_cache(maxsize=None)
def default_channel() -> MessagingChannel:
    return MessagingChannel(
        store=default_store(),
        blob_store=S3BlobStore.from_config(),
        sink=default_sink()
    )
