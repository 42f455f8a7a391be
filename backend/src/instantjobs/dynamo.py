"""
Record store access for the instant jobs engine.

The engine only needs four primitives: get by key, insert-if-absent,
conditional update guarded by expected field values, and equality
queries. ``DynamoRecordStore`` implements them on DynamoDB; tests inject
an in-memory store with the same contract.
"""
import threading
import boto3
from abc import ABC, abstractmethod
from typing import List, Dict, Any, Optional
from boto3.dynamodb.conditions import Key, Attr
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError
from .config import config
from .errors import ConditionFailed
from .logging import logger

# Logical collection names used by the engine
TASKS = 'tasks'
APPLICATIONS = 'applications'
MESSAGES = 'messages'
COMMISSIONS = 'commissions'

# Partition key attribute of each collection
KEY_ATTRIBUTES = {
    TASKS: 'taskId',
    APPLICATIONS: 'applicationId',
    MESSAGES: 'messageId',
    COMMISSIONS: 'taskId',
}

# GSIs available for equality queries: (collection, attribute) -> index name
INDEXES = {
    (TASKS, 'status'): 'StatusIndex',
    (TASKS, 'requesterId'): 'RequesterIndex',
    (TASKS, 'selectedWorkerId'): 'WorkerIndex',
    (APPLICATIONS, 'taskId'): 'TaskIndex',
    (APPLICATIONS, 'workerId'): 'WorkerIndex',
    (APPLICATIONS, 'status'): 'StatusIndex',
    (MESSAGES, 'taskId'): 'TaskIndex',
}


class RecordStore(ABC):
    """Key/value document access with per-document compare-and-update."""

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """Return the document or None."""

    @abstractmethod
    def insert(self, collection: str, doc: Dict[str, Any]) -> Dict[str, Any]:
        """Create a document. Raises ConditionFailed if the key already exists."""

    @abstractmethod
    def conditional_update(
        self,
        collection: str,
        doc_id: str,
        expected: Dict[str, Any],
        changes: Dict[str, Any]
    ) -> Dict[str, Any]:
        """
        Apply ``changes`` only if every field in ``expected`` still holds.
        An expected value of None means the field is absent or null.
        Raises ConditionFailed when the document is missing or stale.
        Returns the updated document.
        """

    @abstractmethod
    def query(self, collection: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Return all documents whose fields equal every value in ``filters``."""


def _condition_for(expected: Dict[str, Any], key_attr: str):
    condition = Attr(key_attr).exists()
    for name, value in expected.items():
        if value is None:
            clause = Attr(name).not_exists() | Attr(name).eq(None)
        else:
            clause = Attr(name).eq(value)
        condition = condition & clause
    return condition


class DynamoRecordStore(RecordStore):
    """RecordStore backed by one DynamoDB table per collection."""

    def __init__(self, table_names: Dict[str, str], resource=None):
        self.table_names = table_names
        self.resource = resource
        self._local = threading.local()

    def _dynamodb(self):
        """One boto3 resource per thread; resources are not safe to share across threads."""
        if self.resource is not None:
            return self.resource
        dynamodb = getattr(self._local, 'dynamodb', None)
        if dynamodb is None:
            dynamodb = boto3.session.Session().resource(
                'dynamodb',
                region_name=config.AWS_REGION,
                config=BotoConfig(
                    connect_timeout=config.EXTERNAL_CALL_TIMEOUT_SECONDS,
                    read_timeout=config.EXTERNAL_CALL_TIMEOUT_SECONDS,
                    retries={'max_attempts': config.EXTERNAL_CALL_MAX_ATTEMPTS}
                )
            )
            self._local.dynamodb = dynamodb
        return dynamodb

    @classmethod
    def from_config(cls) -> 'DynamoRecordStore':
        return cls({
            TASKS: config.TASKS_TABLE,
            APPLICATIONS: config.APPLICATIONS_TABLE,
            MESSAGES: config.MESSAGES_TABLE,
            COMMISSIONS: config.COMMISSIONS_TABLE,
        })

    def _table(self, collection: str):
        return self._dynamodb().Table(self.table_names[collection])

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        response = self._table(collection).get_item(
            Key={KEY_ATTRIBUTES[collection]: doc_id},
            ConsistentRead=True
        )
        return response.get('Item')

    def insert(self, collection: str, doc: Dict[str, Any]) -> Dict[str, Any]:
        key_attr = KEY_ATTRIBUTES[collection]
        # Null index keys are rejected by DynamoDB, so unset fields are omitted
        item = {k: v for k, v in doc.items() if v is not None}
        try:
            self._table(collection).put_item(
                Item=item,
                ConditionExpression=Attr(key_attr).not_exists()
            )
        except ClientError as e:
            if e.response['Error']['Code'] == 'ConditionalCheckFailedException':
                raise ConditionFailed(f"{collection}/{doc[key_attr]} already exists") from e
            raise
        return doc

    def conditional_update(
        self,
        collection: str,
        doc_id: str,
        expected: Dict[str, Any],
        changes: Dict[str, Any]
    ) -> Dict[str, Any]:
        key_attr = KEY_ATTRIBUTES[collection]

        # Placeholders keep reserved words like "status" out of the expression
        names = {}
        values = {}
        assignments = []
        removals = []
        for idx, (name, value) in enumerate(changes.items()):
            names[f'#f{idx}'] = name
            if value is None:
                removals.append(f'#f{idx}')
            else:
                values[f':v{idx}'] = value
                assignments.append(f'#f{idx} = :v{idx}')

        clauses = []
        if assignments:
            clauses.append('SET ' + ', '.join(assignments))
        if removals:
            clauses.append('REMOVE ' + ', '.join(removals))

        params = {
            'Key': {key_attr: doc_id},
            'UpdateExpression': ' '.join(clauses),
            'ConditionExpression': _condition_for(expected, key_attr),
            'ExpressionAttributeNames': names,
            'ReturnValues': 'ALL_NEW'
        }
        if values:
            params['ExpressionAttributeValues'] = values

        try:
            response = self._table(collection).update_item(**params)
        except ClientError as e:
            if e.response['Error']['Code'] == 'ConditionalCheckFailedException':
                raise ConditionFailed(f"{collection}/{doc_id} did not match {expected}") from e
            raise
        return response.get('Attributes', {})

    def query(self, collection: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        table = self._table(collection)

        index_attr = next((name for name in filters if (collection, name) in INDEXES), None)
        filter_expression = None
        for name, value in filters.items():
            if name == index_attr:
                continue
            clause = Attr(name).eq(value)
            filter_expression = clause if filter_expression is None else filter_expression & clause

        params = {}
        if filter_expression is not None:
            params['FilterExpression'] = filter_expression

        if index_attr:
            params['IndexName'] = INDEXES[(collection, index_attr)]
            params['KeyConditionExpression'] = Key(index_attr).eq(filters[index_attr])
            operation = table.query
        else:
            logger.warning(f"No index for {collection} filter {list(filters)}, falling back to scan")
            operation = table.scan

        items = []
        while True:
            response = operation(**params)
            items.extend(response.get('Items', []))
            last_key = response.get('LastEvaluatedKey')
            if not last_key:
                break
            params['ExclusiveStartKey'] = last_key
        return items
