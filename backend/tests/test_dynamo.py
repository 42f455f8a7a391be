"""
Tests for the DynamoDB record store adapter.
"""
import threading
from unittest.mock import MagicMock

import boto3
import pytest
from botocore.exceptions import ClientError

from instantjobs.dynamo import DynamoRecordStore, TASKS, APPLICATIONS, MESSAGES
from instantjobs.errors import ConditionFailed


def client_error(code, operation='UpdateItem'):
    return ClientError({'Error': {'Code': code, 'Message': code}}, operation)


@pytest.fixture
def table():
    return MagicMock()


@pytest.fixture
def dynamo_store(table):
    resource = MagicMock()
    resource.Table.return_value = table
    return DynamoRecordStore(
        {TASKS: 'tasks-table', APPLICATIONS: 'applications-table', MESSAGES: 'messages-table'},
        resource=resource
    )


class TestConditionalUpdate:
    """Compare-and-swap writes."""

    def test_builds_set_expression_with_placeholders(self, dynamo_store, table):
        """Reserved words like 'status' only appear through attribute-name placeholders."""
        table.update_item.return_value = {'Attributes': {'taskId': 't-1', 'status': 'accepted'}}

        result = dynamo_store.conditional_update(
            TASKS, 't-1', {'status': 'open'}, {'status': 'accepted', 'selectedWorkerId': 'w-1'}
        )

        assert result == {'taskId': 't-1', 'status': 'accepted'}
        kwargs = table.update_item.call_args.kwargs
        assert kwargs['Key'] == {'taskId': 't-1'}
        assert kwargs['UpdateExpression'] == 'SET #f0 = :v0, #f1 = :v1'
        assert kwargs['ExpressionAttributeNames'] == {'#f0': 'status', '#f1': 'selectedWorkerId'}
        assert kwargs['ExpressionAttributeValues'] == {':v0': 'accepted', ':v1': 'w-1'}
        assert kwargs['ReturnValues'] == 'ALL_NEW'
        assert 'ConditionExpression' in kwargs

    def test_none_changes_are_removed(self, dynamo_store, table):
        """Clearing an index key removes the attribute instead of writing NULL."""
        table.update_item.return_value = {'Attributes': {'taskId': 't-1'}}

        dynamo_store.conditional_update(
            TASKS, 't-1', {'status': 'disputed'}, {'status': 'closed', 'selectedWorkerId': None}
        )

        kwargs = table.update_item.call_args.kwargs
        assert kwargs['UpdateExpression'] == 'SET #f0 = :v0 REMOVE #f1'
        assert kwargs['ExpressionAttributeValues'] == {':v0': 'closed'}

    def test_failed_condition_raises_condition_failed(self, dynamo_store, table):
        table.update_item.side_effect = client_error('ConditionalCheckFailedException')
        with pytest.raises(ConditionFailed):
            dynamo_store.conditional_update(TASKS, 't-1', {'status': 'open'}, {'status': 'accepted'})

    def test_other_errors_propagate(self, dynamo_store, table):
        table.update_item.side_effect = client_error('ProvisionedThroughputExceededException')
        with pytest.raises(ClientError):
            dynamo_store.conditional_update(TASKS, 't-1', {}, {'lastActivityAt': 'now'})


class TestInsertAndGet:
    """Single-document access."""

    def test_insert_is_conditional_on_absence(self, dynamo_store, table):
        dynamo_store.insert(APPLICATIONS, {'applicationId': 'a-1', 'taskId': 't-1', 'payoutAddress': None})
        kwargs = table.put_item.call_args.kwargs
        assert kwargs['Item'] == {'applicationId': 'a-1', 'taskId': 't-1'}
        assert 'ConditionExpression' in kwargs

    def test_duplicate_insert(self, dynamo_store, table):
        table.put_item.side_effect = client_error('ConditionalCheckFailedException', 'PutItem')
        with pytest.raises(ConditionFailed):
            dynamo_store.insert(APPLICATIONS, {'applicationId': 'a-1'})

    def test_get_is_strongly_consistent(self, dynamo_store, table):
        table.get_item.return_value = {}
        assert dynamo_store.get(TASKS, 't-404') is None
        table.get_item.assert_called_once_with(Key={'taskId': 't-404'}, ConsistentRead=True)


class TestQuery:
    """Equality queries over GSIs."""

    def test_uses_index_and_follows_pages(self, dynamo_store, table):
        table.query.side_effect = [
            {'Items': [{'messageId': 'm-1'}], 'LastEvaluatedKey': {'messageId': 'm-1'}},
            {'Items': [{'messageId': 'm-2'}]},
        ]

        items = dynamo_store.query(MESSAGES, {'taskId': 't-1'})

        assert [i['messageId'] for i in items] == ['m-1', 'm-2']
        first, second = table.query.call_args_list
        assert first.kwargs['IndexName'] == 'TaskIndex'
        assert second.kwargs['ExclusiveStartKey'] == {'messageId': 'm-1'}
        table.scan.assert_not_called()

    def test_extra_filters_become_filter_expression(self, dynamo_store, table):
        table.query.return_value = {'Items': []}
        dynamo_store.query(TASKS, {'status': 'approved', 'commissionRecorded': False})
        kwargs = table.query.call_args.kwargs
        assert kwargs['IndexName'] == 'StatusIndex'
        assert 'FilterExpression' in kwargs

    def test_scan_without_index(self, dynamo_store, table):
        table.scan.return_value = {'Items': [{'taskId': 't-1'}]}
        assert dynamo_store.query(TASKS, {'category': 'design'}) == [{'taskId': 't-1'}]
        table.query.assert_not_called()


class TestResourcePerThread:
    """Sibling rejections run on worker threads; each gets its own boto3 resource."""

    def test_each_thread_builds_its_own_resource(self, monkeypatch):
        sessions = MagicMock(side_effect=lambda: MagicMock())
        monkeypatch.setattr(boto3.session, 'Session', sessions)
        store = DynamoRecordStore({TASKS: 'tasks-table'})

        main = store._dynamodb()
        assert store._dynamodb() is main

        seen = []
        worker = threading.Thread(target=lambda: seen.append(store._dynamodb()))
        worker.start()
        worker.join()

        assert seen[0] is not main
        assert sessions.call_count == 2
