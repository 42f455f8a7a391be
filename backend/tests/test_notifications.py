"""
Tests for the SQS notification sink and the post-commit outbox.
"""
import json
from unittest.mock import MagicMock

from instantjobs.notifications import Outbox, SqsNotificationSink


class TestSqsNotificationSink:
    def test_sends_json_record(self):
        client = MagicMock()
        sink = SqsNotificationSink('https://sqs.example/notifications', client=client)

        sink.notify('worker-2', 'worker', 'Funds secured', 'Begin work', 't-1')

        kwargs = client.send_message.call_args.kwargs
        assert kwargs['QueueUrl'] == 'https://sqs.example/notifications'
        body = json.loads(kwargs['MessageBody'])
        assert body['recipientId'] == 'worker-2'
        assert body['relatedTaskId'] == 't-1'
        assert body['read'] is False


class TestOutbox:
    def test_nothing_sent_before_flush(self, sink):
        outbox = Outbox(sink)
        outbox.add('worker-1', 'worker', 'Title', 'Body', 't-1')
        assert sink.sent == []
        assert outbox.flush() == 1
        assert sink.titles_for('worker-1') == ['Title']

    def test_failures_are_swallowed(self, sink):
        """A failing sink is logged, never raised."""
        sink.failing = True
        outbox = Outbox(sink)
        outbox.add('worker-1', 'worker', 'Title', 'Body')
        assert outbox.flush() == 0
        assert outbox.pending == []

    def test_missing_recipient_dropped(self, sink):
        outbox = Outbox(sink)
        outbox.add(None, 'worker', 'Title', 'Body')
        assert outbox.flush() == 0
