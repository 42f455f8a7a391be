"""
Shared fixtures: in-memory stand-ins for DynamoDB, the escrow custodian,
the notification queue and S3, wired into a real engine.
"""
import copy
import json
import os
import sys
import threading
from collections import defaultdict
from datetime import datetime, timedelta, timezone

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from instantjobs.dynamo import RecordStore, KEY_ATTRIBUTES  # noqa: E402
from instantjobs.errors import ConditionFailed, ExternalServiceFailure  # noqa: E402
from instantjobs.escrow import EscrowCustodian  # noqa: E402
from instantjobs.lifecycle import TaskLifecycleEngine  # noqa: E402
from instantjobs.messaging import MessagingChannel  # noqa: E402
from instantjobs.notifications import NotificationSink  # noqa: E402
from instantjobs.s3_utils import BlobStore  # noqa: E402

START = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
DEADLINE = '2026-02-01T00:00:00+00:00'


class InMemoryRecordStore(RecordStore):
    """Thread-safe RecordStore with the same conditional semantics as DynamoDB."""

    def __init__(self):
        self.collections = defaultdict(dict)
        self.lock = threading.Lock()
        self.failing_inserts = set()

    def get(self, collection, doc_id):
        with self.lock:
            doc = self.collections[collection].get(doc_id)
            return copy.deepcopy(doc)

    def insert(self, collection, doc):
        if collection in self.failing_inserts:
            raise RuntimeError(f"{collection} is unavailable")
        doc_id = doc[KEY_ATTRIBUTES[collection]]
        with self.lock:
            if doc_id in self.collections[collection]:
                raise ConditionFailed(f"{collection}/{doc_id} already exists")
            self.collections[collection][doc_id] = copy.deepcopy(doc)
        return doc

    def conditional_update(self, collection, doc_id, expected, changes):
        with self.lock:
            doc = self.collections[collection].get(doc_id)
            if doc is None:
                raise ConditionFailed(f"{collection}/{doc_id} does not exist")
            for name, value in expected.items():
                if value is None:
                    if doc.get(name) is not None:
                        raise ConditionFailed(f"{name} is set")
                elif doc.get(name) != value:
                    raise ConditionFailed(f"{name} is {doc.get(name)!r}, expected {value!r}")
            doc.update(copy.deepcopy(changes))
            return copy.deepcopy(doc)

    def query(self, collection, filters):
        with self.lock:
            return [
                copy.deepcopy(doc)
                for doc in self.collections[collection].values()
                if all(doc.get(k) == v for k, v in filters.items())
            ]

    def all(self, collection):
        return list(self.collections[collection].values())


class FakeEscrowCustodian(EscrowCustodian):
    """Idempotent-by-task-id custodian that records every call."""

    def __init__(self):
        self.calls = []
        self.references = {}
        self.failing = set()

    def _call(self, action, task_id):
        self.calls.append((action, task_id))
        if action in self.failing:
            raise ExternalServiceFailure(f"{action} timed out")

    def count(self, action):
        return sum(1 for a, _ in self.calls if a == action)

    def create_escrow(self, task_id, amount, currency, deadline):
        self._call('createEscrow', task_id)
        return self.references.setdefault(task_id, f"0xescrow-{task_id[:8]}")

    def mark_complete(self, task_id):
        self._call('markComplete', task_id)

    def release_escrow(self, task_id):
        self._call('releaseEscrow', task_id)
        return f"0xpayout-{task_id[:8]}"

    def refund_escrow(self, task_id):
        self._call('refundEscrow', task_id)
        return f"0xrefund-{task_id[:8]}"


class RecordingSink(NotificationSink):
    def __init__(self):
        self.sent = []
        self.failing = False

    def notify(self, recipient_id, recipient_role, title, body, related_task_id=None, kind='general'):
        if self.failing:
            raise RuntimeError("queue unavailable")
        self.sent.append({
            'recipientId': recipient_id,
            'recipientRole': recipient_role,
            'title': title,
            'body': body,
            'relatedTaskId': related_task_id,
            'type': kind,
        })

    def titles_for(self, recipient_id):
        return [n['title'] for n in self.sent if n['recipientId'] == recipient_id]


class FakeBlobStore(BlobStore):
    def __init__(self):
        self.objects = {}

    def upload(self, data, key, content_type=None):
        self.objects[key] = (data, content_type)
        return key

    def url_for(self, reference):
        return f"https://blobs.example.com/{reference}?signed"


class TickingClock:
    """Advances one second per reading so timestamps are strictly ordered."""

    def __init__(self, start=START):
        self.current = start

    def __call__(self):
        now = self.current
        self.current += timedelta(seconds=1)
        return now


@pytest.fixture
def store():
    return InMemoryRecordStore()


@pytest.fixture
def custodian():
    return FakeEscrowCustodian()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def blob_store():
    return FakeBlobStore()


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture
def engine(store, custodian, sink, clock):
    return TaskLifecycleEngine(store, custodian, sink, clock=clock, commission_percent=5)


@pytest.fixture
def channel(store, blob_store, sink, clock):
    return MessagingChannel(store, blob_store, sink, clock=clock)


@pytest.fixture
def post_task(engine):
    def _post(budget='100', currency='USDT', requester_id='company-1', **overrides):
        fields = dict(
            requester_id=requester_id,
            requester_name='Acme Labs',
            title='Translate landing page',
            description='Translate 500 words from English to Portuguese',
            budget=budget,
            currency=currency,
            deadline=DEADLINE,
            category='translation',
            tags=['i18n'],
            required_skills=['portuguese'],
        )
        fields.update(overrides)
        return engine.create_task(**fields)
    return _post


@pytest.fixture
def accepted_task(engine, post_task):
    """Scenario A: two applicants, worker-2 selected."""
    task = post_task()
    engine.apply(task.task_id, 'worker-1', 'Ana')
    chosen = engine.apply(task.task_id, 'worker-2', 'Bruno', payout_address='0xworker2')
    return engine.select_applicant(task.task_id, chosen.application_id, 'company-1')


@pytest.fixture
def funded_task(engine, accepted_task):
    return engine.deposit_escrow(accepted_task.task_id, 'company-1')


@pytest.fixture
def completed_task(engine, funded_task):
    return engine.mark_complete(funded_task.task_id, 'worker-2')


def api_event(sub=None, body=None, path=None, query=None, groups='', name=None):
    """Build a minimal API Gateway proxy event."""
    claims = {}
    if sub:
        claims = {'sub': sub, 'name': name or sub, 'cognito:groups': groups}
    return {
        'requestContext': {'authorizer': {'claims': claims}},
        'pathParameters': path or {},
        'queryStringParameters': query,
        'body': json.dumps(body) if body is not None else None,
    }


@pytest.fixture
def make_event():
    return api_event
