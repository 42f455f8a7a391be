"""
Data models and status constants for instant jobs.
Based on the task lifecycle: open → accepted → in_progress → completed → approved,
with completed → disputed and {accepted, in_progress, completed, disputed} → closed
as administrative overrides.
"""
from dataclasses import dataclass, field, asdict
from decimal import Decimal, ROUND_DOWN
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class TaskStatus(str, Enum):
    """Task lifecycle statuses."""
    OPEN = 'open'
    ACCEPTED = 'accepted'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'
    APPROVED = 'approved'
    DISPUTED = 'disputed'
    CLOSED = 'closed'


class ApplicationStatus(str, Enum):
    """Application review statuses."""
    PENDING = 'pending'
    APPROVED = 'approved'
    REJECTED = 'rejected'


class SenderRole(str, Enum):
    """Which side of a task a message comes from."""
    REQUESTER = 'requester'
    WORKER = 'worker'

    @property
    def counterpart(self) -> 'SenderRole':
        if self is SenderRole.REQUESTER:
            return SenderRole.WORKER
        return SenderRole.REQUESTER


TASK_TRANSITIONS = {
    TaskStatus.OPEN: frozenset({TaskStatus.ACCEPTED}),
    TaskStatus.ACCEPTED: frozenset({TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED, TaskStatus.CLOSED}),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.COMPLETED, TaskStatus.CLOSED}),
    TaskStatus.COMPLETED: frozenset({TaskStatus.APPROVED, TaskStatus.DISPUTED, TaskStatus.CLOSED}),
    TaskStatus.DISPUTED: frozenset({TaskStatus.CLOSED}),
    TaskStatus.APPROVED: frozenset(),
    TaskStatus.CLOSED: frozenset(),
}

TERMINAL_STATUSES = frozenset({TaskStatus.APPROVED, TaskStatus.CLOSED})

# Statuses in which a task must carry a selected worker
WORKER_BOUND_STATUSES = frozenset({
    TaskStatus.ACCEPTED,
    TaskStatus.IN_PROGRESS,
    TaskStatus.COMPLETED,
    TaskStatus.APPROVED,
    TaskStatus.DISPUTED,
})


def can_transition(current: TaskStatus, target: TaskStatus) -> bool:
    """Check a task transition against the lifecycle table."""
    return target in TASK_TRANSITIONS[current]


# Decimal places of the smallest unit per currency; anything else uses cents
CURRENCY_MINOR_UNITS = {
    'USD': 2,
    'EUR': 2,
    'GBP': 2,
    'BRL': 2,
    'JPY': 0,
    'USDT': 6,
    'USDC': 6,
    'ETH': 18,
    'MATIC': 18,
    'BNB': 18,
    'AVAX': 18,
}
DEFAULT_MINOR_UNITS = 2


def minor_unit(currency: str) -> Decimal:
    """Smallest representable amount of a currency, e.g. Decimal('0.01')."""
    places = CURRENCY_MINOR_UNITS.get((currency or '').upper(), DEFAULT_MINOR_UNITS)
    return Decimal(1).scaleb(-places)


def calculate_commission_split(budget: Decimal, commission_percent: Decimal, currency: str) -> Tuple[Decimal, Decimal]:
    """
    Split a task budget between the platform and the worker.

    The commission is floored to the currency's minor unit so the worker
    never receives less than their share because of rounding, and
    commission + net always equals the budget exactly.

    Returns:
        tuple: (commission, net_worker_amount)
    """
    unit = minor_unit(currency)
    commission = (budget * commission_percent / Decimal(100)).quantize(unit, rounding=ROUND_DOWN)
    net = budget - commission
    return commission, net


def _status(value: Any, enum_cls):
    return value if isinstance(value, enum_cls) else enum_cls(value)


@dataclass
class Task:
    """A unit of paid work posted by a requester."""
    task_id: str
    requester_id: str
    requester_name: str
    title: str
    description: str
    category: str
    budget: Decimal
    currency: str
    deadline: str
    created_at: str
    updated_at: str
    commission_percent: Decimal = Decimal(5)
    tags: List[str] = field(default_factory=list)
    required_skills: List[str] = field(default_factory=list)
    estimated_time: Optional[str] = None
    status: TaskStatus = TaskStatus.OPEN
    selected_worker_id: Optional[str] = None
    selected_worker_name: Optional[str] = None
    selected_application_id: Optional[str] = None
    worker_payout_address: Optional[str] = None
    escrow_reference: Optional[str] = None
    escrow_deposited: bool = False
    payout_tx_id: Optional[str] = None
    commission_recorded: bool = False
    dispute_reason: Optional[str] = None
    close_reason: Optional[str] = None
    closed_worker_id: Optional[str] = None
    refund_tx_id: Optional[str] = None
    last_activity_at: Optional[str] = None

    _FIELDS = {
        'task_id': 'taskId',
        'requester_id': 'requesterId',
        'requester_name': 'requesterName',
        'title': 'title',
        'description': 'description',
        'category': 'category',
        'budget': 'budget',
        'currency': 'currency',
        'deadline': 'deadline',
        'created_at': 'createdAt',
        'updated_at': 'updatedAt',
        'commission_percent': 'commissionPercent',
        'tags': 'tags',
        'required_skills': 'requiredSkills',
        'estimated_time': 'estimatedTime',
        'status': 'status',
        'selected_worker_id': 'selectedWorkerId',
        'selected_worker_name': 'selectedWorkerName',
        'selected_application_id': 'selectedApplicationId',
        'worker_payout_address': 'workerPayoutAddress',
        'escrow_reference': 'escrowReference',
        'escrow_deposited': 'escrowDeposited',
        'payout_tx_id': 'payoutTxId',
        'commission_recorded': 'commissionRecorded',
        'dispute_reason': 'disputeReason',
        'close_reason': 'closeReason',
        'closed_worker_id': 'closedWorkerId',
        'refund_tx_id': 'refundTxId',
        'last_activity_at': 'lastActivityAt',
    }

    def to_item(self) -> Dict[str, Any]:
        """Serialize to a DynamoDB item (camelCase keys, plain strings)."""
        item = {self._FIELDS[k]: v for k, v in asdict(self).items()}
        item['status'] = self.status.value
        return item

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> 'Task':
        kwargs = {attr: item[key] for attr, key in cls._FIELDS.items() if key in item}
        kwargs['status'] = _status(kwargs.get('status', TaskStatus.OPEN), TaskStatus)
        kwargs['budget'] = Decimal(str(kwargs['budget']))
        if 'commission_percent' in kwargs:
            kwargs['commission_percent'] = Decimal(str(kwargs['commission_percent']))
        kwargs['tags'] = list(kwargs.get('tags') or [])
        kwargs['required_skills'] = list(kwargs.get('required_skills') or [])
        kwargs['escrow_deposited'] = bool(kwargs.get('escrow_deposited', False))
        kwargs['commission_recorded'] = bool(kwargs.get('commission_recorded', False))
        return cls(**kwargs)

    def is_party(self, user_id: str) -> bool:
        return user_id in (self.requester_id, self.selected_worker_id)


@dataclass
class Application:
    """A worker's bid on an open task."""
    application_id: str
    task_id: str
    worker_id: str
    worker_name: str
    created_at: str
    status: ApplicationStatus = ApplicationStatus.PENDING
    payout_address: Optional[str] = None
    updated_at: Optional[str] = None

    _FIELDS = {
        'application_id': 'applicationId',
        'task_id': 'taskId',
        'worker_id': 'workerId',
        'worker_name': 'workerName',
        'created_at': 'createdAt',
        'status': 'status',
        'payout_address': 'payoutAddress',
        'updated_at': 'updatedAt',
    }

    def to_item(self) -> Dict[str, Any]:
        item = {self._FIELDS[k]: v for k, v in asdict(self).items()}
        item['status'] = self.status.value
        return item

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> 'Application':
        kwargs = {attr: item[key] for attr, key in cls._FIELDS.items() if key in item}
        kwargs['status'] = _status(kwargs.get('status', ApplicationStatus.PENDING), ApplicationStatus)
        return cls(**kwargs)


@dataclass
class Message:
    """Append-only communication unit scoped to one task."""
    message_id: str
    task_id: str
    sender_id: str
    sender_role: SenderRole
    body: str
    created_at: str
    attachments: List[str] = field(default_factory=list)
    is_read: bool = False
    sender_name: Optional[str] = None

    _FIELDS = {
        'message_id': 'messageId',
        'task_id': 'taskId',
        'sender_id': 'senderId',
        'sender_role': 'senderRole',
        'body': 'body',
        'created_at': 'createdAt',
        'attachments': 'attachments',
        'is_read': 'isRead',
        'sender_name': 'senderName',
    }

    def to_item(self) -> Dict[str, Any]:
        item = {self._FIELDS[k]: v for k, v in asdict(self).items()}
        item['senderRole'] = self.sender_role.value
        return item

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> 'Message':
        kwargs = {attr: item[key] for attr, key in cls._FIELDS.items() if key in item}
        kwargs['sender_role'] = _status(kwargs['sender_role'], SenderRole)
        kwargs['attachments'] = list(kwargs.get('attachments') or [])
        kwargs['is_read'] = bool(kwargs.get('is_read', False))
        return cls(**kwargs)


@dataclass
class CommissionRecord:
    """Accounting entry for the platform's cut of an approved task. Keyed by task id."""
    task_id: str
    requester_id: str
    worker_id: str
    gross_amount: Decimal
    commission_amount: Decimal
    net_amount: Decimal
    currency: str
    commission_percent: Decimal
    created_at: str
    escrow_reference: Optional[str] = None
    payout_tx_id: Optional[str] = None

    _FIELDS = {
        'task_id': 'taskId',
        'requester_id': 'requesterId',
        'worker_id': 'workerId',
        'gross_amount': 'grossAmount',
        'commission_amount': 'commissionAmount',
        'net_amount': 'netAmount',
        'currency': 'currency',
        'commission_percent': 'commissionPercent',
        'created_at': 'createdAt',
        'escrow_reference': 'escrowReference',
        'payout_tx_id': 'payoutTxId',
    }

    def to_item(self) -> Dict[str, Any]:
        return {self._FIELDS[k]: v for k, v in asdict(self).items()}

    @classmethod
    def for_task(cls, task: Task, created_at: str) -> 'CommissionRecord':
        commission, net = calculate_commission_split(task.budget, task.commission_percent, task.currency)
        return cls(
            task_id=task.task_id,
            requester_id=task.requester_id,
            worker_id=task.selected_worker_id,
            gross_amount=task.budget,
            commission_amount=commission,
            net_amount=net,
            currency=task.currency,
            commission_percent=task.commission_percent,
            created_at=created_at,
            escrow_reference=task.escrow_reference,
            payout_tx_id=task.payout_tx_id,
        )
