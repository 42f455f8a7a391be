"""
Task lifecycle engine for instant jobs.

Owns the Task and Application state machines. Every status change is a
conditional update keyed on the expected prior status, so the record store
serializes concurrent callers: whoever loses the race gets ``Conflict``.

External side effects are ordered around the store:
    - escrow calls on the critical path (deposit, approve, close) happen
      BEFORE the status write, so a failed call leaves the task untouched
      and the caller can simply retry;
    - notifications and the mark-complete mirror happen AFTER the write,
      through the outbox, and their failures are only logged.
"""
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Callable, Dict, Iterable, List, Optional

from .config import config
from .dynamo import RecordStore, TASKS, APPLICATIONS, COMMISSIONS
from .errors import (
    ConditionFailed,
    Conflict,
    ExternalServiceFailure,
    Forbidden,
    InvalidState,
    NotFound,
    ValidationError,
)
from .escrow import EscrowCustodian
from .logging import logger
from .models import (
    Application,
    ApplicationStatus,
    CommissionRecord,
    Task,
    TaskStatus,
    TERMINAL_STATUSES,
    CURRENCY_MINOR_UNITS,
    DEFAULT_MINOR_UNITS,
    calculate_commission_split,
    can_transition,
)
from .notifications import NotificationSink, Outbox, ROLE_ADMIN, ADMIN_RECIPIENT

# Application ids are derived from (task, worker) so a worker can hold one bid per task
APPLICATION_NAMESPACE = uuid.UUID('6f1c2a8e-3b7d-4c55-9a0e-5d2f8b4e7c13')

MAX_TITLE_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 10000


def parse_deadline(value) -> datetime:
    """Accept a datetime or an ISO-8601 string; naive values are taken as UTC."""
    if isinstance(value, datetime):
        deadline = value
    elif isinstance(value, str) and value.strip():
        try:
            deadline = datetime.fromisoformat(value.strip().replace('Z', '+00:00'))
        except ValueError:
            raise ValidationError(f"Invalid deadline: {value}")
    else:
        raise ValidationError("Deadline is required")

    if deadline.tzinfo is None:
        deadline = deadline.replace(tzinfo=timezone.utc)
    return deadline


def parse_budget(value, currency: str) -> Decimal:
    """Parse a budget into an exact Decimal expressible in the currency's minor unit."""
    if isinstance(value, bool) or value is None:
        raise ValidationError("Budget is required")
    try:
        budget = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid budget: {value}")

    if not budget.is_finite() or budget <= 0:
        raise ValidationError("Budget must be greater than zero")

    places = CURRENCY_MINOR_UNITS.get(currency, DEFAULT_MINOR_UNITS)
    if budget.normalize().as_tuple().exponent < -places:
        raise ValidationError(f"Budget has more than {places} decimal places for {currency}")
    return budget


def _chunks(items: List, size: int) -> Iterable[List]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


class TaskLifecycleEngine:
    """
    Orchestrates instant jobs from posting to payout.

    Usage:
        engine = TaskLifecycleEngine(store, custodian, sink)
        task = engine.create_task(...)
        application = engine.apply(task.task_id, 'worker-1', 'Ana')
        engine.select_applicant(task.task_id, application.application_id, task.requester_id)
        engine.deposit_escrow(task.task_id, task.requester_id, '0xabc...')
        engine.mark_complete(task.task_id, 'worker-1')
        engine.approve_task(task.task_id, task.requester_id)
    """

    def __init__(
        self,
        store: RecordStore,
        custodian: EscrowCustodian,
        sink: NotificationSink,
        clock: Optional[Callable[[], datetime]] = None,
        commission_percent: Optional[Decimal] = None,
        selection_batch_size: Optional[int] = None
    ):
        self.store = store
        self.custodian = custodian
        self.sink = sink
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.commission_percent = Decimal(commission_percent if commission_percent is not None
                                          else config.COMMISSION_PERCENT)
        self.selection_batch_size = max(1, selection_batch_size or config.SELECTION_BATCH_SIZE)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _timestamp(self) -> str:
        return self.clock().isoformat()

    def _outbox(self) -> Outbox:
        return Outbox(self.sink)

    def _load_task(self, task_id: str) -> Task:
        item = self.store.get(TASKS, task_id) if task_id else None
        if not item:
            raise NotFound(f"Task {task_id} not found")
        return Task.from_item(item)

    def _load_application(self, application_id: str) -> Application:
        item = self.store.get(APPLICATIONS, application_id) if application_id else None
        if not item:
            raise NotFound(f"Application {application_id} not found")
        return Application.from_item(item)

    def _require_requester(self, task: Task, requester_id: str) -> None:
        if not requester_id or task.requester_id != requester_id:
            raise Forbidden("Only the task's requester can do this")

    def _require_worker(self, task: Task, worker_id: str) -> None:
        if not worker_id or task.selected_worker_id != worker_id:
            raise Forbidden("Only the task's selected worker can do this")

    def _transition(
        self,
        task: Task,
        target: TaskStatus,
        changes: Optional[Dict] = None,
        expected: Optional[Dict] = None
    ) -> Task:
        """Compare-and-swap the task from its current status to ``target``."""
        if not can_transition(task.status, target):
            raise InvalidState(f"Task {task.task_id} cannot go from {task.status.value} to {target.value}")

        guard = {'status': task.status.value}
        guard.update(expected or {})
        fields = {'status': target.value, 'updatedAt': self._timestamp()}
        fields.update(changes or {})

        try:
            item = self.store.conditional_update(TASKS, task.task_id, guard, fields)
        except ConditionFailed:
            logger.info(f"Task {task.task_id} lost the race moving {task.status.value} -> {target.value}")
            raise Conflict(f"Task {task.task_id} was modified concurrently; re-read and retry")

        logger.info(f"Task {task.task_id}: {task.status.value} -> {target.value}")
        return Task.from_item(item)

    def _call_custodian(self, action: str, fn, *args):
        try:
            return fn(*args)
        except ExternalServiceFailure:
            raise
        except Exception as e:
            logger.error(f"Escrow custodian {action} raised: {e}")
            raise ExternalServiceFailure(f"Escrow custodian {action} failed: {e}") from e

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_task(self, task_id: str) -> Task:
        return self._load_task(task_id)

    def _tasks(self, filters: Dict) -> List[Task]:
        tasks = [Task.from_item(item) for item in self.store.query(TASKS, filters)]
        tasks.sort(key=lambda t: t.created_at, reverse=True)
        return tasks

    def list_open_tasks(self) -> List[Task]:
        return self._tasks({'status': TaskStatus.OPEN.value})

    def list_tasks_by_requester(self, requester_id: str) -> List[Task]:
        return self._tasks({'requesterId': requester_id})

    def list_tasks_by_worker(self, worker_id: str) -> List[Task]:
        return self._tasks({'selectedWorkerId': worker_id})

    def list_applications(self, task_id: str) -> List[Application]:
        self._load_task(task_id)
        applications = [Application.from_item(i) for i in self.store.query(APPLICATIONS, {'taskId': task_id})]
        applications.sort(key=lambda a: (a.created_at, a.application_id))
        return applications

    def list_applications_by_worker(self, worker_id: str) -> List[Application]:
        applications = [Application.from_item(i) for i in self.store.query(APPLICATIONS, {'workerId': worker_id})]
        applications.sort(key=lambda a: a.created_at, reverse=True)
        return applications

    # ------------------------------------------------------------------
    # Posting and applying
    # ------------------------------------------------------------------

    def create_task(
        self,
        requester_id: str,
        requester_name: str,
        title: str,
        description: str,
        budget,
        currency: str,
        deadline,
        category: str = 'general',
        tags: Optional[List[str]] = None,
        required_skills: Optional[List[str]] = None,
        estimated_time: Optional[str] = None
    ) -> Task:
        """Validate and post a new task in ``open``."""
        if not requester_id:
            raise ValidationError("Requester is required")

        title = (title or '').strip()
        description = (description or '').strip()
        if not title:
            raise ValidationError("Title is required")
        if not description:
            raise ValidationError("Description is required")
        if len(title) > MAX_TITLE_LENGTH:
            raise ValidationError(f"Title must be at most {MAX_TITLE_LENGTH} characters")
        if len(description) > MAX_DESCRIPTION_LENGTH:
            raise ValidationError(f"Description must be at most {MAX_DESCRIPTION_LENGTH} characters")

        currency = (currency or '').strip().upper()
        if not currency or not currency.isalnum():
            raise ValidationError("Currency code is required")

        amount = parse_budget(budget, currency)
        due = parse_deadline(deadline)
        if due <= self.clock():
            raise ValidationError("Deadline must be in the future")

        now = self._timestamp()
        task = Task(
            task_id=str(uuid.uuid4()),
            requester_id=requester_id,
            requester_name=requester_name or '',
            title=title,
            description=description,
            category=(category or 'general').strip(),
            budget=amount,
            currency=currency,
            deadline=due.isoformat(),
            created_at=now,
            updated_at=now,
            commission_percent=self.commission_percent,
            tags=sorted({t.strip() for t in (tags or []) if t and t.strip()}),
            required_skills=sorted({s.strip() for s in (required_skills or []) if s and s.strip()}),
            estimated_time=estimated_time,
        )
        self.store.insert(TASKS, task.to_item())
        logger.info(f"Task {task.task_id} created by {requester_id}: {amount} {currency}")

        outbox = self._outbox()
        outbox.add(
            ADMIN_RECIPIENT, ROLE_ADMIN,
            "New micro-task",
            f"New micro-task created by {task.requester_name or requester_id}: {task.title}",
            task.task_id, kind='instantJob'
        )
        outbox.flush()
        return task

    def apply(self, task_id: str, worker_id: str, worker_name: str, payout_address: Optional[str] = None) -> Application:
        """Place a pending application on an open task."""
        if not worker_id:
            raise ValidationError("Worker is required")

        task = self._load_task(task_id)
        if task.requester_id == worker_id:
            raise Forbidden("Requesters cannot apply to their own task")
        if task.status != TaskStatus.OPEN:
            raise InvalidState(f"Task {task_id} is not open for applications")

        application = Application(
            application_id=str(uuid.uuid5(APPLICATION_NAMESPACE, f"{task_id}:{worker_id}")),
            task_id=task_id,
            worker_id=worker_id,
            worker_name=worker_name or '',
            created_at=self._timestamp(),
            payout_address=(payout_address or '').strip() or None,
        )
        try:
            self.store.insert(APPLICATIONS, application.to_item())
        except ConditionFailed:
            raise InvalidState(f"Worker {worker_id} already applied to task {task_id}")

        # A selection may have committed between our read and the insert
        current = self._load_task(task_id)
        if current.status != TaskStatus.OPEN and current.selected_application_id != application.application_id:
            try:
                self._reject_application(application.application_id)
            except ConditionFailed:
                # Already swept by the selection
                pass
            raise InvalidState(f"Task {task_id} is not open for applications")

        logger.info(f"Worker {worker_id} applied to task {task_id}")

        outbox = self._outbox()
        outbox.add(
            task.requester_id, 'requester',
            "New application",
            f"{application.worker_name or worker_id} applied to your micro-task \"{task.title}\"",
            task_id
        )
        outbox.flush()
        return application

    def update_application_payout_address(self, application_id: str, worker_id: str, payout_address: str) -> Application:
        """Attach a payout address to an application after the fact."""
        payout_address = (payout_address or '').strip()
        if not payout_address:
            raise ValidationError("Payout address is required")

        application = self._load_application(application_id)
        if application.worker_id != worker_id:
            raise Forbidden("Only the applicant can change this application")

        task = None
        if application.status == ApplicationStatus.APPROVED:
            task = self._load_task(application.task_id)
            if task.escrow_deposited:
                raise InvalidState("Payout address is locked once escrow is deposited")

        try:
            item = self.store.conditional_update(
                APPLICATIONS, application_id,
                {'workerId': worker_id},
                {'payoutAddress': payout_address, 'updatedAt': self._timestamp()}
            )
        except ConditionFailed:
            raise Conflict(f"Application {application_id} was modified concurrently")

        if task is not None:
            try:
                self.store.conditional_update(
                    TASKS, task.task_id,
                    {'selectedApplicationId': application_id, 'escrowDeposited': False},
                    {'workerPayoutAddress': payout_address, 'updatedAt': self._timestamp()}
                )
            except ConditionFailed:
                raise Conflict(f"Task {task.task_id} was modified concurrently")

        logger.info(f"Application {application_id} payout address updated")
        return Application.from_item(item)

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def select_applicant(self, task_id: str, application_id: str, requester_id: str) -> Task:
        """
        Pick the worker for an open task.

        The task write is the serialization point: of two concurrent
        selections only one can move the task out of ``open``. Approving the
        chosen application and rejecting its siblings follows; if that
        fan-out is interrupted, calling again with the same ids finishes it.
        """
        task = self._load_task(task_id)
        self._require_requester(task, requester_id)

        application = self._load_application(application_id)
        if application.task_id != task_id:
            raise NotFound(f"Application {application_id} does not belong to task {task_id}")

        if task.selected_application_id == application_id and application.status != ApplicationStatus.REJECTED:
            logger.info(f"Task {task_id} already selected {application_id}; finishing fan-out")
            self._finish_selection(task, application)
            return task

        if task.status == TaskStatus.ACCEPTED and task.selected_application_id:
            raise Conflict(f"Task {task_id} already selected another applicant")
        if task.status != TaskStatus.OPEN:
            raise InvalidState(f"Task {task_id} is not open")
        if application.status != ApplicationStatus.PENDING:
            # Our task read may predate a selection that already swept this application
            current = self._load_task(task_id)
            if current.status != TaskStatus.OPEN or current.selected_application_id not in (None, application_id):
                raise Conflict(f"Task {task_id} selected another applicant concurrently")
            raise InvalidState(f"Application {application_id} is {application.status.value}")

        task = self._transition(
            task, TaskStatus.ACCEPTED,
            changes={
                'selectedWorkerId': application.worker_id,
                'selectedWorkerName': application.worker_name,
                'selectedApplicationId': application_id,
                'workerPayoutAddress': application.payout_address,
            },
            expected={'selectedApplicationId': None}
        )
        self._finish_selection(task, application)
        return task

    def _finish_selection(self, task: Task, application: Application) -> None:
        outbox = self._outbox()

        if application.status == ApplicationStatus.PENDING:
            try:
                self.store.conditional_update(
                    APPLICATIONS, application.application_id,
                    {'status': ApplicationStatus.PENDING.value},
                    {'status': ApplicationStatus.APPROVED.value, 'updatedAt': self._timestamp()}
                )
            except ConditionFailed:
                current = self._load_application(application.application_id)
                if current.status != ApplicationStatus.APPROVED:
                    logger.error(f"Selected application {application.application_id} is {current.status.value}")
                    raise Conflict(f"Application {application.application_id} was modified concurrently")
            else:
                outbox.add(
                    application.worker_id, 'worker',
                    "Application approved",
                    f"Congratulations! Your application for \"{task.title}\" has been approved. "
                    f"Please connect your wallet in your dashboard to receive payment when the job is completed.",
                    task.task_id, kind='wallet_needed'
                )

        siblings = [
            Application.from_item(item)
            for item in self.store.query(APPLICATIONS, {'taskId': task.task_id})
            if item.get('applicationId') != application.application_id
            and item.get('status') == ApplicationStatus.PENDING.value
        ]

        rejected, failed = [], []
        for batch in _chunks(siblings, self.selection_batch_size):
            with ThreadPoolExecutor(max_workers=len(batch)) as pool:
                outcomes = list(pool.map(lambda a: self._try_reject(a.application_id), batch))
            for sibling, outcome in zip(batch, outcomes):
                if outcome is True:
                    rejected.append(sibling)
                elif outcome is not None:
                    failed.append((sibling, outcome))

        for sibling in rejected:
            outbox.add(
                sibling.worker_id, 'worker',
                "Application rejected",
                f"Your application for \"{task.title}\" was not selected",
                task.task_id
            )
        for sibling, error in failed:
            logger.warning(f"Could not reject application {sibling.application_id}: {error}")
        if failed:
            logger.warning(f"Task {task.task_id}: {len(failed)} applications still pending; repeat selection to finish")

        logger.info(f"Task {task.task_id}: selected {application.application_id}, rejected {len(rejected)}")
        outbox.flush()

    def _try_reject(self, application_id: str):
        """True if rejected now, None if it was no longer pending, else the error."""
        try:
            self._reject_application(application_id)
            return True
        except ConditionFailed:
            return None
        except Exception as e:
            return e

    def _reject_application(self, application_id: str) -> None:
        self.store.conditional_update(
            APPLICATIONS, application_id,
            {'status': ApplicationStatus.PENDING.value},
            {'status': ApplicationStatus.REJECTED.value, 'updatedAt': self._timestamp()}
        )

    # ------------------------------------------------------------------
    # Escrow and work
    # ------------------------------------------------------------------

    def deposit_escrow(self, task_id: str, requester_id: str, payout_address: Optional[str] = None) -> Task:
        """
        Lock the budget with the escrow custodian, then record it.
        A repeat call for an already-funded task is a no-op.
        """
        task = self._load_task(task_id)
        self._require_requester(task, requester_id)

        if task.escrow_deposited:
            logger.info(f"Task {task_id} escrow already deposited ({task.escrow_reference})")
            return task
        if task.status != TaskStatus.ACCEPTED:
            raise InvalidState(f"Escrow can only be deposited for accepted tasks (task is {task.status.value})")

        address = (payout_address or '').strip() or task.worker_payout_address
        if not address:
            raise ValidationError("The worker's payout address is required to deposit escrow")

        reference = self._call_custodian(
            'createEscrow', self.custodian.create_escrow,
            task_id, task.budget, task.currency, parse_deadline(task.deadline)
        )

        try:
            item = self.store.conditional_update(
                TASKS, task_id,
                {'status': TaskStatus.ACCEPTED.value, 'escrowDeposited': False},
                {
                    'escrowReference': reference,
                    'escrowDeposited': True,
                    'workerPayoutAddress': address,
                    'updatedAt': self._timestamp(),
                }
            )
        except ConditionFailed:
            current = self._load_task(task_id)
            if current.escrow_deposited:
                return current
            raise Conflict(f"Task {task_id} changed while escrow was being deposited")

        task = Task.from_item(item)
        logger.info(f"Task {task_id} escrow deposited: {reference}")

        outbox = self._outbox()
        outbox.add(
            task.selected_worker_id, 'worker',
            "Funds secured",
            f"The funds for \"{task.title}\" are secured in escrow. You can begin work.",
            task_id
        )
        outbox.flush()
        return task

    def start_work(self, task_id: str, worker_id: str) -> Task:
        task = self._load_task(task_id)
        self._require_worker(task, worker_id)
        if task.status == TaskStatus.IN_PROGRESS:
            return task
        if not task.escrow_deposited:
            raise InvalidState("Work cannot start before the funds are in escrow")
        if task.status != TaskStatus.ACCEPTED:
            raise InvalidState(f"Task {task_id} is {task.status.value}")

        task = self._transition(task, TaskStatus.IN_PROGRESS)

        outbox = self._outbox()
        outbox.add(
            task.requester_id, 'requester',
            "Work started",
            f"{task.selected_worker_name or worker_id} started working on \"{task.title}\"",
            task_id
        )
        outbox.flush()
        return task

    def mark_complete(self, task_id: str, worker_id: str) -> Task:
        """
        Worker declares the work done. The custodian mirror call is
        best-effort; approval is what actually releases the funds.
        """
        task = self._load_task(task_id)
        self._require_worker(task, worker_id)
        if task.status == TaskStatus.COMPLETED:
            return task
        if task.status not in (TaskStatus.ACCEPTED, TaskStatus.IN_PROGRESS):
            raise InvalidState(f"Task {task_id} is {task.status.value}")

        task = self._transition(task, TaskStatus.COMPLETED)

        if task.escrow_deposited:
            try:
                self.custodian.mark_complete(task_id)
            except Exception as e:
                logger.warning(f"Escrow mark-complete mirror failed for task {task_id} (non-critical): {e}")

        outbox = self._outbox()
        outbox.add(
            task.requester_id, 'requester',
            "Micro-task completed",
            f"The micro-task \"{task.title}\" has been marked as completed. Please review and approve.",
            task_id
        )
        outbox.flush()
        return task

    def approve_task(self, task_id: str, requester_id: str) -> Task:
        """
        Release the escrow to the worker and book the platform commission.
        Re-approving an approved task is a no-op that returns the task.
        """
        task = self._load_task(task_id)
        self._require_requester(task, requester_id)

        if task.status == TaskStatus.APPROVED:
            if not task.commission_recorded:
                self._record_commission(task)
            return self._load_task(task_id)
        if task.status != TaskStatus.COMPLETED:
            raise InvalidState(f"Only completed tasks can be approved (task is {task.status.value})")

        changes = {}
        if task.escrow_deposited:
            payout_tx_id = self._call_custodian('releaseEscrow', self.custodian.release_escrow, task_id)
            changes['payoutTxId'] = payout_tx_id
        else:
            logger.warning(f"Task {task_id} approved without escrow; nothing to release")

        try:
            task = self._transition(task, TaskStatus.APPROVED, changes=changes)
        except Conflict:
            current = self._load_task(task_id)
            if current.status == TaskStatus.APPROVED:
                return current
            logger.error(f"Escrow for task {task_id} released but task is now {current.status.value}")
            raise

        self._record_commission(task)
        task = self._load_task(task_id)

        _, net = calculate_commission_split(task.budget, task.commission_percent, task.currency)
        outbox = self._outbox()
        outbox.add(
            task.selected_worker_id, 'worker',
            "Micro-task approved",
            f"Congratulations! The micro-task \"{task.title}\" has been approved. "
            f"{net} {task.currency} will be sent to your wallet soon.",
            task_id
        )
        outbox.flush()
        return task

    def _record_commission(self, task: Task) -> bool:
        """
        Write the task's single commission record. The record is keyed by
        task id, so repeats can never duplicate it. A failed write leaves
        ``commissionRecorded`` false for ``reconcile_commissions``.
        """
        record = CommissionRecord.for_task(task, self._timestamp())
        if record.commission_amount + record.net_amount != record.gross_amount:
            raise ValueError(f"Commission split for task {task.task_id} does not add up")

        try:
            self.store.insert(COMMISSIONS, record.to_item())
            logger.info(
                f"Commission for task {task.task_id}: gross {record.gross_amount}, "
                f"commission {record.commission_amount}, net {record.net_amount} {record.currency}"
            )
        except ConditionFailed:
            logger.info(f"Commission for task {task.task_id} already recorded")
        except Exception as e:
            logger.error(f"Commission record for task {task.task_id} not written, will reconcile: {e}")
            return False

        try:
            self.store.conditional_update(
                TASKS, task.task_id,
                {'commissionRecorded': False},
                {'commissionRecorded': True}
            )
        except ConditionFailed:
            pass
        except Exception as e:
            logger.error(f"Could not flag commission for task {task.task_id}: {e}")
        return True

    def reconcile_commissions(self) -> int:
        """Write commission records missing for approved tasks. Returns how many were written."""
        written = 0
        pending = self.store.query(TASKS, {'status': TaskStatus.APPROVED.value, 'commissionRecorded': False})
        for item in pending:
            if self._record_commission(Task.from_item(item)):
                written += 1
        logger.info(f"Commission reconciliation: {written}/{len(pending)} written")
        return written

    def sweep_stale_applications(self) -> int:
        """
        Reject pending applications on tasks that have already left ``open``.
        Catches bids the selection fan-out missed because the task index had
        not caught up yet. Returns how many were rejected.
        """
        tasks = {}
        rejected = 0
        outbox = self._outbox()

        for item in self.store.query(APPLICATIONS, {'status': ApplicationStatus.PENDING.value}):
            application = Application.from_item(item)
            if application.task_id not in tasks:
                stored = self.store.get(TASKS, application.task_id)
                tasks[application.task_id] = Task.from_item(stored) if stored else None
            task = tasks[application.task_id]

            # The chosen application itself is finished by repeating the selection
            if task is None or task.status == TaskStatus.OPEN \
                    or task.selected_application_id == application.application_id:
                continue

            outcome = self._try_reject(application.application_id)
            if outcome is True:
                rejected += 1
                outbox.add(
                    application.worker_id, 'worker',
                    "Application rejected",
                    f"Your application for \"{task.title}\" was not selected",
                    task.task_id
                )
            elif outcome is not None:
                logger.warning(f"Could not reject stale application {application.application_id}: {outcome}")

        outbox.flush()
        logger.info(f"Stale application sweep: {rejected} rejected")
        return rejected

    # ------------------------------------------------------------------
    # Administrative overrides
    # ------------------------------------------------------------------

    def open_dispute(self, task_id: str, actor_id: str, reason: str = '', as_admin: bool = False) -> Task:
        task = self._load_task(task_id)
        if not as_admin and not task.is_party(actor_id):
            raise Forbidden("Only the task's parties can dispute it")
        if task.status == TaskStatus.DISPUTED:
            return task
        if task.status in TERMINAL_STATUSES:
            raise InvalidState(f"Task {task_id} is already {task.status.value}")

        task = self._transition(task, TaskStatus.DISPUTED, changes={'disputeReason': (reason or '').strip() or None})

        outbox = self._outbox()
        body = f"A dispute was opened on \"{task.title}\". An administrator will review it."
        outbox.add(task.requester_id, 'requester', "Dispute opened", body, task_id)
        outbox.add(task.selected_worker_id, 'worker', "Dispute opened", body, task_id)
        outbox.add(ADMIN_RECIPIENT, ROLE_ADMIN, "Dispute opened", f"Task {task_id}: {reason}", task_id, kind='dispute')
        outbox.flush()
        return task

    def close_task(self, task_id: str, actor_id: str, reason: str = '', as_admin: bool = False) -> Task:
        """
        Administratively end a task. Escrowed funds are refunded to the
        requester before the task is closed.
        """
        if not as_admin:
            raise Forbidden("Only administrators can close tasks")

        task = self._load_task(task_id)
        if task.status == TaskStatus.CLOSED:
            return task
        if not can_transition(task.status, TaskStatus.CLOSED):
            raise InvalidState(f"Task {task_id} cannot be closed from {task.status.value}")

        changes = {
            'closeReason': (reason or '').strip() or None,
            'closedWorkerId': task.selected_worker_id,
            'selectedWorkerId': None,
            'selectedWorkerName': None,
            'escrowDeposited': False,
        }
        if task.escrow_deposited:
            changes['refundTxId'] = self._call_custodian('refundEscrow', self.custodian.refund_escrow, task_id)

        worker_id = task.selected_worker_id
        closed = self._transition(task, TaskStatus.CLOSED, changes=changes)
        logger.info(f"Task {task_id} closed by {actor_id}")

        outbox = self._outbox()
        body = f"The micro-task \"{task.title}\" was closed by an administrator."
        if task.escrow_deposited:
            body += " The escrowed funds were refunded to the requester."
        outbox.add(task.requester_id, 'requester', "Micro-task closed", body, task_id)
        outbox.add(worker_id, 'worker', "Micro-task closed", body, task_id)
        outbox.flush()
        return closed
