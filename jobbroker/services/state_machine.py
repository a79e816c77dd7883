"""Job lifecycle guards.

Pure functions: no I/O, no settings. Every status change in the services goes
through ``transition`` so an illegal pair can never be written.
"""

import enum

from jobbroker.errors import StateError
from jobbroker.models.job import TERMINAL_STATUSES, VALID_TRANSITIONS, Job, JobStatus


class JobOperation(enum.Enum):
    SOFT_LOCK = "soft_lock"
    CONFIRM_SOFT_LOCK = "confirm_soft_lock"
    BID = "bid"
    ACCEPT = "accept"
    LOCK_PAYMENT = "lock_payment"
    START = "start"
    COMPLETE = "complete"
    APPROVE = "approve"
    REJECT_COMPLETION = "reject_completion"
    REPOST = "repost"
    CANCEL = "cancel"


_NON_TERMINAL = frozenset(s for s in JobStatus if s not in TERMINAL_STATUSES)

OPERATION_ORIGINS: dict[JobOperation, frozenset[JobStatus]] = {
    JobOperation.SOFT_LOCK: frozenset({JobStatus.PENDING}),
    JobOperation.CONFIRM_SOFT_LOCK: frozenset({JobStatus.SOFT_LOCKED}),
    JobOperation.BID: frozenset({JobStatus.PENDING, JobStatus.NEGOTIATION_PENDING}),
    JobOperation.ACCEPT: frozenset({JobStatus.PENDING, JobStatus.NEGOTIATION_PENDING}),
    JobOperation.LOCK_PAYMENT: frozenset({JobStatus.WAITING_FOR_PAYMENT}),
    JobOperation.START: frozenset({JobStatus.ASSIGNED}),
    JobOperation.COMPLETE: frozenset({JobStatus.IN_PROGRESS}),
    JobOperation.APPROVE: frozenset({JobStatus.COMPLETION_PENDING_APPROVAL}),
    JobOperation.REJECT_COMPLETION: frozenset({JobStatus.COMPLETION_PENDING_APPROVAL}),
    JobOperation.REPOST: frozenset({
        JobStatus.PENDING,
        JobStatus.NEGOTIATION_PENDING,
        JobStatus.WAITING_FOR_PAYMENT,
    }),
    JobOperation.CANCEL: _NON_TERMINAL,
}


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    return target in VALID_TRANSITIONS.get(current, frozenset())


def assert_transition(current: JobStatus, target: JobStatus) -> None:
    """Raise StateError if current -> target is not in the transition table."""
    if not can_transition(current, target):
        raise StateError(
            current.value,
            target.value,
            f"Cannot transition from {current.value} to {target.value}",
        )


def assert_operation_allowed(status: JobStatus, operation: JobOperation) -> None:
    if status not in OPERATION_ORIGINS[operation]:
        raise StateError(
            status.value,
            operation.value,
            f"Cannot {operation.value.replace('_', ' ')} a job in status {status.value}",
        )


def transition(job: Job, target: JobStatus) -> None:
    assert_transition(job.status, target)
    job.status = target
