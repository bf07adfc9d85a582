from enum import StrEnum, auto


class JobStatus(StrEnum):
    PENDING = auto()      # Admitted, waiting for a dispatch cycle
    PROCESSING = auto()   # Claimed by the dispatcher, render in flight
    COMPLETED = auto()    # Asset stored
    FAILED = auto()       # Render failed (terminal unless retried)


class JobEvent(StrEnum):
    CREATED = auto()
    STARTED = auto()
    COMPLETED = auto()
    FAILED = auto()
    RETRIED = auto()
    FALLBACK_USED = auto()
    WEBHOOK_SENT = auto()


TERMINAL_STATES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})

# failed -> pending is additionally bounded by retry_count (see domain.retry)
ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING}),
    JobStatus.PROCESSING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset({JobStatus.PENDING}),
}


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(JobStatus(current), frozenset())
