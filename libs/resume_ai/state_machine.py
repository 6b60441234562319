from __future__ import annotations

from typing import Dict, Set

from .models import JobStatus

TERMINAL_STATUSES: Set[JobStatus] = {
    JobStatus.complete,
    JobStatus.errored,
    JobStatus.terminated,
}

JOB_TRANSITIONS: Dict[JobStatus, Set[JobStatus]] = {
    JobStatus.queued: {JobStatus.running, JobStatus.errored, JobStatus.terminated},
    JobStatus.running: {
        JobStatus.waiting,
        JobStatus.paused,
        JobStatus.complete,
        JobStatus.errored,
        JobStatus.terminated,
    },
    JobStatus.waiting: {JobStatus.running, JobStatus.errored, JobStatus.terminated},
    JobStatus.paused: {JobStatus.running, JobStatus.terminated},
    JobStatus.complete: set(),
    JobStatus.errored: set(),
    JobStatus.terminated: set(),
}


def validate_job_transition(current: JobStatus, new: JobStatus) -> bool:
    return new in JOB_TRANSITIONS.get(current, set())


def is_terminal(status: JobStatus | str) -> bool:
    try:
        return JobStatus(status) in TERMINAL_STATUSES
    except ValueError:
        return False
