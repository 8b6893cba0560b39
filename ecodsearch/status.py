"""Job status resolution from directory contents and, for scheduled jobs, the scheduler."""

from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .job_store import JobStore
from .kinds import KindSpec
from .runners import JobRunner, SchedulerQueryError

logger = logging.getLogger(__name__)

FAILURE_TAIL_LINES = 5
# Squeue short codes for jobs that have not started yet.
PENDING_CODES = frozenset({"PD", "CF"})
# Codes squeue keeps listing for a while after the job has ended.
TERMINAL_CODES = frozenset({"BF", "CA", "CD", "DL", "F", "NF", "OOM", "PR", "RV", "TO"})


class JobState(str, Enum):
    NOT_FOUND = "not_found"
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class StatusReport:
    state: JobState
    error: Optional[str] = None


def log_tail(store: JobStore, job_id: str, lines: int = FAILURE_TAIL_LINES) -> str:
    text = store.read_log(job_id).strip()
    if not text:
        return ""
    return "\n".join(text.splitlines()[-lines:])


def _failed(store: JobStore, job_id: str, default: str) -> StatusReport:
    return StatusReport(JobState.FAILED, log_tail(store, job_id) or default)


def _is_stale(store: JobStore, job_id: str, stale_after_hours: Optional[float], now: datetime.datetime) -> bool:
    if not stale_after_hours:
        return False
    metadata = store.read_metadata(job_id)
    submitted = metadata.submitted_at() if metadata else None
    if submitted is None:
        return False
    return now - submitted > datetime.timedelta(hours=stale_after_hours)


def resolve_status(
    store: JobStore,
    job_id: str,
    spec: KindSpec,
    runner: Optional[JobRunner] = None,
    *,
    stale_after_hours: Optional[float] = None,
    now: Optional[datetime.datetime] = None,
) -> StatusReport:
    """Compute the job's state without modifying anything in its directory.

    The completion marker is authoritative once present. Without one, a job
    with a scheduler reference is looked up in the scheduler; anything else is
    still pending. When the scheduler cannot be queried the job stays pending
    unless ``stale_after_hours`` is set and the job was submitted longer ago
    than that.
    """
    if not store.exists(job_id):
        return StatusReport(JobState.NOT_FOUND)

    result_path = store.path_for(job_id, spec.result_name)
    marker = store.read_completion(job_id)
    if marker is not None:
        if not marker.success:
            return _failed(store, job_id, f"{spec.label} exited with code {marker.exit_code}")
        if spec.result_terminated(result_path, require_content=False):
            return StatusReport(JobState.COMPLETED)
        return _failed(store, job_id, f"{spec.label} produced no output")

    scheduler_id = store.read_scheduler_id(job_id)
    if scheduler_id is None or runner is None:
        return StatusReport(JobState.PENDING)

    try:
        code = runner.query_state(scheduler_id)
    except SchedulerQueryError as exc:
        logger.warning("[status] squeue failed job=%s slurm_job_id=%s error=%s", job_id, scheduler_id, exc)
        if spec.result_terminated(result_path, require_content=True):
            return StatusReport(JobState.COMPLETED)
        now = now or datetime.datetime.now(datetime.timezone.utc)
        if _is_stale(store, job_id, stale_after_hours, now):
            return StatusReport(
                JobState.FAILED,
                f"Scheduler unreachable and job older than {stale_after_hours:g} hours; status unknown",
            )
        return StatusReport(JobState.PENDING)

    if code is None:
        return StatusReport(JobState.PENDING)
    code = code.strip().upper()
    if code in PENDING_CODES:
        return StatusReport(JobState.PENDING)
    if code and code not in TERMINAL_CODES:
        return StatusReport(JobState.RUNNING)

    # Ended or left the queue without writing a marker.
    if spec.result_terminated(result_path, require_content=True):
        return StatusReport(JobState.COMPLETED)
    if log_tail(store, job_id):
        return _failed(store, job_id, f"{spec.label} failed")
    return StatusReport(JobState.PENDING)


__all__ = ["FAILURE_TAIL_LINES", "PENDING_CODES", "TERMINAL_CODES", "JobState", "StatusReport", "log_tail", "resolve_status"]
