"""Job Runner — executes due jobs with retries and bounded backoff.

Operations are registered by name. A job's payload is passed to the
operation; the runner decides what happens next from how it ended:

- returned normally → the job record is deleted
- raised ``TransientError`` → ``attempts + 1``, rescheduled with backoff,
  or exhausted once ``max_attempts`` is reached
- raised anything else → exhausted immediately

An exhausted job calls the operation's exhaustion hook, which is where the
orchestrator moves the affected order to Failed.

Claims are version-checked writes performed under the job's lock, and carry a
lease. Two workers never run the same job at once; a job whose worker died is
picked up again after the lease expires.
"""

import json
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

import structlog
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from checkout.config import get_settings
from checkout.errors import ConcurrencyConflict, TransientError
from checkout.jobs.job import JobRecord
from checkout.jobs.scheduling import ClaimJob, CompleteJob, FailJob, ScheduleJob
from checkout.utils.clock import utcnow
from checkout.utils.locks import job_locks

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Operation:
    name: str
    perform: Callable[[dict], object]
    on_exhausted: Callable[[dict, str], None] | None = None


@dataclass
class RunSummary:
    """What happened to the jobs picked up by one ``run_due`` pass."""

    succeeded: list[str] = field(default_factory=list)
    retried: list[str] = field(default_factory=list)
    exhausted: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.succeeded) + len(self.retried) + len(self.exhausted)

    def to_dict(self):
        return {
            "processed": self.processed,
            "succeeded": len(self.succeeded),
            "retried": len(self.retried),
            "exhausted": len(self.exhausted),
            "skipped": len(self.skipped),
        }


class JobRunner:
    SUCCEEDED = "succeeded"
    RETRIED = "retried"
    EXHAUSTED = "exhausted"
    SKIPPED = "skipped"

    def __init__(self, worker_id: str | None = None):
        self.worker_id = worker_id or f"worker-{uuid.uuid4().hex[:8]}"
        self._operations: dict[str, Operation] = {}

    # -------------------------------------------------------------------
    # Registration and scheduling
    # -------------------------------------------------------------------
    def register(self, name: str, perform, on_exhausted=None):
        self._operations[name] = Operation(name=name, perform=perform, on_exhausted=on_exhausted)

    @property
    def operations(self) -> list[str]:
        return sorted(self._operations)

    def schedule(
        self,
        operation: str,
        payload: dict,
        attempts: int = 0,
        delay: timedelta | None = None,
        max_attempts: int | None = None,
    ) -> str:
        """Persist a job due at ``now + (delay or backoff(attempts))`` and return its id."""
        if operation not in self._operations:
            raise ValidationError({"operation": [f"Unknown job operation '{operation}'"]})

        job_id = current_domain.process(
            ScheduleJob(
                operation=operation,
                payload_json=json.dumps(payload),
                attempts=attempts,
                delay_seconds=int(delay.total_seconds()) if delay is not None else None,
                max_attempts=max_attempts,
            ),
            asynchronous=False,
        )
        logger.info("Job scheduled", job_id=job_id, operation=operation, attempts=attempts)
        return job_id

    # -------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------
    def due_jobs(self, now: datetime | None = None, limit: int | None = None) -> list[JobRecord]:
        return current_domain.repository_for(JobRecord).find_due(now or utcnow(), limit=limit)

    def claim(self, job: JobRecord, now: datetime) -> JobRecord | None:
        """Lease ``job`` to this worker. Returns the claimed record, or None if another worker won."""
        with job_locks.hold(str(job.id)):
            try:
                current_domain.process(
                    ClaimJob(
                        job_id=str(job.id),
                        worker_id=self.worker_id,
                        expected_version=job.version,
                        as_of=now,
                    ),
                    asynchronous=False,
                )
            except (ConcurrencyConflict, ObjectNotFoundError):
                logger.debug("Job claimed elsewhere", job_id=str(job.id), worker_id=self.worker_id)
                return None

        return current_domain.repository_for(JobRecord).get(str(job.id))

    def run_due(self, now: datetime | None = None, limit: int | None = None) -> RunSummary:
        """Claim and execute every job due at ``now``."""
        now = now or utcnow()
        summary = RunSummary()
        for job in self.due_jobs(now, limit=limit or get_settings().job_batch_size):
            outcome = self._claim_and_execute(job, now)
            getattr(summary, outcome).append(str(job.id))

        if summary.processed:
            logger.info("Due jobs processed", worker_id=self.worker_id, **summary.to_dict())
        return summary

    def run_job(self, job_id: str, now: datetime | None = None) -> str:
        """Claim and execute one job right away, if it is due and unclaimed."""
        now = now or utcnow()
        try:
            job = current_domain.repository_for(JobRecord).get(job_id)
        except ObjectNotFoundError:
            return self.SKIPPED
        if not job.is_due(now):
            return self.SKIPPED
        return self._claim_and_execute(job, now)

    def run_forever(self, stop_event: threading.Event, poll_interval: float = 1.0):
        """Poll for due jobs until ``stop_event`` is set."""
        logger.info("Job worker started", worker_id=self.worker_id, operations=self.operations)
        while not stop_event.is_set():
            try:
                summary = self.run_due()
            except Exception:
                logger.exception("Job polling pass failed", worker_id=self.worker_id)
                summary = None
            if summary is None or not summary.processed:
                stop_event.wait(poll_interval)
        logger.info("Job worker stopped", worker_id=self.worker_id)

    def _claim_and_execute(self, job: JobRecord, now: datetime) -> str:
        claimed = self.claim(job, now)
        if claimed is None:
            return self.SKIPPED
        return self._execute(claimed, now)

    def _execute(self, job: JobRecord, now: datetime) -> str:
        job_id = str(job.id)
        operation = self._operations.get(job.operation)
        log = logger.bind(job_id=job_id, operation=job.operation, attempt=(job.attempts or 0) + 1)

        if operation is None:
            log.error("No handler registered for job operation")
            return self._fail(job, operation, f"Unknown job operation '{job.operation}'", False, now)

        try:
            operation.perform(job.payload_data)
        except TransientError as exc:
            log.warning("Job failed transiently", error=str(exc), error_type=type(exc).__name__)
            return self._fail(job, operation, f"{type(exc).__name__}: {exc}", True, now)
        except Exception as exc:
            log.exception("Job failed permanently", error_type=type(exc).__name__)
            return self._fail(job, operation, f"{type(exc).__name__}: {exc}", False, now)

        with job_locks.hold(job_id):
            current_domain.process(CompleteJob(job_id=job_id, worker_id=self.worker_id), asynchronous=False)
        log.info("Job succeeded")
        return self.SUCCEEDED

    def _fail(self, job: JobRecord, operation: Operation | None, error: str, retryable: bool, now: datetime) -> str:
        job_id = str(job.id)
        with job_locks.hold(job_id):
            exhausted = current_domain.process(
                FailJob(job_id=job_id, worker_id=self.worker_id, error=error, retryable=retryable, as_of=now),
                asynchronous=False,
            )

        if exhausted is None:
            return self.SKIPPED
        if not exhausted:
            return self.RETRIED

        logger.error("Job exhausted", job_id=job_id, operation=job.operation, error=error)
        if operation is not None and operation.on_exhausted is not None:
            try:
                operation.on_exhausted(job.payload_data, error)
            except Exception:
                # The job stays Exhausted with its last error for operators to inspect
                logger.exception("Exhaustion hook failed", job_id=job_id, operation=job.operation)
        return self.EXHAUSTED
