"""Job scheduling, claiming and completion: commands and handler.

Claims and failures are conditional writes: they name the job version they
were computed from and are rejected with ``ConcurrencyConflict`` if another
worker got there first. The runner holds the job's lock while processing
them.
"""

import json
from datetime import UTC, datetime, timedelta

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import Boolean, DateTime, Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from checkout.config import get_settings
from checkout.domain import checkout
from checkout.errors import ConcurrencyConflict
from checkout.jobs.backoff import backoff_delay
from checkout.jobs.job import JobRecord

logger = structlog.get_logger(__name__)


def new_job(operation: str, payload: dict, attempts: int = 0, delay: timedelta | None = None, max_attempts=None):
    """Build a JobRecord due at ``now + (delay or backoff(attempts))``.

    Exposed so other handlers can persist a job in the same unit of work as
    the change that makes the job necessary.
    """
    settings = get_settings()
    if delay is None:
        delay = backoff_delay(attempts, settings.backoff_base_seconds, settings.backoff_cap_seconds)
    return JobRecord.create(
        operation=operation,
        payload=payload,
        run_at=datetime.now(UTC) + delay,
        attempts=attempts,
        max_attempts=max_attempts or settings.job_max_attempts,
    )


@checkout.command(part_of="JobRecord")
class ScheduleJob:
    """Persist a new job."""

    operation = String(required=True, max_length=100)
    payload_json = Text(required=True)
    attempts = Integer(default=0)
    delay_seconds = Integer()
    max_attempts = Integer()


@checkout.command(part_of="JobRecord")
class ClaimJob:
    """Take an exclusive lease on a due job."""

    job_id = Identifier(required=True)
    worker_id = String(required=True, max_length=100)
    expected_version = Integer(required=True)
    as_of = DateTime(required=True)


@checkout.command(part_of="JobRecord")
class CompleteJob:
    """Remove a job whose operation succeeded."""

    job_id = Identifier(required=True)
    worker_id = String(required=True, max_length=100)


@checkout.command(part_of="JobRecord")
class FailJob:
    """Record a failed execution and reschedule or exhaust the job."""

    job_id = Identifier(required=True)
    worker_id = String(required=True, max_length=100)
    error = String(required=True, max_length=1000)
    retryable = Boolean(default=True)
    as_of = DateTime(required=True)


@checkout.command_handler(part_of=JobRecord)
class JobSchedulingHandler:
    @handle(ScheduleJob)
    def schedule_job(self, command):
        delay = timedelta(seconds=command.delay_seconds) if command.delay_seconds is not None else None
        job = new_job(
            operation=command.operation,
            payload=json.loads(command.payload_json),
            attempts=command.attempts or 0,
            delay=delay,
            max_attempts=command.max_attempts,
        )
        current_domain.repository_for(JobRecord).add(job)
        return str(job.id)

    @handle(ClaimJob)
    def claim_job(self, command):
        repo = current_domain.repository_for(JobRecord)
        job = repo.get(command.job_id)
        if job.version != command.expected_version or not job.is_due(command.as_of):
            raise ConcurrencyConflict(f"Job {command.job_id}", command.expected_version, job.version)

        job.claim(command.worker_id, command.as_of, get_settings().job_lease_seconds)
        repo.add(job)
        return job.version

    @handle(CompleteJob)
    def complete_job(self, command):
        repo = current_domain.repository_for(JobRecord)
        try:
            job = repo.get(command.job_id)
        except ObjectNotFoundError:
            return False

        if job.lease_owner != command.worker_id:
            logger.warning(
                "Completing job whose lease moved to another worker",
                job_id=str(job.id),
                worker_id=command.worker_id,
                lease_owner=job.lease_owner,
            )
        repo._dao.delete(job)
        return True

    @handle(FailJob)
    def fail_job(self, command):
        repo = current_domain.repository_for(JobRecord)
        job = repo.get(command.job_id)
        if job.lease_owner != command.worker_id:
            # Lease expired and another worker reclaimed the job; its outcome wins
            logger.warning(
                "Failure not recorded; job lease lost",
                job_id=str(job.id),
                worker_id=command.worker_id,
                lease_owner=job.lease_owner,
            )
            return None

        settings = get_settings()
        exhausted = job.record_failure(
            error=command.error,
            now=command.as_of,
            retryable=command.retryable,
            retry_delay=backoff_delay(
                (job.attempts or 0) + 1,
                settings.backoff_base_seconds,
                settings.backoff_cap_seconds,
            ),
        )
        repo.add(job)
        return exhausted
