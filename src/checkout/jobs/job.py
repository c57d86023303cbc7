"""JobRecord aggregate — a durable, retryable unit of deferred work.

State Machine:
    PENDING → IN_FLIGHT → (deleted on success)
    IN_FLIGHT → PENDING    (transient failure, attempts left)
    IN_FLIGHT → EXHAUSTED  (attempts used up, or non-retryable failure)
    IN_FLIGHT → IN_FLIGHT  (lease expired, reclaimed by another worker)

``attempts`` counts failed executions. Claiming is exclusive: a claim bumps
``version`` and sets a lease; a job is claimable again only once the lease
has expired.
"""

import json
from datetime import UTC, datetime, timedelta
from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import DateTime, Integer, String, Text

from checkout.domain import checkout
from checkout.utils.clock import as_utc


class JobStatus(Enum):
    PENDING = "Pending"
    IN_FLIGHT = "InFlight"
    EXHAUSTED = "Exhausted"


@checkout.aggregate
class JobRecord:
    operation = String(required=True, max_length=100)
    payload = Text(required=True)  # JSON
    status = String(choices=JobStatus, default=JobStatus.PENDING.value)
    run_at = DateTime(required=True)
    attempts = Integer(default=0)
    max_attempts = Integer(default=3, min_value=1)
    last_error = String(max_length=1000)
    lease_owner = String(max_length=100)
    lease_expires_at = DateTime()
    version = Integer(default=0)
    created_at = DateTime()
    updated_at = DateTime()

    @classmethod
    def create(cls, operation, payload, run_at, max_attempts, attempts=0, last_error=None):
        now = datetime.now(UTC)
        return cls(
            operation=operation,
            payload=json.dumps(payload),
            status=JobStatus.PENDING.value,
            run_at=run_at,
            attempts=attempts,
            max_attempts=max_attempts,
            last_error=last_error,
            version=1,
            created_at=now,
            updated_at=now,
        )

    @property
    def payload_data(self) -> dict:
        return json.loads(self.payload)

    def is_due(self, now: datetime) -> bool:
        status = JobStatus(self.status)
        if status == JobStatus.PENDING:
            return as_utc(self.run_at) <= now
        if status == JobStatus.IN_FLIGHT:
            return self.lease_expires_at is None or as_utc(self.lease_expires_at) <= now
        return False

    def claim(self, worker_id: str, now: datetime, lease_seconds: int):
        if not self.is_due(now):
            raise ValidationError({"status": [f"Job {self.id} is not claimable"]})

        self.status = JobStatus.IN_FLIGHT.value
        self.lease_owner = worker_id
        self.lease_expires_at = now + timedelta(seconds=lease_seconds)
        self._touch(now)

    def record_failure(self, error: str, now: datetime, retryable: bool, retry_delay: timedelta):
        """Count a failed execution and either reschedule or exhaust the job.

        Returns True if the job has been exhausted.
        """
        self.attempts = (self.attempts or 0) + 1
        self.last_error = error[:1000]
        self.lease_owner = None
        self.lease_expires_at = None

        if retryable and self.attempts < self.max_attempts:
            self.status = JobStatus.PENDING.value
            self.run_at = now + retry_delay
        else:
            self.status = JobStatus.EXHAUSTED.value
        self._touch(now)
        return self.status == JobStatus.EXHAUSTED.value

    def _touch(self, now):
        self.version = (self.version or 0) + 1
        self.updated_at = now
