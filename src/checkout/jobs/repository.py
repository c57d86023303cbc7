"""Repository for the JobRecord aggregate."""

from datetime import datetime

from checkout.domain import checkout
from checkout.jobs.job import JobRecord, JobStatus
from checkout.utils.clock import as_utc


@checkout.repository(part_of=JobRecord)
class JobRepository:
    def find_by_status(self, status: JobStatus) -> list[JobRecord]:
        return self._dao.query.filter(status=status.value).all().items

    def find_due(self, now: datetime, limit: int | None = None) -> list[JobRecord]:
        """Pending jobs whose run_at has passed, and in-flight jobs with an expired lease.

        Oldest first, so a backlog drains in scheduling order.
        """
        candidates = self.find_by_status(JobStatus.PENDING) + self.find_by_status(JobStatus.IN_FLIGHT)
        due = sorted(
            (job for job in candidates if job.is_due(now)),
            key=lambda job: as_utc(job.run_at),
        )
        return due[:limit] if limit else due

    def find_for_operation(self, operation: str) -> list[JobRecord]:
        return self._dao.query.filter(operation=operation).all().items
