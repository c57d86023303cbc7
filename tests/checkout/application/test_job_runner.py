"""Tests for the JobRunner — retries, exhaustion, leases and the notification job."""

from datetime import timedelta

import pytest
from checkout.errors import TransientError
from checkout.jobs.job import JobRecord, JobStatus
from checkout.jobs.runner import JobRunner
from checkout.utils.clock import utcnow
from protean import current_domain
from protean.exceptions import ObjectNotFoundError, ValidationError


class _Recorder:
    def __init__(self, failures=None):
        self.failures = list(failures or [])
        self.performed = []
        self.exhausted = []

    def perform(self, payload):
        self.performed.append(payload)
        if self.failures:
            raise self.failures.pop(0)

    def on_exhausted(self, payload, error):
        self.exhausted.append((payload, error))


def _runner(recorder, worker_id="worker-test"):
    runner = JobRunner(worker_id=worker_id)
    runner.register("record", recorder.perform, recorder.on_exhausted)
    return runner


def _job(job_id):
    return current_domain.repository_for(JobRecord).get(job_id)


class TestScheduling:
    def test_unknown_operation_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            JobRunner().schedule("nope", {})
        assert "operation" in exc_info.value.messages

    def test_delay_postpones_job(self):
        runner = _runner(_Recorder())
        job_id = runner.schedule("record", {"n": 1}, delay=timedelta(minutes=5))
        assert runner.run_job(job_id) == JobRunner.SKIPPED
        assert runner.run_job(job_id, now=utcnow() + timedelta(minutes=6)) == JobRunner.SUCCEEDED

    def test_scheduled_job_keeps_its_payload(self):
        job_id = _runner(_Recorder()).schedule("record", {"order_id": "order-1", "n": 2})
        job = _job(job_id)
        assert job.operation == "record"
        assert job.payload_data == {"order_id": "order-1", "n": 2}
        assert job.status == JobStatus.PENDING.value


class TestExecution:
    def test_success_deletes_job(self):
        recorder = _Recorder()
        runner = _runner(recorder)
        job_id = runner.schedule("record", {"n": 1})

        summary = runner.run_due()

        assert summary.succeeded == [job_id]
        assert recorder.performed == [{"n": 1}]
        with pytest.raises(ObjectNotFoundError):
            _job(job_id)

    def test_transient_failure_retried_then_succeeds(self):
        recorder = _Recorder(failures=[TransientError("flaky")])
        runner = _runner(recorder)
        job_id = runner.schedule("record", {})

        assert runner.run_due().retried == [job_id]
        assert _job(job_id).attempts == 1
        assert runner.run_due().succeeded == [job_id]

    def test_exhausted_after_max_attempts(self, settings):
        recorder = _Recorder(failures=[TransientError("down")] * settings.job_max_attempts)
        runner = _runner(recorder)
        job_id = runner.schedule("record", {"order_id": "o-1"})

        outcomes = [runner.run_job(job_id) for _ in range(settings.job_max_attempts)]

        assert outcomes == ["retried", "retried", "exhausted"]
        job = _job(job_id)
        assert job.status == JobStatus.EXHAUSTED.value
        assert job.attempts == 3
        assert recorder.exhausted == [({"order_id": "o-1"}, "TransientError: down")]

    def test_exhausted_job_is_not_run_again(self, settings):
        recorder = _Recorder(failures=[ValueError("bad")])
        runner = _runner(recorder)
        job_id = runner.schedule("record", {})
        runner.run_due()

        assert runner.run_due().processed == 0
        assert len(recorder.performed) == 1
        assert _job(job_id).status == JobStatus.EXHAUSTED.value

    def test_non_transient_failure_exhausts_immediately(self):
        recorder = _Recorder(failures=[KeyError("order_id")])
        runner = _runner(recorder)
        job_id = runner.schedule("record", {})

        assert runner.run_job(job_id) == JobRunner.EXHAUSTED
        assert _job(job_id).attempts == 1
        assert len(recorder.exhausted) == 1

    def test_failing_exhaustion_hook_leaves_job_exhausted(self):
        def explode(payload, error):
            raise RuntimeError("hook failed")

        runner = JobRunner()
        runner.register("record", _Recorder(failures=[ValueError("bad")]).perform, explode)
        job_id = runner.schedule("record", {})

        assert runner.run_job(job_id) == JobRunner.EXHAUSTED
        assert _job(job_id).status == JobStatus.EXHAUSTED.value

    def test_job_for_unregistered_operation_exhausts(self):
        job_id = _runner(_Recorder()).schedule("record", {})
        assert JobRunner().run_job(job_id) == JobRunner.EXHAUSTED
        assert "Unknown job operation" in _job(job_id).last_error

    def test_run_due_respects_limit(self):
        runner = _runner(_Recorder())
        for n in range(3):
            runner.schedule("record", {"n": n})
        assert runner.run_due(limit=2).processed == 2
        assert runner.run_due().processed == 1


class TestLeases:
    def test_claimed_job_is_not_claimed_twice(self):
        runner_a = _runner(_Recorder(), worker_id="a")
        runner_b = _runner(_Recorder(), worker_id="b")
        job_id = runner_a.schedule("record", {})
        now = utcnow()
        stale = _job(job_id)

        assert runner_a.claim(stale, now) is not None
        assert runner_b.claim(stale, now) is None

    def test_crashed_worker_job_is_reclaimed_after_lease(self, settings):
        recorder_b = _Recorder()
        runner_a = _runner(_Recorder(), worker_id="a")
        runner_b = _runner(recorder_b, worker_id="b")
        job_id = runner_a.schedule("record", {"n": 1})
        now = utcnow()

        runner_a.claim(_job(job_id), now)

        assert runner_b.run_due(now=now + timedelta(seconds=1)).processed == 0
        later = now + timedelta(seconds=settings.job_lease_seconds + 1)
        assert runner_b.run_due(now=later).succeeded == [job_id]
        assert recorder_b.performed == [{"n": 1}]


class TestNotificationJob:
    @pytest.fixture(autouse=True)
    def stock(self, orchestrator):
        orchestrator.ledger.initialize("prod-a", 10)

    def test_failed_delivery_is_retried(self, orchestrator, notifier):
        placed = orchestrator.submit_checkout(
            customer_id="cust-001",
            items=[{"product_id": "prod-a", "quantity": 1}],
            idempotency_key="key-001",
        )
        orchestrator.cancel(placed.order_id)

        notifier.configure(should_succeed=False)
        assert len(orchestrator.runner.run_due().retried) == 1
        assert notifier.for_order(placed.order_id) == []

        notifier.configure(should_succeed=True)
        orchestrator.runner.run_due()
        assert len(notifier.for_order(placed.order_id)) == 1

    def test_exhausted_notification_does_not_touch_order(self, orchestrator, notifier):
        placed = orchestrator.submit_checkout(
            customer_id="cust-001",
            items=[{"product_id": "prod-a", "quantity": 1}],
            idempotency_key="key-001",
        )
        orchestrator.cancel(placed.order_id)
        notifier.configure(should_succeed=False)

        for _ in range(3):
            orchestrator.runner.run_due()

        assert orchestrator.get_order(placed.order_id).status == "Cancelled"
