"""Gateway event dedup table — one record per gateway transaction id.

A callback is recorded together with the job that settles it, in one unit of
work. A second delivery of the same transaction id finds the record and is
acknowledged without doing anything, whether or not the first one has been
settled yet.
"""

from datetime import UTC, datetime
from enum import Enum

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import DateTime, String, Text
from protean.utils.globals import current_domain

from checkout.domain import checkout
from checkout.gateway.port import GatewayOutcome
from checkout.jobs.job import JobRecord
from checkout.jobs.operations import SETTLE_GATEWAY_EVENT
from checkout.jobs.scheduling import new_job

logger = structlog.get_logger(__name__)


class EventResolution(Enum):
    APPLIED = "applied"
    NO_CHANGE = "no_change"
    IGNORED_TERMINAL = "ignored_terminal"
    EXHAUSTED = "exhausted"


@checkout.aggregate
class GatewayEventRecord:
    transaction_id = String(identifier=True, required=True, max_length=255)
    order_token = String(required=True, max_length=255)
    outcome = String(required=True, choices=GatewayOutcome)
    failure_reason = String(max_length=500)
    payload = Text()
    received_at = DateTime(required=True)
    processed_at = DateTime()
    resolution = String(choices=EventResolution)

    @property
    def is_processed(self):
        return self.processed_at is not None

    def mark_processed(self, resolution: EventResolution):
        self.resolution = resolution.value
        self.processed_at = datetime.now(UTC)


@checkout.command(part_of="GatewayEventRecord")
class RecordGatewayEvent:
    transaction_id = String(required=True, max_length=255)
    order_token = String(required=True, max_length=255)
    outcome = String(required=True, choices=GatewayOutcome)
    failure_reason = String(max_length=500)
    raw_payload = Text()
    received_at = DateTime(required=True)


@checkout.command(part_of="GatewayEventRecord")
class MarkGatewayEventProcessed:
    transaction_id = String(required=True, max_length=255)
    resolution = String(required=True, choices=EventResolution)


@checkout.command_handler(part_of=GatewayEventRecord)
class GatewayEventHandler:
    @handle(RecordGatewayEvent)
    def record_gateway_event(self, command):
        """Store the event and schedule its settlement.

        Returns the settlement job id, or None when the transaction id was
        already recorded.
        """
        repo = current_domain.repository_for(GatewayEventRecord)
        try:
            repo.get(command.transaction_id)
        except ObjectNotFoundError:
            pass
        else:
            logger.info("Duplicate gateway event", transaction_id=command.transaction_id)
            return None

        record = GatewayEventRecord(
            transaction_id=command.transaction_id,
            order_token=command.order_token,
            outcome=command.outcome,
            failure_reason=command.failure_reason,
            payload=command.raw_payload,
            received_at=command.received_at,
        )
        repo.add(record)

        job = new_job(SETTLE_GATEWAY_EVENT, {"transaction_id": command.transaction_id})
        current_domain.repository_for(JobRecord).add(job)
        return str(job.id)

    @handle(MarkGatewayEventProcessed)
    def mark_processed(self, command):
        repo = current_domain.repository_for(GatewayEventRecord)
        record = repo.get(command.transaction_id)
        if record.is_processed:
            return False
        record.mark_processed(EventResolution(command.resolution))
        repo.add(record)
        return True
