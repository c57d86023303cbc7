"""Idempotency records — key → recorded outcome of an external request.

A record is started in the same unit of work that creates the order, and
completed once the request's outcome is known. Replays of a completed key
return the recorded outcome; replays of a started key resume the existing
order instead of creating another one.
"""

import json
from datetime import UTC, datetime
from enum import Enum

from protean import handle
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import Boolean, DateTime, Identifier, String, Text
from protean.utils.globals import current_domain

from checkout.domain import checkout


class IdempotencyScope(Enum):
    CHECKOUT = "checkout"


@checkout.aggregate
class IdempotencyRecord:
    key = String(identifier=True, required=True, max_length=300)
    scope = String(choices=IdempotencyScope, required=True)
    order_id = Identifier()
    outcome = Text()  # JSON of the response returned to the caller
    completed = Boolean(default=False)
    created_at = DateTime()
    completed_at = DateTime()

    @staticmethod
    def key_for(scope: IdempotencyScope, key: str) -> str:
        return f"{scope.value}:{key}"

    @classmethod
    def start(cls, scope: IdempotencyScope, key: str, order_id=None):
        return cls(
            key=cls.key_for(scope, key),
            scope=scope.value,
            order_id=order_id,
            completed=False,
            created_at=datetime.now(UTC),
        )

    def complete(self, outcome: dict):
        if self.completed:
            raise ValidationError({"key": [f"Outcome for {self.key} is already recorded"]})
        self.outcome = json.dumps(outcome)
        self.completed = True
        self.completed_at = datetime.now(UTC)

    @property
    def recorded_outcome(self) -> dict | None:
        return json.loads(self.outcome) if self.outcome else None


@checkout.command(part_of="IdempotencyRecord")
class RecordOutcome:
    """Store the final outcome of an idempotent request."""

    scope = String(required=True, choices=IdempotencyScope)
    key = String(required=True, max_length=255)
    outcome = Text(required=True)
    order_id = Identifier()


@checkout.command_handler(part_of=IdempotencyRecord)
class IdempotencyHandler:
    @handle(RecordOutcome)
    def record_outcome(self, command):
        repo = current_domain.repository_for(IdempotencyRecord)
        scope = IdempotencyScope(command.scope)
        try:
            record = repo.get(IdempotencyRecord.key_for(scope, command.key))
        except ObjectNotFoundError:
            record = IdempotencyRecord.start(scope=scope, key=command.key, order_id=command.order_id)

        if record.completed:
            return record.recorded_outcome

        outcome = json.loads(command.outcome)
        record.complete(outcome)
        repo.add(record)
        return outcome


def find_record(scope: IdempotencyScope, key: str) -> IdempotencyRecord | None:
    try:
        return current_domain.repository_for(IdempotencyRecord).get(IdempotencyRecord.key_for(scope, key))
    except ObjectNotFoundError:
        return None
