"""Settlement Orchestrator — drives an order from checkout to a terminal state.

Entry points:
    submit_checkout()  — cart → reserved order → payment session
    receive_callback() — provider webhook → dedup table → settlement job
    cancel()           — explicit cancel while the order is non-terminal

Job operations (registered on the JobRunner):
    initiate_payment          — retry opening the payment session
    settle_gateway_event      — apply a recorded gateway outcome to its order
    expire_awaiting_gateway   — poll the provider, then time the order out
    notify_order_status       — tell the customer about a terminal status

All order writes go through version-checked commands while holding the
order's lock; a stale read is retried immediately with a fresh read, up to
``conflict_retry_limit`` times. Transitions into a terminal status also hold
the stock locks of the order's reservation, because they commit or release it
in the same unit of work.
"""

import json
from dataclasses import dataclass
from datetime import timedelta

import structlog
from protean.utils.globals import current_domain

from checkout.catalog import get_catalog
from checkout.config import get_settings
from checkout.errors import (
    ConcurrencyConflict,
    InsufficientStock,
    InvalidCart,
    InvalidTransition,
    OrderNotCorrelated,
    TransientError,
)
from checkout.gateway import get_gateway
from checkout.gateway.port import GatewayEvent, GatewayOutcome, GatewaySession
from checkout.jobs.job import JobRecord, JobStatus
from checkout.jobs.operations import (
    EXPIRE_AWAITING_GATEWAY,
    INITIATE_PAYMENT,
    NOTIFY_ORDER_STATUS,
    SETTLE_GATEWAY_EVENT,
)
from checkout.jobs.runner import JobRunner
from checkout.notification import get_notifier
from checkout.order.lifecycle import AdvanceOrder, AssignGatewayToken, held_reservation
from checkout.order.order import Order, OrderStatus, OrderTrigger
from checkout.order.placement import PlaceOrder
from checkout.settlement.gateway_event import (
    EventResolution,
    GatewayEventRecord,
    MarkGatewayEventProcessed,
    RecordGatewayEvent,
)
from checkout.settlement.idempotency import IdempotencyScope, RecordOutcome, find_record
from checkout.stock.ledger import InventoryLedger
from checkout.utils.locks import key_locks, order_locks, stock_locks

logger = structlog.get_logger(__name__)

_TERMINAL_TRIGGERS = frozenset(
    {
        OrderTrigger.RESERVATION_REJECTED,
        OrderTrigger.SETTLED,
        OrderTrigger.PAYMENT_FAILED,
        OrderTrigger.GATEWAY_TIMED_OUT,
        OrderTrigger.RETRIES_EXHAUSTED,
        OrderTrigger.CANCEL_REQUESTED,
    }
)


@dataclass(frozen=True)
class CheckoutResult:
    order_id: str
    status: str
    gateway_token: str | None = None
    redirect_url: str | None = None
    replayed: bool = False

    @property
    def payment_pending(self) -> bool:
        """True while the payment session is still being opened by a retry job."""
        return self.status == OrderStatus.AWAITING_GATEWAY.value and not self.gateway_token

    def to_dict(self):
        return {
            "order_id": self.order_id,
            "status": self.status,
            "gateway_token": self.gateway_token,
            "redirect_url": self.redirect_url,
            "payment_pending": self.payment_pending,
            "replayed": self.replayed,
        }


@dataclass(frozen=True)
class CallbackResult:
    status: str  # "accepted" | "duplicate"
    transaction_id: str
    job_id: str | None = None
    job_outcome: str | None = None


class SettlementOrchestrator:
    def __init__(self, ledger=None, runner=None, gateway=None, catalog=None, notifier=None):
        self.ledger = ledger or InventoryLedger()
        self.runner = runner or JobRunner()
        self._gateway = gateway
        self._catalog = catalog
        self._notifier = notifier

        self.runner.register(INITIATE_PAYMENT, self._run_initiate_payment, self._initiate_payment_exhausted)
        self.runner.register(SETTLE_GATEWAY_EVENT, self._run_settle_gateway_event, self._settlement_exhausted)
        self.runner.register(EXPIRE_AWAITING_GATEWAY, self._run_expire_awaiting_gateway, self._expiry_exhausted)
        self.runner.register(NOTIFY_ORDER_STATUS, self._run_notify_order_status)

    # Collaborators resolve through their registries unless injected
    @property
    def gateway(self):
        return self._gateway or get_gateway()

    @property
    def catalog(self):
        return self._catalog or get_catalog()

    @property
    def notifier(self):
        return self._notifier or get_notifier()

    # -------------------------------------------------------------------
    # Checkout
    # -------------------------------------------------------------------
    def submit_checkout(self, customer_id: str, items: list[dict], idempotency_key: str) -> CheckoutResult:
        """Turn a cart into a reserved order with an open payment session.

        Replaying an ``idempotency_key`` returns the outcome of the first
        submission. A submission that crashed half-way is resumed from the
        order it already created.

        Raises:
            InvalidCart: the cart or the customer identity is unusable.
            InsufficientStock: a line cannot be reserved. The order is Failed.
        """
        if not idempotency_key:
            raise InvalidCart({"idempotency_key": ["An idempotency key is required"]})
        if not customer_id:
            raise InvalidCart({"customer_id": ["An authenticated customer is required"]})
        if not isinstance(items, list) or not all(isinstance(item, dict) for item in items):
            raise InvalidCart({"items": ["Items must be a list of {product_id, quantity} objects"]})

        log = logger.bind(idempotency_key=idempotency_key, customer_id=str(customer_id))
        with key_locks.hold(f"{IdempotencyScope.CHECKOUT.value}:{idempotency_key}"):
            record = find_record(IdempotencyScope.CHECKOUT, idempotency_key)
            if record is not None and record.completed:
                log.info("Checkout replayed", order_id=str(record.order_id))
                return self._replay(record.recorded_outcome)

            if record is not None:
                order_id = str(record.order_id)
                log.warning("Resuming interrupted checkout", order_id=order_id)
            else:
                product_ids = [str(item["product_id"]) for item in items if item.get("product_id")]
                order_id = current_domain.process(
                    PlaceOrder(
                        customer_id=customer_id,
                        items=json.dumps(items),
                        unit_prices=json.dumps(self.catalog.unit_prices(product_ids)),
                        idempotency_key=idempotency_key,
                        currency=get_settings().currency,
                    ),
                    asynchronous=False,
                )
                log.info("Order placed", order_id=order_id)

            return self._drive_checkout(order_id, idempotency_key)

    def _drive_checkout(self, order_id: str, idempotency_key: str) -> CheckoutResult:
        order = self.get_order(order_id)

        if order.status == OrderStatus.PENDING.value:
            lines = [{"product_id": str(line.product_id), "quantity": line.quantity} for line in order.items]
            try:
                reservation_id = self.ledger.reserve(order_id, lines)
            except InsufficientStock as exc:
                logger.info("Checkout rejected", order_id=order_id, shortages=exc.shortages)
                self._advance(order_id, OrderTrigger.RESERVATION_REJECTED, reason=str(exc), strict=False)
                self._record_checkout_outcome(
                    idempotency_key,
                    order_id,
                    {"order_id": order_id, "error": "InsufficientStock", "shortages": exc.shortages},
                )
                raise
            if self._advance(order_id, OrderTrigger.RESERVED, reservation_id=reservation_id, strict=False) is None:
                # The order ended while its stock was being reserved
                self.ledger.release(reservation_id, reason="Order ended before reservation was attached")

        order = self.get_order(order_id)
        if order.status == OrderStatus.AWAITING_GATEWAY.value:
            self._ensure_job(
                EXPIRE_AWAITING_GATEWAY,
                order_id,
                delay=timedelta(seconds=get_settings().awaiting_gateway_timeout_seconds),
            )
            if not order.gateway_token and not self._has_live_job(INITIATE_PAYMENT, order_id):
                try:
                    self.initiate_payment(order_id)
                except TransientError as exc:
                    logger.warning(
                        "Payment initiation failed; retrying in background",
                        order_id=order_id,
                        error=str(exc),
                        error_type=type(exc).__name__,
                    )
                    # The inline call above was the first attempt
                    self._ensure_job(INITIATE_PAYMENT, order_id, attempts=1)

        self._record_checkout_outcome(idempotency_key, order_id, {"order_id": order_id})
        return self._result(order_id)

    def _replay(self, outcome: dict) -> CheckoutResult:
        if outcome.get("error") == "InsufficientStock":
            raise InsufficientStock(outcome.get("shortages") or {})
        return self._result(outcome["order_id"], replayed=True)

    def _result(self, order_id: str, replayed: bool = False) -> CheckoutResult:
        order = self.get_order(order_id)
        return CheckoutResult(
            order_id=str(order.id),
            status=order.status,
            gateway_token=order.gateway_token,
            redirect_url=order.redirect_url,
            replayed=replayed,
        )

    def _record_checkout_outcome(self, idempotency_key: str, order_id: str, outcome: dict):
        current_domain.process(
            RecordOutcome(
                scope=IdempotencyScope.CHECKOUT.value,
                key=idempotency_key,
                outcome=json.dumps(outcome),
                order_id=order_id,
            ),
            asynchronous=False,
        )

    # -------------------------------------------------------------------
    # Payment initiation
    # -------------------------------------------------------------------
    def initiate_payment(self, order_id: str) -> GatewaySession | None:
        """Open a payment session for an order awaiting one.

        Raises the gateway's transient errors so the caller can schedule a
        retry.
        """
        order = self.get_order(order_id)
        if order.status != OrderStatus.AWAITING_GATEWAY.value or order.gateway_token:
            logger.info("Payment initiation not needed", order_id=order_id, status=order.status)
            return None

        session = self.gateway.initiate(order)
        self._assign_token(order_id, session)
        logger.info("Payment session opened", order_id=order_id, gateway_token=session.token)
        return session

    def _assign_token(self, order_id: str, session: GatewaySession):
        for _ in range(get_settings().conflict_retry_limit):
            order = self.get_order(order_id)
            if order.is_terminal:
                logger.warning(
                    "Payment session opened for an order that already ended",
                    order_id=order_id,
                    status=order.status,
                    gateway_token=session.token,
                )
                return
            if order.gateway_token:
                if order.gateway_token != session.token:
                    logger.warning(
                        "Order already holds another gateway token",
                        order_id=order_id,
                        gateway_token=order.gateway_token,
                        discarded_token=session.token,
                    )
                return

            try:
                with order_locks.hold(order_id):
                    current_domain.process(
                        AssignGatewayToken(
                            order_id=order_id,
                            expected_version=order.version,
                            gateway_token=session.token,
                            redirect_url=session.redirect_url,
                        ),
                        asynchronous=False,
                    )
                return
            except ConcurrencyConflict as exc:
                logger.debug("Stale order version; re-reading", order_id=order_id, error=str(exc))

        raise ConcurrencyConflict(f"Order {order_id}", order.version, order.version)

    def _run_initiate_payment(self, payload: dict):
        self.initiate_payment(payload["order_id"])

    def _initiate_payment_exhausted(self, payload: dict, error: str):
        self._advance(
            payload["order_id"],
            OrderTrigger.RETRIES_EXHAUSTED,
            reason=f"Payment could not be initiated: {error}",
            strict=False,
        )

    # -------------------------------------------------------------------
    # Gateway callbacks
    # -------------------------------------------------------------------
    def receive_callback(self, raw_payload: bytes, signature: str | None) -> CallbackResult:
        """Acknowledge a provider callback and settle it if possible.

        The event is recorded with its settlement job before anything else
        happens, so a crash after this point still settles it later. The job
        is then run inline; if it fails transiently it stays scheduled.

        Raises:
            MalformedEvent: the payload does not verify or cannot be parsed.
        """
        event = self.gateway.normalize_callback(raw_payload, signature)
        job_id = self._record_event(event)
        if job_id is None:
            return CallbackResult(status="duplicate", transaction_id=event.transaction_id)

        outcome = self.runner.run_job(job_id)
        return CallbackResult(
            status="accepted",
            transaction_id=event.transaction_id,
            job_id=job_id,
            job_outcome=outcome,
        )

    def _record_event(self, event: GatewayEvent) -> str | None:
        with key_locks.hold(f"gateway-event:{event.transaction_id}"):
            job_id = current_domain.process(
                RecordGatewayEvent(
                    transaction_id=event.transaction_id,
                    order_token=event.order_token,
                    outcome=event.outcome.value,
                    failure_reason=event.failure_reason[:500] if event.failure_reason else None,
                    raw_payload=event.raw_payload,
                    received_at=event.received_at,
                ),
                asynchronous=False,
            )

        logger.info(
            "Gateway event received",
            transaction_id=event.transaction_id,
            order_token=event.order_token,
            outcome=event.outcome.value,
            duplicate=job_id is None,
        )
        return job_id

    def settle_gateway_event(self, transaction_id: str) -> EventResolution:
        """Apply a recorded gateway event to its order, exactly once.

        Raises:
            OrderNotCorrelated: no order carries the event's token yet.
        """
        record = current_domain.repository_for(GatewayEventRecord).get(transaction_id)
        if record.is_processed:
            return EventResolution(record.resolution)

        order = current_domain.repository_for(Order).find_by_gateway_token(record.order_token)
        if order is None:
            raise OrderNotCorrelated(f"No order holds gateway token {record.order_token}")

        resolution = self._apply_outcome(
            str(order.id),
            GatewayOutcome(record.outcome),
            reason=record.failure_reason,
            transaction_id=transaction_id,
        )
        current_domain.process(
            MarkGatewayEventProcessed(transaction_id=transaction_id, resolution=resolution.value),
            asynchronous=False,
        )
        return resolution

    def _apply_outcome(self, order_id, outcome: GatewayOutcome, reason=None, transaction_id=None) -> EventResolution:
        log = logger.bind(order_id=order_id, transaction_id=transaction_id, outcome=outcome.value)
        order = self.get_order(order_id)

        if order.is_terminal:
            if outcome == GatewayOutcome.SUCCEEDED and order.status != OrderStatus.COMPLETED.value:
                log.error("Payment succeeded for an order that already ended", status=order.status)
            else:
                log.info("Gateway event for an ended order ignored", status=order.status)
            return EventResolution.IGNORED_TERMINAL

        if outcome == GatewayOutcome.PENDING:
            log.info("Gateway reports payment still pending")
            return EventResolution.NO_CHANGE

        if outcome == GatewayOutcome.FAILED:
            if order.status != OrderStatus.AWAITING_GATEWAY.value:
                log.warning("Payment failure ignored", status=order.status)
                return EventResolution.NO_CHANGE
            updated = self._advance(
                order_id, OrderTrigger.PAYMENT_FAILED, reason=reason or "Payment declined", strict=False
            )
            return EventResolution.APPLIED if updated else EventResolution.IGNORED_TERMINAL

        # Succeeded: AwaitingGateway → Settling → Completed. An order left in
        # Settling by an interrupted run only needs the second step.
        if order.status == OrderStatus.AWAITING_GATEWAY.value:
            if self._advance(order_id, OrderTrigger.PAYMENT_SUCCEEDED, strict=False) is None:
                return EventResolution.IGNORED_TERMINAL
        if self._advance(order_id, OrderTrigger.SETTLED, strict=False) is None:
            return EventResolution.IGNORED_TERMINAL

        log.info("Order settled")
        return EventResolution.APPLIED

    def _run_settle_gateway_event(self, payload: dict):
        self.settle_gateway_event(payload["transaction_id"])

    def _settlement_exhausted(self, payload: dict, error: str):
        transaction_id = payload["transaction_id"]
        record = current_domain.repository_for(GatewayEventRecord).get(transaction_id)
        order = current_domain.repository_for(Order).find_by_gateway_token(record.order_token)
        if order is not None:
            self._advance(
                str(order.id),
                OrderTrigger.RETRIES_EXHAUSTED,
                reason=f"Gateway event {transaction_id} could not be settled: {error}",
                strict=False,
            )
        current_domain.process(
            MarkGatewayEventProcessed(transaction_id=transaction_id, resolution=EventResolution.EXHAUSTED.value),
            asynchronous=False,
        )

    # -------------------------------------------------------------------
    # AwaitingGateway timeout
    # -------------------------------------------------------------------
    def expire_awaiting_gateway(self, order_id: str) -> Order | None:
        """Fail an order that is still awaiting the gateway.

        The provider is asked for the session status first, so a payment
        whose callback was lost is settled instead of timed out.
        """
        order = self.get_order(order_id)
        if order.status != OrderStatus.AWAITING_GATEWAY.value:
            return None

        if order.gateway_token:
            try:
                event = self.gateway.fetch_status(order.gateway_token)
            except TransientError as exc:
                logger.warning("Gateway status poll failed", order_id=order_id, error=str(exc))
                event = None

            if event is not None and event.is_final:
                job_id = self._record_event(event)
                if job_id is not None:
                    self.runner.run_job(job_id)
                else:
                    self.settle_gateway_event(event.transaction_id)
                if self.get_order(order_id).status != OrderStatus.AWAITING_GATEWAY.value:
                    return None

        timeout = get_settings().awaiting_gateway_timeout_seconds
        return self._advance(
            order_id,
            OrderTrigger.GATEWAY_TIMED_OUT,
            reason=f"No payment outcome within {timeout} seconds",
            strict=False,
        )

    def _run_expire_awaiting_gateway(self, payload: dict):
        self.expire_awaiting_gateway(payload["order_id"])

    def _expiry_exhausted(self, payload: dict, error: str):
        self._advance(
            payload["order_id"],
            OrderTrigger.RETRIES_EXHAUSTED,
            reason=f"Payment timeout could not be enforced: {error}",
            strict=False,
        )

    # -------------------------------------------------------------------
    # Cancellation
    # -------------------------------------------------------------------
    def cancel(self, order_id: str, reason: str = "Cancelled by customer") -> Order:
        """Cancel a non-terminal order and release its stock.

        Raises:
            InvalidTransition: the order has already ended.
        """
        order = self._advance(order_id, OrderTrigger.CANCEL_REQUESTED, reason=reason)
        logger.info("Order cancelled", order_id=order_id)
        return order

    # -------------------------------------------------------------------
    # Notification
    # -------------------------------------------------------------------
    def _run_notify_order_status(self, payload: dict):
        self.notifier.notify(
            customer_id=payload["customer_id"],
            order_id=payload["order_id"],
            status=payload["status"],
            reason=payload.get("reason"),
        )

    # -------------------------------------------------------------------
    # Queries and shared helpers
    # -------------------------------------------------------------------
    def get_order(self, order_id: str) -> Order:
        return current_domain.repository_for(Order).get(order_id)

    def _advance(
        self,
        order_id: str,
        trigger: OrderTrigger,
        reason: str | None = None,
        reservation_id: str | None = None,
        strict: bool = True,
    ) -> Order | None:
        """Apply ``trigger`` with an optimistic version check, retrying on conflict.

        With ``strict=False`` a trigger that no longer applies (because a
        concurrent writer moved the order on) returns None instead of raising
        ``InvalidTransition``.
        """
        order = None
        for _ in range(get_settings().conflict_retry_limit):
            order = self.get_order(order_id)
            if not order.can_transition(trigger):
                if strict:
                    logger.warning(
                        "Rejected order transition", order_id=order_id, trigger=trigger.value, status=order.status
                    )
                    raise InvalidTransition(
                        {"status": [f"Cannot apply '{trigger.value}' to an order in {order.status} status"]}
                    )
                logger.info(
                    "Order transition no longer applies",
                    order_id=order_id,
                    trigger=trigger.value,
                    status=order.status,
                )
                return None

            try:
                with order_locks.hold(order_id), stock_locks.hold(*self._locked_products(order, trigger)):
                    current_domain.process(
                        AdvanceOrder(
                            order_id=order_id,
                            expected_version=order.version,
                            trigger=trigger.value,
                            reason=reason[:500] if reason else None,
                            reservation_id=reservation_id,
                        ),
                        asynchronous=False,
                    )
            except ConcurrencyConflict as exc:
                logger.debug("Stale order version; re-reading", order_id=order_id, error=str(exc))
                continue

            order = self.get_order(order_id)
            logger.info(
                "Order transitioned",
                order_id=order_id,
                trigger=trigger.value,
                status=order.status,
                version=order.version,
            )
            return order

        raise ConcurrencyConflict(f"Order {order_id}", order.version, order.version)

    @staticmethod
    def _locked_products(order: Order, trigger: OrderTrigger) -> list[str]:
        if trigger not in _TERMINAL_TRIGGERS:
            return []
        reservation = held_reservation(order)
        return reservation.product_ids if reservation is not None else []

    def _has_live_job(self, operation: str, order_id: str) -> bool:
        jobs = current_domain.repository_for(JobRecord).find_for_operation(operation)
        return any(
            job.status != JobStatus.EXHAUSTED.value and job.payload_data.get("order_id") == order_id for job in jobs
        )

    def _ensure_job(self, operation: str, order_id: str, attempts: int = 0, delay: timedelta | None = None):
        """Schedule ``operation`` for ``order_id`` unless a live job for it already exists."""
        if not self._has_live_job(operation, order_id):
            self.runner.schedule(operation, {"order_id": order_id}, attempts=attempts, delay=delay)


_current_orchestrator: SettlementOrchestrator | None = None


def get_orchestrator() -> SettlementOrchestrator:
    """Return the process-wide orchestrator, creating it on first use."""
    global _current_orchestrator
    if _current_orchestrator is None:
        _current_orchestrator = SettlementOrchestrator()
    return _current_orchestrator


def set_orchestrator(orchestrator: SettlementOrchestrator) -> None:
    global _current_orchestrator
    _current_orchestrator = orchestrator


def reset_orchestrator() -> None:
    global _current_orchestrator
    _current_orchestrator = None
