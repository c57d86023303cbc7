"""Order lifecycle — version-checked transition commands and handler.

Every write names the version it was computed from. A write against a stale
version raises ``ConcurrencyConflict`` and changes nothing; the orchestrator
re-reads and decides again. Callers hold the order's lock while processing
these commands, which makes the version check and the write one atomic step.

A transition into a terminal status carries its effects in the same unit of
work: Completed commits the reservation, Failed and Cancelled release it, and
every terminal status schedules the customer notification. Callers also hold
the stock locks of the reservation's products for such transitions.
"""

from protean import handle
from protean.fields import Identifier, Integer, String
from protean.utils.globals import current_domain

from checkout.domain import checkout
from checkout.errors import ConcurrencyConflict
from checkout.jobs.job import JobRecord
from checkout.jobs.operations import NOTIFY_ORDER_STATUS
from checkout.jobs.scheduling import new_job
from checkout.order.order import Order, OrderStatus, OrderTrigger
from checkout.stock.holds import commit_held_stock, release_held_stock
from checkout.stock.reservation import Reservation


@checkout.command(part_of="Order")
class AdvanceOrder:
    """Apply a state machine trigger to an order."""

    order_id = Identifier(required=True)
    expected_version = Integer(required=True)
    trigger = String(required=True, choices=OrderTrigger)
    reason = String(max_length=500)
    reservation_id = Identifier()


@checkout.command(part_of="Order")
class AssignGatewayToken:
    """Record the payment session token returned by the gateway."""

    order_id = Identifier(required=True)
    expected_version = Integer(required=True)
    gateway_token = String(required=True, max_length=255)
    redirect_url = String(max_length=1000)


def _load_at_version(order_id, expected_version):
    order = current_domain.repository_for(Order).get(order_id)
    if order.version != expected_version:
        raise ConcurrencyConflict(f"Order {order_id}", expected_version, order.version)
    return order


def held_reservation(order):
    """Return the reservation held for ``order``, or None.

    An order links its reservation only on the Reserved transition, so an
    order that ends before then is matched by order id instead.
    """
    repo = current_domain.repository_for(Reservation)
    if order.reservation_id:
        return repo.get(order.reservation_id)
    return repo.find_for_order(order.id)


def _settle_reservation(order):
    reservation = held_reservation(order)
    if reservation is None:
        return
    if OrderStatus(order.status) == OrderStatus.COMPLETED:
        commit_held_stock(reservation)
    else:
        release_held_stock(reservation, reason=f"Order {order.status.lower()}")


@checkout.command_handler(part_of=Order)
class OrderLifecycleHandler:
    @handle(AdvanceOrder)
    def advance_order(self, command):
        order = _load_at_version(command.order_id, command.expected_version)
        if command.reservation_id:
            order.attach_reservation(command.reservation_id)
        order.transition(OrderTrigger(command.trigger), reason=command.reason)
        current_domain.repository_for(Order).add(order)

        if order.is_terminal:
            _settle_reservation(order)
            current_domain.repository_for(JobRecord).add(
                new_job(
                    NOTIFY_ORDER_STATUS,
                    {
                        "order_id": str(order.id),
                        "customer_id": str(order.customer_id),
                        "status": order.status,
                        "reason": order.failure_reason,
                    },
                )
            )
        return order.version

    @handle(AssignGatewayToken)
    def assign_gateway_token(self, command):
        order = _load_at_version(command.order_id, command.expected_version)
        order.assign_gateway_token(command.gateway_token, redirect_url=command.redirect_url)
        current_domain.repository_for(Order).add(order)
        return order.version
