"""Stock initialization and restocking — commands and handler.

These establish the externally confirmed stock level that reservations draw
from.
"""

from protean import handle
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import Identifier, Integer
from protean.utils.globals import current_domain

from checkout.domain import checkout
from checkout.stock.stock import StockEntry


@checkout.command(part_of="StockEntry")
class InitializeStock:
    """Create the stock entry for a product."""

    product_id = Identifier(required=True)
    quantity = Integer(required=True, min_value=0)


@checkout.command(part_of="StockEntry")
class RestockProduct:
    """Add confirmed units to an existing stock entry."""

    product_id = Identifier(required=True)
    quantity = Integer(required=True, min_value=1)


@checkout.command_handler(part_of=StockEntry)
class StockInitializationHandler:
    @handle(InitializeStock)
    def initialize_stock(self, command):
        repo = current_domain.repository_for(StockEntry)
        try:
            repo.get(command.product_id)
        except ObjectNotFoundError:
            pass
        else:
            raise ValidationError({"product_id": [f"Stock for {command.product_id} is already initialized"]})

        entry = StockEntry.initialize(product_id=command.product_id, quantity=command.quantity)
        repo.add(entry)
        return str(entry.product_id)

    @handle(RestockProduct)
    def restock_product(self, command):
        repo = current_domain.repository_for(StockEntry)
        entry = repo.get(command.product_id)
        entry.restock(command.quantity)
        repo.add(entry)
        return entry.available
