"""Names of the operations the job runner knows how to execute."""

INITIATE_PAYMENT = "initiate_payment"
SETTLE_GATEWAY_EVENT = "settle_gateway_event"
EXPIRE_AWAITING_GATEWAY = "expire_awaiting_gateway"
NOTIFY_ORDER_STATUS = "notify_order_status"
