"""
Error taxonomy for the order, payment and refund core.

Every error carries a ``kind`` tag and the HTTP status it maps to, so the
request layer can translate errors without inspecting messages.
"""


class StorefrontError(Exception):
    """Base class for errors raised by the storefront core."""
    kind = "error"
    status_code = 500


class NotFoundError(StorefrontError):
    """A referenced order, transaction or user does not exist."""
    kind = "not_found"
    status_code = 404

    def __init__(self, entity: str, identifier):
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} {identifier} not found")


class EmptyCartError(StorefrontError):
    kind = "empty_cart"
    status_code = 400

    def __init__(self, user_id: int):
        self.user_id = user_id
        super().__init__("Cart is empty")


class AlreadyPaidError(StorefrontError):
    """A payment was attempted on an order that is already paid. Not retryable."""
    kind = "already_paid"
    status_code = 409

    def __init__(self, order_id: int):
        self.order_id = order_id
        super().__init__(f"Order {order_id} is already paid")


class PaymentDeclinedError(StorefrontError):
    """The payment gateway rejected the charge. The client may retry with another method."""
    kind = "payment_declined"
    status_code = 402

    def __init__(self, order_id: int, reason: str = None):
        self.order_id = order_id
        self.reason = reason
        message = f"Payment for order {order_id} was declined"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class PersistenceError(StorefrontError):
    """Storage or transaction failure. Nothing was committed, so the unit is safe to retry."""
    kind = "persistence"
    status_code = 500
    retryable = True


class RefundRejectedError(StorefrontError):
    """A refund policy refused the request. Nothing was recorded."""
    kind = "refund_rejected"
    status_code = 400

    def __init__(self, order_id: int, reason: str):
        self.order_id = order_id
        self.reason = reason
        super().__init__(reason)
