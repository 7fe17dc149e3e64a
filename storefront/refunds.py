"""
Refunds against paid orders.

A refund is recorded as its own transaction linked to the original payment
through its details. The engine does not cap refund amounts; callers pass a
RefundPolicy (see validators.validate_refund_request), which is evaluated
while the order row is locked.
"""
import logging
import uuid
from decimal import Decimal
from typing import Callable, Optional, Tuple
from sqlalchemy.orm import Session

from . import crud, events, models
from .database import atomic
from .errors import NotFoundError, RefundRejectedError

logger = logging.getLogger(__name__)

REFUND_NUMBER_PREFIX = "REF-"

# (order, requested amount, refunded so far) -> (is_valid, error_message)
RefundPolicy = Callable[[models.Order, Decimal, Decimal], Tuple[bool, str]]


def generate_refund_number() -> str:
    return f"{REFUND_NUMBER_PREFIX}{uuid.uuid4()}"


def process_refund(
    db: Session,
    order_id: int,
    amount: Decimal,
    reason: str,
    policy: Optional[RefundPolicy] = None
) -> models.Transaction:
    """
    Record a refund for an order's successful payment.

    The refund is credited to the owner of the original payment and copies
    its payment method and currency. When a policy is given, it sees the
    refunded total under the order's row lock, so concurrent refunds of the
    same order are checked one after the other.

    Args:
        db: Database session
        order_id: Order to refund
        amount: Amount returned, never negative
        reason: Free-text reason, stored as a transaction detail
        policy: Optional check run before anything is written

    Returns:
        The refund Transaction with its order and details loaded

    Raises:
        ValueError: If amount is negative
        NotFoundError: If the order has no successful payment transaction
        RefundRejectedError: If the policy refuses the refund
    """
    if amount < 0:
        raise ValueError(f"Refund amount must not be negative: {amount}")

    with atomic(db):
        order = crud.get_order(db, order_id, for_update=True)
        if policy is not None:
            if order is None:
                raise NotFoundError("Order", order_id)
            is_valid, error_message = policy(order, amount, crud.get_refunded_total(db, order_id))
            if not is_valid:
                raise RefundRejectedError(order_id, error_message)

        original = crud.get_payment_transaction(db, order_id)
        if original is None:
            raise NotFoundError("Payment transaction for order", order_id)

        order_number = original.order.order_number
        refund = crud.create_transaction(
            db,
            transaction_number=generate_refund_number(),
            user_id=original.user_id,
            order_id=order_id,
            type=models.TransactionType.REFUND,
            amount=amount,
            payment_method=original.payment_method,
            status=models.TransactionStatus.SUCCESS,
            currency=original.currency,
            points_earned=0,
            notes=f"Refund for order {order_number}: {reason}",
            external_reference=None,
        )
        crud.add_transaction_detail(db, refund, "reason", reason)
        crud.add_transaction_detail(db, refund, "original_transaction", original.transaction_number)

        crud.log_order_event(
            db=db,
            order_id=order_id,
            event_type="refunded",
            description=f"Refunded {amount}: {reason}",
            new_value=str(amount),
            user_id=original.user_id
        )
        events.queue(db, events.ORDER_REFUNDED, {
            "order_id": order_id,
            "order_number": order_number,
            "user_id": original.user_id,
            "transaction_number": refund.transaction_number,
            "original_transaction": original.transaction_number,
            "amount": str(amount),
        })
        refund_id = refund.id

    logger.info(f"Refunded {amount} on order {order_id} ({reason})")
    return crud.get_transaction(db, refund_id)
