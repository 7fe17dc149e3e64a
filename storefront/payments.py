"""
Payment settlement for orders.

Marks an order paid, records the payment transaction with its details and
credits loyalty points, all in one atomic unit. The gateway is a pluggable
callable; the default approves every charge.
"""
import logging
import uuid
from datetime import datetime
from decimal import Decimal, ROUND_FLOOR
from typing import Callable, Optional, Tuple
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import crud, events, models, schemas
from .clients import points
from .database import atomic
from .errors import AlreadyPaidError, NotFoundError, PaymentDeclinedError

logger = logging.getLogger(__name__)

POINTS_RATE = Decimal("0.10")
DEFAULT_CURRENCY = "IDR"
TRANSACTION_NUMBER_PREFIX = "TRX-"

# (order, payment details) -> (approved, decline reason)
PaymentGateway = Callable[[models.Order, schemas.PaymentDetails], Tuple[bool, Optional[str]]]


def approve_all(order: models.Order, payment_details: schemas.PaymentDetails) -> Tuple[bool, Optional[str]]:
    """Gateway that accepts every charge."""
    return True, None


def calculate_points(total_amount: Decimal) -> int:
    """Points earned for a payment: 10% of the amount, rounded down."""
    return int((Decimal(total_amount) * POINTS_RATE).to_integral_value(rounding=ROUND_FLOOR))


def generate_transaction_number() -> str:
    return f"{TRANSACTION_NUMBER_PREFIX}{uuid.uuid4()}"


def process_payment(
    db: Session,
    order_id: int,
    payment_details: schemas.PaymentDetails,
    gateway: PaymentGateway = approve_all
) -> models.Order:
    """
    Settle payment for an order.

    The order row is locked and then claimed with a conditional update, so of
    several concurrent attempts exactly one sees the order unpaid.

    Args:
        db: Database session
        order_id: ID of the order to pay
        payment_details: Optional gateway reference and key/value details
        gateway: Charges the order and reports (approved, reason)

    Returns:
        The paid Order object

    Raises:
        NotFoundError: If the order does not exist
        AlreadyPaidError: If the order is already paid
        PaymentDeclinedError: If the gateway rejects the charge
    """
    with atomic(db):
        db_order = crud.get_order(db, order_id, for_update=True)
        if db_order is None:
            raise NotFoundError("Order", order_id)
        if db_order.is_paid:
            raise AlreadyPaidError(order_id)

        approved, reason = gateway(db_order, payment_details)
        if not approved:
            logger.warning(f"Payment declined for order {order_id}: {reason}")
            raise PaymentDeclinedError(order_id, reason)

        paid_at = datetime.utcnow()
        claimed = db.execute(
            update(models.Order)
            .where(models.Order.id == order_id, models.Order.is_paid.is_(False))
            .values(is_paid=True, paid_at=paid_at, status=models.OrderStatus.PROCESSING)
            .execution_options(synchronize_session=False)
        ).rowcount
        if claimed != 1:
            raise AlreadyPaidError(order_id)
        db.refresh(db_order)

        points_earned = calculate_points(db_order.total_amount)
        try:
            transaction = crud.create_transaction(
                db,
                transaction_number=generate_transaction_number(),
                user_id=db_order.user_id,
                order_id=db_order.id,
                type=models.TransactionType.PAYMENT,
                amount=db_order.total_amount,
                payment_method=db_order.payment_method,
                status=models.TransactionStatus.SUCCESS,
                currency=DEFAULT_CURRENCY,
                points_earned=points_earned,
                notes=f"Payment for order {db_order.order_number}",
                external_reference=payment_details.reference,
            )
        except IntegrityError as e:
            raise AlreadyPaidError(order_id) from e

        for key, value in (payment_details.details or {}).items():
            crud.add_transaction_detail(db, transaction, key, value)

        points.add_points(db, db_order.user_id, points_earned)

        crud.log_order_event(
            db=db,
            order_id=order_id,
            event_type="paid",
            description=f"Paid {db_order.total_amount} with {db_order.payment_method} ({transaction.transaction_number})",
            old_value="unpaid",
            new_value="paid",
            user_id=db_order.user_id
        )
        events.queue(db, events.ORDER_PAID, {
            "order_id": db_order.id,
            "order_number": db_order.order_number,
            "user_id": db_order.user_id,
            "transaction_number": transaction.transaction_number,
            "amount": str(db_order.total_amount),
            "points_earned": points_earned,
        })

    logger.info(f"Order {order_id} paid, {points_earned} points credited to user {db_order.user_id}")
    return db_order
