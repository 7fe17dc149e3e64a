"""
Order lifecycle operations.

Turns a user's cart into an order, moves orders through their statuses and
resolves full order views. Every state change runs as a single atomic unit
and queues a post-commit event.
"""
import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Callable, List
from sqlalchemy.orm import Session

from . import crud, events, models, schemas
from .clients import cart
from .database import atomic
from .errors import EmptyCartError, NotFoundError

logger = logging.getLogger(__name__)

SHIPPING_PRICE = Decimal("10.00")
ORDER_NUMBER_PREFIX = "ORD-"

ShippingPolicy = Callable[[List[schemas.CartLine]], Decimal]


def flat_rate_shipping(lines: List[schemas.CartLine]) -> Decimal:
    """Charge the same shipping price for every order."""
    return SHIPPING_PRICE


def generate_order_number() -> str:
    return f"{ORDER_NUMBER_PREFIX}{uuid.uuid4()}"


def calculate_subtotal(lines: List[schemas.CartLine]) -> Decimal:
    """Sum of unit price times quantity over all cart lines."""
    return sum((line.price * line.quantity for line in lines), Decimal("0.00"))


def _event_payload(order: models.Order) -> dict:
    return {
        "order_id": order.id,
        "order_number": order.order_number,
        "user_id": order.user_id,
        "status": order.status,
    }


def create_from_cart(
    db: Session,
    user_id: int,
    shipping: schemas.ShippingDetails,
    payment_method: str,
    shipping_policy: ShippingPolicy = flat_rate_shipping
) -> models.Order:
    """
    Create an order from the user's current cart and empty the cart.

    The order, its items and the removal of the snapshotted cart lines commit
    together; on any failure none of them survive.

    Args:
        db: Database session
        user_id: Owner of the cart and of the new order
        shipping: Shipping destination
        payment_method: Payment method tag
        shipping_policy: Computes the shipping price from the cart lines

    Returns:
        Created Order object

    Raises:
        EmptyCartError: If the user's cart has no lines
    """
    with atomic(db):
        lines = cart.get_user_cart_items(db, user_id, for_update=True)
        if not lines:
            raise EmptyCartError(user_id)

        shipping_price = shipping_policy(lines)
        db_order = models.Order(
            user_id=user_id,
            order_number=generate_order_number(),
            status=models.OrderStatus.PENDING,
            total_amount=calculate_subtotal(lines) + shipping_price,
            shipping_price=shipping_price,
            payment_method=payment_method,
            shipping_address=shipping.address,
            shipping_city=shipping.city,
            shipping_state=shipping.state,
            shipping_zip=shipping.zip,
            shipping_country=shipping.country,
        )
        db.add(db_order)
        db.flush()

        for line in lines:
            db.add(models.OrderItem(
                order_id=db_order.id,
                product_id=line.product_id,
                quantity=line.quantity,
                unit_price=line.price,
                total_price=line.price * line.quantity,
            ))

        # Lines added after the snapshot stay in the cart
        cart.clear_user_cart(db, user_id, [line.id for line in lines])

        crud.log_order_event(
            db=db,
            order_id=db_order.id,
            event_type="created",
            description=f"Order created from {len(lines)} cart lines",
            new_value=models.OrderStatus.PENDING,
            user_id=user_id
        )
        events.queue(db, events.ORDER_CREATED, _event_payload(db_order))

    logger.info(f"Created order {db_order.order_number} for user {user_id} (total {db_order.total_amount})")
    return db_order


def update_status(db: Session, order_id: int, new_status: str) -> models.Order:
    """
    Set an order's status.

    Moving to "delivered" marks the order delivered; delivered_at keeps the
    first delivery time when "delivered" is applied again. Leaving
    "delivered" clears both delivery flags.

    Args:
        db: Database session
        order_id: ID of the order to update
        new_status: One of models.OrderStatus.ALL

    Returns:
        Updated Order object

    Raises:
        NotFoundError: If the order does not exist
        ValueError: If new_status is not a known status
    """
    if new_status not in models.OrderStatus.ALL:
        raise ValueError(f"Unknown status: {new_status}")

    with atomic(db):
        db_order = crud.get_order(db, order_id, for_update=True)
        if db_order is None:
            raise NotFoundError("Order", order_id)

        old_status = db_order.status
        db_order.status = new_status

        if new_status == models.OrderStatus.DELIVERED:
            db_order.is_delivered = True
            if db_order.delivered_at is None:
                db_order.delivered_at = datetime.utcnow()
        elif db_order.is_delivered:
            db_order.is_delivered = False
            db_order.delivered_at = None

        if old_status != new_status:
            crud.log_order_event(
                db=db,
                order_id=order_id,
                event_type="status_changed",
                description=f"Status changed from '{old_status}' to '{new_status}'",
                old_value=old_status,
                new_value=new_status,
                user_id=db_order.user_id
            )
        events.queue(db, events.ORDER_STATUS_CHANGED, {
            **_event_payload(db_order),
            "old_status": old_status,
            "new_status": new_status,
        })

    logger.info(f"Order {order_id} status: {old_status} -> {new_status}")
    return db_order


def get_order_with_items(db: Session, order_id: int) -> models.Order:
    """
    Resolve an order with its line items and owning user.

    Raises:
        NotFoundError: If the order does not exist
    """
    db_order = crud.get_order_with_items(db, order_id)
    if db_order is None:
        raise NotFoundError("Order", order_id)
    return db_order


def soft_delete_order(db: Session, order_id: int) -> models.Order:
    """
    Mark an order deleted. The row and its items are kept.

    Raises:
        NotFoundError: If the order does not exist or is already deleted
    """
    with atomic(db):
        db_order = crud.get_order(db, order_id, for_update=True)
        if db_order is None:
            raise NotFoundError("Order", order_id)

        db_order.deleted_at = datetime.utcnow()
        crud.log_order_event(
            db=db,
            order_id=order_id,
            event_type="deleted",
            description="Order deleted",
            user_id=db_order.user_id
        )
        events.queue(db, events.ORDER_DELETED, _event_payload(db_order))

    logger.info(f"Soft-deleted order {order_id}")
    return db_order
