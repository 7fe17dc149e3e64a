"""
Ledger store operations for the Storefront service.

Reads and low-level writes for orders, order items, transactions,
transaction details and the order timeline. Functions here never commit;
the engines decide where a unit of work begins and ends.
"""
from decimal import Decimal
from typing import List, Optional
from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload
import logging
from . import models

# Set up logging
logger = logging.getLogger(__name__)


def get_order(db: Session, order_id: int, for_update: bool = False) -> Optional[models.Order]:
    """
    Retrieve a single order by ID, ignoring soft-deleted orders.

    Args:
        db: Database session
        order_id: ID of the order to retrieve
        for_update: Lock the row until the current transaction ends

    Returns:
        Order object or None if not found
    """
    query = db.query(models.Order).filter(
        models.Order.id == order_id,
        models.Order.deleted_at.is_(None)
    )
    if for_update:
        # Reload attributes already in the session with the locked row
        query = query.with_for_update().populate_existing()
    return query.first()


def get_order_with_items(db: Session, order_id: int) -> Optional[models.Order]:
    """
    Retrieve an order with its line items and owning user loaded.

    Returns:
        Order object or None if not found
    """
    return (
        db.query(models.Order)
        .options(selectinload(models.Order.items), selectinload(models.Order.user))
        .filter(models.Order.id == order_id, models.Order.deleted_at.is_(None))
        .first()
    )


def get_orders(db: Session, skip: int = 0, limit: int = 100) -> List[models.Order]:
    """
    Retrieve a list of orders with pagination, newest first.

    Args:
        db: Database session
        skip: Number of records to skip (offset)
        limit: Maximum number of records to return

    Returns:
        List of Order objects
    """
    return (
        db.query(models.Order)
        .filter(models.Order.deleted_at.is_(None))
        .order_by(models.Order.created_at.desc(), models.Order.id.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )


def get_user_orders(db: Session, user_id: int, skip: int = 0, limit: int = 100) -> List[models.Order]:
    """Retrieve one user's orders with pagination, newest first."""
    return (
        db.query(models.Order)
        .filter(models.Order.user_id == user_id, models.Order.deleted_at.is_(None))
        .order_by(models.Order.created_at.desc(), models.Order.id.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )


def get_transaction(db: Session, transaction_id: int) -> Optional[models.Transaction]:
    """
    Retrieve a transaction with its order and details loaded.

    Returns:
        Transaction object or None if not found
    """
    return (
        db.query(models.Transaction)
        .options(selectinload(models.Transaction.order), selectinload(models.Transaction.details))
        .filter(
            models.Transaction.id == transaction_id,
            models.Transaction.deleted_at.is_(None)
        )
        .first()
    )


def get_user_transactions(db: Session, user_id: int, skip: int = 0, limit: int = 100) -> List[models.Transaction]:
    return (
        db.query(models.Transaction)
        .options(selectinload(models.Transaction.details))
        .filter(
            models.Transaction.user_id == user_id,
            models.Transaction.deleted_at.is_(None)
        )
        .order_by(models.Transaction.created_at.desc(), models.Transaction.id.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )


def get_payment_transaction(db: Session, order_id: int) -> Optional[models.Transaction]:
    """
    Retrieve the successful payment transaction of an order.

    The store guarantees there is at most one; the ordering only matters
    for rows written before that guarantee existed.

    Args:
        db: Database session
        order_id: Order whose payment is looked up

    Returns:
        Transaction object or None if the order was never paid
    """
    return (
        db.query(models.Transaction)
        .filter(
            models.Transaction.order_id == order_id,
            models.Transaction.type == models.TransactionType.PAYMENT,
            models.Transaction.status == models.TransactionStatus.SUCCESS,
            models.Transaction.deleted_at.is_(None)
        )
        .order_by(models.Transaction.created_at.desc(), models.Transaction.id.desc())
        .first()
    )


def get_refunded_total(db: Session, order_id: int) -> Decimal:
    """
    Sum of successful refunds recorded against an order.

    Returns:
        Refunded amount, Decimal("0") when there are none
    """
    total = db.query(func.sum(models.Transaction.amount)).filter(
        models.Transaction.order_id == order_id,
        models.Transaction.type == models.TransactionType.REFUND,
        models.Transaction.status == models.TransactionStatus.SUCCESS,
        models.Transaction.deleted_at.is_(None)
    ).scalar()
    return Decimal(total) if total is not None else Decimal("0")


def create_transaction(db: Session, **fields) -> models.Transaction:
    """
    Add a transaction row and flush it so it receives an ID.

    Args:
        db: Database session
        **fields: Column values for models.Transaction

    Returns:
        The pending Transaction object
    """
    db_transaction = models.Transaction(**fields)
    db.add(db_transaction)
    db.flush()
    return db_transaction


def add_transaction_detail(db: Session, transaction: models.Transaction, key: str, value: str) -> models.TransactionDetail:
    """
    Append a key/value detail to a transaction.

    Args:
        db: Database session
        transaction: Owning transaction (already flushed)
        key: Detail key, e.g. "reason"
        value: Detail value

    Returns:
        The pending TransactionDetail object
    """
    detail = models.TransactionDetail(transaction_id=transaction.id, key=key, value=value)
    db.add(detail)
    return detail


def log_order_event(
    db: Session,
    order_id: int,
    event_type: str,
    description: str,
    old_value: str = None,
    new_value: str = None,
    user_id: int = None
) -> models.OrderEvent:
    """
    Add an entry to an order's timeline as part of the current transaction.

    Args:
        db: Database session
        order_id: Order identifier
        event_type: Type of event (e.g., "created", "status_changed", "paid")
        description: Human-readable description
        old_value: Previous value (optional)
        new_value: New value (optional)
        user_id: User the event concerns (optional)
    """
    event = models.OrderEvent(
        order_id=order_id,
        event_type=event_type,
        description=description,
        old_value=old_value,
        new_value=new_value,
        user_id=user_id
    )
    db.add(event)
    return event


def get_order_events(db: Session, order_id: int) -> List[models.OrderEvent]:
    """Get all timeline events for an order in chronological order."""
    return db.query(models.OrderEvent).filter(
        models.OrderEvent.order_id == order_id
    ).order_by(models.OrderEvent.created_at.asc(), models.OrderEvent.id.asc()).all()
