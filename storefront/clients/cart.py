"""
Cart access for the Storefront service.

Reads a user's cart as an immutable snapshot when an order is created, and
clears exactly the snapshotted lines as part of the same unit of work.
"""
import logging
from decimal import Decimal
from typing import Iterable, List, Optional
from sqlalchemy.orm import Session

from .. import models, schemas
from ..errors import NotFoundError

logger = logging.getLogger(__name__)


def get_user_cart_items(db: Session, user_id: int, for_update: bool = False) -> List[schemas.CartLine]:
    """
    Read the current contents of a user's cart.

    Args:
        db: Database session
        user_id: Owner of the cart
        for_update: Lock the cart rows until the current transaction ends

    Returns:
        Frozen cart lines (line id, product, quantity, unit price) in insertion order
    """
    query = db.query(models.CartItem).filter(
        models.CartItem.user_id == user_id
    ).order_by(models.CartItem.id.asc())
    if for_update:
        query = query.with_for_update()
    return [schemas.CartLine.model_validate(row) for row in query.all()]


def clear_user_cart(db: Session, user_id: int, line_ids: Optional[Iterable[int]] = None) -> None:
    """
    Remove lines from a user's cart without committing.

    Args:
        db: Database session
        user_id: Owner of the cart
        line_ids: Only remove these lines; every line of the cart when omitted
    """
    query = db.query(models.CartItem).filter(models.CartItem.user_id == user_id)
    if line_ids is not None:
        query = query.filter(models.CartItem.id.in_(list(line_ids)))
    deleted = query.delete(synchronize_session=False)
    logger.debug(f"Cleared {deleted} cart lines for user {user_id}")


def add_to_cart(db: Session, user_id: int, product_id: int, quantity: int, price: Decimal) -> models.CartItem:
    """
    Add a product to a user's cart, merging with an existing line for the same product.

    The price recorded on an existing line is kept; only the quantity grows.

    Returns:
        The created or updated CartItem
    """
    cart_item = db.query(models.CartItem).filter(
        models.CartItem.user_id == user_id,
        models.CartItem.product_id == product_id
    ).first()

    if cart_item:
        cart_item.quantity += quantity
    else:
        cart_item = models.CartItem(
            user_id=user_id,
            product_id=product_id,
            quantity=quantity,
            price=price
        )
        db.add(cart_item)

    db.commit()
    db.refresh(cart_item)
    return cart_item


def get_cart_item(db: Session, item_id: int) -> models.CartItem:
    """
    Retrieve one cart line.

    Raises:
        NotFoundError: If the line does not exist
    """
    cart_item = db.get(models.CartItem, item_id)
    if cart_item is None:
        raise NotFoundError("Cart item", item_id)
    return cart_item


def update_quantity(db: Session, item_id: int, quantity: int) -> models.CartItem:
    """Replace the quantity of a cart line."""
    cart_item = get_cart_item(db, item_id)
    cart_item.quantity = quantity
    db.commit()
    db.refresh(cart_item)
    logger.debug(f"Cart item {item_id} quantity set to {quantity}")
    return cart_item


def remove_cart_item(db: Session, item_id: int) -> None:
    cart_item = get_cart_item(db, item_id)
    db.delete(cart_item)
    db.commit()
    logger.debug(f"Removed cart item {item_id}")
