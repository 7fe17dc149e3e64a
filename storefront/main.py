"""
Storefront Orders API

This module implements a FastAPI-based service for checking out carts into
orders, paying orders, and refunding paid orders, with PostgreSQL
persistence and a Redis read cache.

Endpoints:
    GET /healthz: Health check endpoint for orchestration systems
    GET /cart, POST /cart: Read the current user's cart / add a product
    PUT /cart/{item_id}, DELETE /cart/{item_id}: Change or remove a cart line
    GET /orders: List orders with pagination
    POST /orders: Create an order from the current user's cart
    GET /orders/{order_id}: Get an order with its items
    PUT /orders/{order_id}/status: Change an order's status (admin)
    POST /orders/{order_id}/pay: Pay an order
    DELETE /orders/{order_id}: Soft-delete an order (admin)
    GET /orders/{order_id}/timeline: Order history
    GET /transactions: List the current user's transactions
    GET /transactions/report: Transaction summary for the current user
    GET /transactions/{transaction_id}: Get a transaction with its details
    GET /transactions/{transaction_id}/points: Points credited by a transaction
    POST /transactions/refund: Refund a paid order
    GET /users/me/points: Loyalty point balance

Attributes:
    app (FastAPI): The FastAPI application instance configured with the title "storefront-orders"
"""
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional
from fastapi import FastAPI, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from . import auth, cache, crud, errors, models, orders, payments, refunds, reports, schemas, validators, webhooks
from .clients import cart, points
from .database import engine, get_db

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create database tables and wire post-commit subscribers
    models.Base.metadata.create_all(bind=engine)
    cache.register()
    webhooks.register()
    yield
    webhooks.shutdown()


app = FastAPI(title="storefront-orders", lifespan=lifespan)


@app.exception_handler(errors.StorefrontError)
async def storefront_error_handler(request: Request, exc: errors.StorefrontError):
    """Map core errors to responses by their kind."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": str(exc), "error": exc.kind},
    )


@app.get("/healthz", response_model=dict)
def health():
    """
    Health check endpoint for the storefront service.

    Returns:
        dict: {"status": "healthy"} when the service is operational.
    """
    return {"status": "healthy"}


@app.get("/cart", response_model=List[schemas.CartLine])
def get_cart(
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.get_current_user)
):
    """Get the current user's cart lines."""
    cache_key = cache.user_cart_key(current_user.id)
    cached = cache.get_cache(cache_key)
    if cached is not None:
        return cached

    result = [line.model_dump(mode="json") for line in cart.get_user_cart_items(db, current_user.id)]
    cache.set_cache(cache_key, result, ttl=cache.LIST_CACHE_TTL)
    return result


@app.post("/cart", response_model=schemas.CartLine, status_code=status.HTTP_201_CREATED)
def add_cart_item(
    item: schemas.CartItemCreate,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.get_current_user)
):
    """
    Add a product to the current user's cart.

    Adding a product that is already in the cart increases its quantity.
    """
    cart_item = cart.add_to_cart(db, current_user.id, item.product_id, item.quantity, item.price)
    cache.delete_cache(cache.user_cart_key(current_user.id))
    return cart_item


@app.put("/cart/{item_id}", response_model=schemas.CartLine)
def update_cart_item(
    item_id: int,
    update: schemas.CartItemUpdate,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.get_current_user)
):
    """
    Set the quantity of one of the current user's cart lines.

    Raises:
        HTTPException: 403 if the line belongs to another user
        404 (not_found): If the line does not exist
    """
    cart_item = cart.get_cart_item(db, item_id)
    auth.authorize_owner(current_user, cart_item.user_id, "cart item")

    cart_item = cart.update_quantity(db, item_id, update.quantity)
    cache.delete_cache(cache.user_cart_key(cart_item.user_id))
    return cart_item


@app.delete("/cart/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_cart_item(
    item_id: int,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.get_current_user)
):
    """Remove one of the current user's cart lines."""
    cart_item = cart.get_cart_item(db, item_id)
    owner_id = cart_item.user_id
    auth.authorize_owner(current_user, owner_id, "cart item")

    cart.remove_cart_item(db, item_id)
    cache.delete_cache(cache.user_cart_key(owner_id))


@app.get("/orders", response_model=List[schemas.Order])
def list_orders(
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.get_current_user)
):
    """
    List orders with pagination (authenticated users see their own, admins see all).

    Per-user pages are served from the cache when available.

    Args:
        skip: Number of records to skip (default: 0)
        limit: Maximum number of records to return (default: 100)
    """
    if current_user.is_admin:
        return crud.get_orders(db, skip=skip, limit=limit)

    cache_key = cache.user_orders_key(current_user.id, skip, limit)
    cached = cache.get_cache(cache_key)
    if cached is not None:
        return cached

    result = [
        schemas.Order.model_validate(order).model_dump(mode="json")
        for order in crud.get_user_orders(db, current_user.id, skip=skip, limit=limit)
    ]
    cache.set_cache(cache_key, result, ttl=cache.LIST_CACHE_TTL)
    return result


@app.post("/orders", response_model=schemas.OrderDetail, status_code=status.HTTP_201_CREATED)
def create_order(
    order: schemas.OrderCreate,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.get_current_user)
):
    """
    Check out the current user's cart into a new order.

    Raises:
        400 (empty_cart): If the cart is empty
    """
    db_order = orders.create_from_cart(db, current_user.id, order.shipping, order.payment_method)
    return orders.get_order_with_items(db, db_order.id)


@app.get("/orders/{order_id}", response_model=schemas.OrderDetail)
def get_order(
    order_id: int,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.get_current_user)
):
    """
    Get a single order with its items (owner or admin).

    Raises:
        HTTPException: 403 if not authorized
        404 (not_found): If order not found
    """
    cache_key = cache.order_key(order_id)
    cached = cache.get_cache(cache_key)
    if cached is not None:
        auth.authorize_owner(current_user, cached["user_id"], "order")
        return cached

    db_order = orders.get_order_with_items(db, order_id)
    auth.authorize_owner(current_user, db_order.user_id, "order")

    result = schemas.OrderDetail.model_validate(db_order).model_dump(mode="json")
    cache.set_cache(cache_key, result, ttl=cache.ORDER_CACHE_TTL)
    return result


@app.put("/orders/{order_id}/status", response_model=schemas.Order)
def update_order_status(
    order_id: int,
    update: schemas.OrderStatusUpdate,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_admin)
):
    """Change an order's status (admin only)."""
    return orders.update_status(db, order_id, update.status)


@app.post("/orders/{order_id}/pay", response_model=schemas.Order)
def pay_order(
    payment: schemas.PaymentDetails,
    db_order: models.Order = Depends(auth.get_owned_order),
    db: Session = Depends(get_db)
):
    """
    Pay an order (owner or admin).

    Raises:
        404 (not_found), 409 (already_paid), 402 (payment_declined)
    """
    return payments.process_payment(db, db_order.id, payment)


@app.delete("/orders/{order_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_order(
    order_id: int,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_admin)
):
    """Soft-delete an order (admin only)."""
    orders.soft_delete_order(db, order_id)


@app.get("/orders/{order_id}/timeline", response_model=List[schemas.OrderEvent])
def get_order_timeline(
    db_order: models.Order = Depends(auth.get_owned_order),
    db: Session = Depends(get_db)
):
    """
    Get the timeline of events for an order (owner or admin).

    Returns:
        List of order events in chronological order
    """
    return crud.get_order_events(db, db_order.id)


@app.get("/transactions", response_model=List[schemas.Transaction])
def list_transactions(
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.get_current_user)
):
    """List the current user's transactions, newest first."""
    cache_key = cache.user_transactions_key(current_user.id, skip, limit)
    cached = cache.get_cache(cache_key)
    if cached is not None:
        return cached

    result = [
        schemas.Transaction.model_validate(t).model_dump(mode="json")
        for t in crud.get_user_transactions(db, current_user.id, skip=skip, limit=limit)
    ]
    cache.set_cache(cache_key, result, ttl=cache.LIST_CACHE_TTL)
    return result


@app.get("/transactions/report")
def get_transaction_report(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    status: Optional[str] = None,
    type: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.get_current_user)
):
    """
    Summarize the current user's transactions.

    Returns:
        dict: Totals, status summary, breakdown by type and month, points earned, transactions
    """
    return reports.generate_report(
        db, current_user.id, start_date=start_date, end_date=end_date, status=status, type=type
    )


@app.get("/transactions/{transaction_id}", response_model=schemas.Transaction)
def get_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.get_current_user)
):
    """Get a transaction with its details (owner or admin)."""
    transaction = crud.get_transaction(db, transaction_id)
    if transaction is None:
        raise errors.NotFoundError("Transaction", transaction_id)
    auth.authorize_owner(current_user, transaction.user_id, "transaction")
    return transaction


@app.get("/transactions/{transaction_id}/points", response_model=schemas.TransactionPoints)
def get_transaction_points(
    transaction_id: int,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.get_current_user)
):
    """Get the points a transaction credited (owner or admin). Refunds credit none."""
    transaction = crud.get_transaction(db, transaction_id)
    if transaction is None:
        raise errors.NotFoundError("Transaction", transaction_id)
    auth.authorize_owner(current_user, transaction.user_id, "transaction")

    return schemas.TransactionPoints(
        transaction_id=transaction.id,
        transaction_number=transaction.transaction_number,
        points_earned=transaction.points_earned,
    )


@app.post("/transactions/refund", response_model=schemas.Transaction, status_code=status.HTTP_201_CREATED)
def refund_order(
    refund: schemas.RefundRequest,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.get_current_user)
):
    """
    Refund a paid order (owner or admin).

    Raises:
        HTTPException: 403 if not authorized
        400 (refund_rejected): If the order is unpaid or the amount exceeds the refundable balance
        404 (not_found): If the order or its payment does not exist
    """
    db_order = crud.get_order(db, refund.order_id)
    if db_order is None:
        raise errors.NotFoundError("Order", refund.order_id)
    auth.authorize_owner(current_user, db_order.user_id, "order")

    return refunds.process_refund(
        db, refund.order_id, refund.amount, refund.reason,
        policy=validators.validate_refund_request
    )


@app.get("/users/me/points", response_model=schemas.PointsBalance)
def get_my_points(
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.get_current_user)
):
    """Get the current user's point balance and lifetime points earned."""
    return schemas.PointsBalance(
        user_id=current_user.id,
        points=points.get_user_points(db, current_user.id),
        points_earned=points.get_user_points_earned(db, current_user.id),
    )
