"""
SQLAlchemy ORM models for the Storefront service.

Defines the database schema for users, carts, orders, order items,
transactions, transaction details and the order timeline.
"""
from datetime import datetime
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import relationship
from .database import Base


class OrderStatus:
    """Status constants for the orders.status column."""
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    ALL = (PENDING, PROCESSING, SHIPPED, DELIVERED, CANCELLED)


class TransactionType:
    """Type constants for the transactions.type column."""
    PAYMENT = "payment"
    REFUND = "refund"

    ALL = (PAYMENT, REFUND)


class TransactionStatus:
    """Status constants for the transactions.status column."""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELED = "canceled"

    ALL = (PENDING, SUCCESS, FAILED, CANCELED)


class User(Base):
    """
    User model holding the loyalty point balance.

    Attributes:
        id (int): Primary key, auto-incremented user ID
        name (str): User's full name
        email (str): User's email address (unique)
        role (str): User role (admin, merchant, customer)
        points (int): Running loyalty point balance
        created_at (datetime): Timestamp when the user was created
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    role = Column(String, default="customer", nullable=False)
    points = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class CartItem(Base):
    """
    A line in a user's cart, priced at the moment the product was added.

    Attributes:
        id (int): Primary key
        user_id (int): Owner of the cart line
        product_id (int): Product reference
        quantity (int): Number of units
        price (Decimal): Unit price at the time of adding
    """
    __tablename__ = "carts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    product_id = Column(Integer, nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    price = Column(Numeric(15, 2), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Order(Base):
    """
    Order model representing a confirmed purchase built from a cart.

    Attributes:
        id (int): Primary key
        order_number (str): Human-readable unique number (e.g. "ORD-<uuid>")
        user_id (int): ID of the user who placed the order
        status (str): One of OrderStatus.ALL
        total_amount (Decimal): Sum of item totals plus shipping_price
        shipping_price (Decimal): Shipping charge applied at creation
        payment_method (str): Payment method tag chosen by the customer
        is_paid / paid_at: Payment flags, paid_at is set iff is_paid
        is_delivered / delivered_at: Delivery flags, only while status is delivered
        deleted_at (datetime): Soft-deletion marker
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String, unique=True, index=True, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String, nullable=False, default=OrderStatus.PENDING)
    total_amount = Column(Numeric(15, 2), nullable=False, default=0)
    shipping_price = Column(Numeric(15, 2), nullable=False, default=0)
    shipping_address = Column(String, nullable=False)
    shipping_city = Column(String, nullable=False)
    shipping_state = Column(String, nullable=False)
    shipping_zip = Column(String, nullable=False)
    shipping_country = Column(String, nullable=False)
    payment_method = Column(String, nullable=False)
    is_paid = Column(Boolean, default=False, nullable=False)
    paid_at = Column(DateTime, nullable=True)
    is_delivered = Column(Boolean, default=False, nullable=False)
    delivered_at = Column(DateTime, nullable=True)
    deleted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User")
    items = relationship("OrderItem", back_populates="order", order_by="OrderItem.id")
    transactions = relationship("Transaction", back_populates="order", order_by="Transaction.id")


class OrderItem(Base):
    """
    A line of an order. Prices are copied from the cart and never recomputed.

    Attributes:
        order_id (int): Owning order
        product_id (int): Product reference (snapshot, not a live link)
        quantity (int): Units ordered
        unit_price (Decimal): Price per unit at order creation
        total_price (Decimal): unit_price * quantity
    """
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(Integer, nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(15, 2), nullable=False)
    total_price = Column(Numeric(15, 2), nullable=False)
    deleted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    order = relationship("Order", back_populates="items")


_SUCCESSFUL_PAYMENT = "type = 'payment' AND status = 'success' AND deleted_at IS NULL"


class Transaction(Base):
    """
    A financial event (payment or refund) tied to an order and a user.

    At most one successful payment may exist per order; the partial unique
    index below enforces it in the store.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        Index(
            "uq_transactions_successful_payment",
            "order_id",
            unique=True,
            postgresql_where=text(_SUCCESSFUL_PAYMENT),
            sqlite_where=text(_SUCCESSFUL_PAYMENT),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    transaction_number = Column(String, unique=True, index=True, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True, index=True)
    type = Column(String, nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)
    payment_method = Column(String, nullable=False)
    status = Column(String, nullable=False, default=TransactionStatus.PENDING)
    currency = Column(String, nullable=False, default="IDR")
    points_earned = Column(Integer, nullable=False, default=0)
    notes = Column(Text, nullable=True)
    external_reference = Column(String, nullable=True)
    deleted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User")
    order = relationship("Order", back_populates="transactions")
    details = relationship("TransactionDetail", back_populates="transaction", order_by="TransactionDetail.id")


class TransactionDetail(Base):
    """Arbitrary key/value metadata appended to a transaction."""
    __tablename__ = "transaction_details"

    id = Column(Integer, primary_key=True, index=True)
    transaction_id = Column(Integer, ForeignKey("transactions.id"), nullable=False, index=True)
    key = Column(String, nullable=False)
    value = Column(Text, nullable=True)
    deleted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    transaction = relationship("Transaction", back_populates="details")


class OrderEvent(Base):
    """
    OrderEvent model representing historical events in an order's lifecycle.

    Attributes:
        id (int): Primary key, auto-incrementing event ID
        order_id (int): Foreign key to the order
        event_type (str): Type of event (e.g., "created", "status_changed", "paid")
        description (str): Human-readable description of the event
        old_value (str): Previous value (for changes, optional)
        new_value (str): New value (for changes, optional)
        user_id (int): ID of the user the event concerns (optional)
        created_at (datetime): Timestamp when the event occurred
    """
    __tablename__ = "order_events"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    event_type = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    old_value = Column(String, nullable=True)
    new_value = Column(String, nullable=True)
    user_id = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
