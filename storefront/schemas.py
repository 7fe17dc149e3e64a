"""
Pydantic schemas for request/response validation in the Storefront service.

These schemas define the structure of data for API requests and responses,
and the read-only cart snapshot consumed when an order is created.
"""
from datetime import datetime
from typing import Dict, List, Literal, Optional
from decimal import Decimal
from pydantic import BaseModel, Field

OrderStatusLiteral = Literal["pending", "processing", "shipped", "delivered", "cancelled"]


class CartItemCreate(BaseModel):
    """Schema for adding a product to the cart."""
    product_id: int
    quantity: int = Field(..., gt=0, description="Quantity to add")
    price: Decimal = Field(..., ge=0, description="Price per unit at time of adding")


class CartItemUpdate(BaseModel):
    quantity: int = Field(..., gt=0, description="New quantity")


class CartLine(BaseModel):
    """Immutable snapshot of one cart line as read at order-creation time."""
    id: int
    product_id: int
    quantity: int
    price: Decimal

    class Config:
        from_attributes = True
        frozen = True


class ShippingDetails(BaseModel):
    """Shipping destination for an order."""
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zip: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)


class OrderCreate(BaseModel):
    """Schema for checking out the current user's cart."""
    shipping: ShippingDetails
    payment_method: str = Field(..., min_length=1, description="Payment method tag, e.g. 'bank_transfer'")


class OrderStatusUpdate(BaseModel):
    status: OrderStatusLiteral


class PaymentDetails(BaseModel):
    """Schema for paying an order."""
    reference: Optional[str] = Field(None, description="External gateway reference")
    details: Optional[Dict[str, str]] = Field(None, description="Gateway metadata stored as transaction details")


class RefundRequest(BaseModel):
    order_id: int
    amount: Decimal = Field(..., gt=0, description="Amount to refund")
    reason: str = Field(..., min_length=1)


class OrderItem(BaseModel):
    """Schema for an order line item."""
    id: int
    product_id: int
    quantity: int
    unit_price: Decimal
    total_price: Decimal

    class Config:
        from_attributes = True


class Order(BaseModel):
    """
    Schema for order responses, includes all database fields.

    Attributes:
        id (int): Order's unique identifier
        order_number (str): Human-readable order number
        user_id (int): ID of the user who placed the order
        status (str): Order status
        total_amount (Decimal): Item totals plus shipping
        is_paid / paid_at: Payment flags
        is_delivered / delivered_at: Delivery flags
    """
    id: int
    order_number: str
    user_id: int
    status: str
    total_amount: Decimal
    shipping_price: Decimal
    shipping_address: str
    shipping_city: str
    shipping_state: str
    shipping_zip: str
    shipping_country: str
    payment_method: str
    is_paid: bool
    paid_at: Optional[datetime] = None
    is_delivered: bool
    delivered_at: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class OrderDetail(Order):
    """Order together with its line items."""
    items: List[OrderItem] = Field(default_factory=list)


class TransactionDetail(BaseModel):
    key: str
    value: Optional[str] = None

    class Config:
        from_attributes = True


class Transaction(BaseModel):
    """
    Schema for transaction responses.

    Attributes:
        transaction_number (str): Unique number ("TRX-..." for payments, "REF-..." for refunds)
        type (str): payment or refund
        amount (Decimal): Amount charged or returned
        points_earned (int): Loyalty points credited, zero for refunds
        details (List[TransactionDetail]): Key/value audit entries
    """
    id: int
    transaction_number: str
    user_id: int
    order_id: Optional[int] = None
    type: str
    amount: Decimal
    payment_method: str
    status: str
    currency: str
    points_earned: int
    notes: Optional[str] = None
    external_reference: Optional[str] = None
    created_at: datetime
    details: List[TransactionDetail] = Field(default_factory=list)

    class Config:
        from_attributes = True


class PointsBalance(BaseModel):
    user_id: int
    points: int
    points_earned: int


class OrderEvent(BaseModel):
    """
    Schema for order timeline events.

    Attributes:
        id (int): Event ID
        order_id (int): Order identifier
        event_type (str): Type of event (created, status_changed, paid, refunded, deleted)
        description (str): Human-readable event description
        old_value (str): Previous value (optional)
        new_value (str): New value (optional)
        user_id (int): User the event concerns (optional)
        created_at (datetime): When the event occurred
    """
    id: int
    order_id: int
    event_type: str
    description: str
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    user_id: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True


class TransactionPoints(BaseModel):
    """Points credited by a single transaction."""
    transaction_id: int
    transaction_number: str
    points_earned: int
