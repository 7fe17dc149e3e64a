"""
Business rule checks the request handlers hand to the core.

These return (is_valid, error_message) tuples. validate_refund_request is
passed to refunds.process_refund as its policy, so it runs under the same
row lock as the refund it guards.
"""
from decimal import Decimal
from typing import Tuple
from . import models


def validate_refund_request(order: models.Order, amount: Decimal, refunded_so_far: Decimal) -> Tuple[bool, str]:
    """
    Check that a refund may be issued for an order.

    Partial refunds may be repeated until their sum reaches the order total.

    Args:
        order: Order being refunded
        amount: Requested refund amount
        refunded_so_far: Sum of successful refunds already recorded

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not order.is_paid:
        return False, "This order has not been paid yet"

    if amount <= 0:
        return False, "Refund amount must be positive"

    remaining = Decimal(order.total_amount) - Decimal(refunded_so_far)
    if amount > remaining:
        return False, f"Refund amount {amount} exceeds refundable balance {remaining}"

    return True, ""
