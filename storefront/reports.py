"""
Transaction reporting for a single user.
"""
from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Optional
from sqlalchemy.orm import Session, selectinload

from . import models


def generate_report(
    db: Session,
    user_id: int,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    status: Optional[str] = None,
    type: Optional[str] = None
) -> dict:
    """
    Summarize a user's transactions.

    Args:
        db: Database session
        user_id: Owner of the transactions
        start_date: Only include transactions created at or after this time
        end_date: Only include transactions created at or before this time
        status: Only include transactions with this status
        type: Only include payments or refunds

    Returns:
        dict: Totals, status summary, breakdown by type and month, points
        earned and the matching transactions (amounts as strings)
    """
    query = db.query(models.Transaction).options(
        selectinload(models.Transaction.order)
    ).filter(
        models.Transaction.user_id == user_id,
        models.Transaction.deleted_at.is_(None)
    )

    if start_date is not None:
        query = query.filter(models.Transaction.created_at >= start_date)
    if end_date is not None:
        query = query.filter(models.Transaction.created_at <= end_date)
    if status is not None:
        query = query.filter(models.Transaction.status == status)
    if type is not None:
        query = query.filter(models.Transaction.type == type)

    transactions = query.order_by(models.Transaction.created_at.desc(), models.Transaction.id.desc()).all()

    status_summary = {s: 0 for s in models.TransactionStatus.ALL}
    by_type = defaultdict(lambda: {"count": 0, "amount": Decimal("0")})
    by_month = defaultdict(lambda: {"count": 0, "amount": Decimal("0")})
    total_amount = Decimal("0")

    for transaction in transactions:
        amount = Decimal(transaction.amount)
        total_amount += amount
        if transaction.status in status_summary:
            status_summary[transaction.status] += 1

        by_type[transaction.type]["count"] += 1
        by_type[transaction.type]["amount"] += amount

        month = transaction.created_at.strftime("%Y-%m")
        by_month[month]["count"] += 1
        by_month[month]["amount"] += amount

    return {
        "total_transactions": len(transactions),
        "total_amount": str(total_amount),
        "status_summary": status_summary,
        "by_type": {k: {"count": v["count"], "amount": str(v["amount"])} for k, v in by_type.items()},
        "by_month": {k: {"count": v["count"], "amount": str(v["amount"])} for k, v in by_month.items()},
        "points_earned": sum(t.points_earned for t in transactions),
        "transactions": [
            {
                "id": t.id,
                "transaction_number": t.transaction_number,
                "type": t.type,
                "amount": str(t.amount),
                "status": t.status,
                "points_earned": t.points_earned,
                "date": t.created_at.isoformat(),
                "order_number": t.order.order_number if t.order else None,
            }
            for t in transactions
        ],
    }
