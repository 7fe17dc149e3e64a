"""
User point ledger for the Storefront service.

Point balances are only ever changed by an in-database increment, so
concurrent credits for the same user cannot overwrite each other.
"""
from sqlalchemy import func, update
from sqlalchemy.orm import Session

from .. import models
from ..errors import NotFoundError


def add_points(db: Session, user_id: int, delta: int) -> models.User:
    """
    Credit points to a user as part of the current transaction.

    Args:
        db: Database session
        user_id: User to credit
        delta: Points to add

    Returns:
        The user with the refreshed balance

    Raises:
        NotFoundError: If the user does not exist
    """
    result = db.execute(
        update(models.User)
        .where(models.User.id == user_id)
        .values(points=models.User.points + delta)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFoundError("User", user_id)
    return db.get(models.User, user_id, populate_existing=True)


def get_user_points(db: Session, user_id: int) -> int:
    user = db.get(models.User, user_id)
    if user is None:
        raise NotFoundError("User", user_id)
    return user.points


def get_user_points_earned(db: Session, user_id: int) -> int:
    """Total points earned by a user across successful transactions."""
    total = db.query(func.coalesce(func.sum(models.Transaction.points_earned), 0)).filter(
        models.Transaction.user_id == user_id,
        models.Transaction.status == models.TransactionStatus.SUCCESS,
        models.Transaction.deleted_at.is_(None)
    ).scalar()
    return int(total)
