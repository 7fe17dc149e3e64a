"""
Post-commit event hooks for order lifecycle changes.

Engines queue events on the session while they work; the events are only
published once the surrounding transaction commits, and dropped if it rolls
back. Subscribers (cache invalidation, webhooks) never run against
uncommitted state.
"""
import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List, Tuple

from sqlalchemy import event
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

ORDER_CREATED = "order.created"
ORDER_STATUS_CHANGED = "order.status_changed"
ORDER_PAID = "order.paid"
ORDER_REFUNDED = "order.refunded"
ORDER_DELETED = "order.deleted"

ORDER_EVENTS = (ORDER_CREATED, ORDER_STATUS_CHANGED, ORDER_PAID, ORDER_REFUNDED, ORDER_DELETED)

Handler = Callable[[str, Dict[str, Any]], None]

_PENDING_KEY = "storefront.pending_events"
_subscribers: Dict[str, List[Handler]] = defaultdict(list)


def subscribe(event_type: str, handler: Handler) -> None:
    """
    Register a handler for an event type.

    Args:
        event_type: One of ORDER_EVENTS
        handler: Callable receiving (event_type, payload)
    """
    if handler not in _subscribers[event_type]:
        _subscribers[event_type].append(handler)


def clear_subscribers() -> None:
    _subscribers.clear()


def queue(db: Session, event_type: str, payload: Dict[str, Any]) -> None:
    """
    Queue an event to be published after the session's transaction commits.

    Args:
        db: Session the surrounding unit of work runs in
        event_type: One of ORDER_EVENTS
        payload: JSON-serializable event data
    """
    pending: List[Tuple[str, Dict[str, Any]]] = db.info.setdefault(_PENDING_KEY, [])
    pending.append((event_type, payload))


def publish(event_type: str, payload: Dict[str, Any]) -> None:
    """
    Deliver an event to every subscriber.

    A failing subscriber is logged and skipped; the data it reacts to is
    already committed.
    """
    for handler in list(_subscribers.get(event_type, ())):
        try:
            handler(event_type, payload)
        except Exception:
            logger.exception(f"Subscriber {handler!r} failed for event '{event_type}'")


@event.listens_for(Session, "after_commit")
def _publish_pending(session: Session) -> None:
    pending = session.info.pop(_PENDING_KEY, [])
    for event_type, payload in pending:
        logger.debug(f"Publishing {event_type}: {payload}")
        publish(event_type, payload)


@event.listens_for(Session, "after_rollback")
def _discard_pending(session: Session) -> None:
    session.info.pop(_PENDING_KEY, None)
