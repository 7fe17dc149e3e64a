"""
Redis caching utilities for the Storefront service.

Holds short-lived read views (order pages, order details) and the
subscriber that drops them once a write has committed.
"""
import os
import json
import logging
from typing import Optional, Any, Dict
import redis

from . import events

logger = logging.getLogger(__name__)

# Initialize Redis client
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
redis_client = redis.from_url(REDIS_URL, decode_responses=True)

# Cache TTLs (in seconds)
ORDER_CACHE_TTL = 300  # 5 minutes
LIST_CACHE_TTL = 120  # 2 minutes


def order_key(order_id: int) -> str:
    return f"orders:id:{order_id}"


def user_orders_key(user_id: int, skip: int, limit: int) -> str:
    return f"orders:user:{user_id}:page:{skip}:{limit}"


def user_transactions_key(user_id: int, skip: int, limit: int) -> str:
    return f"transactions:user:{user_id}:page:{skip}:{limit}"


def user_cart_key(user_id: int) -> str:
    return f"carts:user:{user_id}"


def get_cache(key: str) -> Optional[Any]:
    """
    Get a value from Redis cache.

    Args:
        key: Cache key

    Returns:
        Cached value or None if not found
    """
    try:
        value = redis_client.get(key)
        if value:
            return json.loads(value)
        return None
    except redis.RedisError as e:
        logger.warning(f"Cache get error for '{key}': {e}")
        return None


def set_cache(key: str, value: Any, ttl: int = ORDER_CACHE_TTL) -> bool:
    """
    Set a value in Redis cache with TTL.

    Args:
        key: Cache key
        value: Value to cache (will be JSON serialized)
        ttl: Time to live in seconds

    Returns:
        True if successful, False otherwise
    """
    try:
        redis_client.setex(key, ttl, json.dumps(value))
        return True
    except redis.RedisError as e:
        logger.warning(f"Cache set error for '{key}': {e}")
        return False


def delete_cache(key: str) -> bool:
    """
    Delete a key from Redis cache.

    Returns:
        True if successful, False otherwise
    """
    try:
        redis_client.delete(key)
        return True
    except redis.RedisError as e:
        logger.warning(f"Cache delete error for '{key}': {e}")
        return False


def delete_pattern(pattern: str) -> bool:
    """
    Delete all keys matching a pattern.

    Args:
        pattern: Pattern to match (e.g., "orders:user:7:*")

    Returns:
        True if successful, False otherwise
    """
    try:
        keys = list(redis_client.scan_iter(match=pattern))
        if keys:
            redis_client.delete(*keys)
        return True
    except redis.RedisError as e:
        logger.warning(f"Cache delete pattern error for '{pattern}': {e}")
        return False


def invalidate_order_views(event_type: str, payload: Dict[str, Any]) -> None:
    """
    Drop every cached view a committed order change makes stale.

    Args:
        event_type: Order event that was published
        payload: Event data, must contain order_id and user_id
    """
    user_id = payload["user_id"]
    delete_cache(order_key(payload["order_id"]))
    delete_pattern(f"orders:user:{user_id}:*")

    if event_type == events.ORDER_CREATED:
        delete_cache(user_cart_key(user_id))
    elif event_type in (events.ORDER_PAID, events.ORDER_REFUNDED):
        delete_pattern(f"transactions:user:{user_id}:*")


def register() -> None:
    """Subscribe cache invalidation to every order event."""
    for event_type in events.ORDER_EVENTS:
        events.subscribe(event_type, invalidate_order_views)
