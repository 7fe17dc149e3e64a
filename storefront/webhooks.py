"""
Webhook system for sending order event notifications.

Allows external systems to subscribe to order events (created, paid, refunded, etc.)
"""
import os
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Dict, Any, Optional
import httpx

from . import events

logger = logging.getLogger(__name__)

# Webhook URLs (in production, these would be stored in a database)
WEBHOOK_URLS = os.getenv("WEBHOOK_URLS", "").split(",")
WEBHOOK_URLS = [url.strip() for url in WEBHOOK_URLS if url.strip()]
TIMEOUT = 5.0  # seconds

MAX_WORKERS = 4

# Created by register(), drained by shutdown()
_executor: Optional[ThreadPoolExecutor] = None


def send_webhook(event_type: str, data: Dict[str, Any], client: Optional[httpx.Client] = None) -> None:
    """
    Send webhook notifications to all registered URLs.

    Args:
        event_type: Type of event (e.g., "order.created", "order.paid")
        data: Event data payload
        client: HTTP client to use (a short-lived one is created if omitted)
    """
    if not WEBHOOK_URLS:
        return

    payload = {
        "event": event_type,
        "data": data,
        "timestamp": datetime.utcnow().isoformat()
    }

    if client is not None:
        for url in WEBHOOK_URLS:
            send_single_webhook(client, url, payload)
        return

    with httpx.Client(timeout=TIMEOUT) as own_client:
        for url in WEBHOOK_URLS:
            send_single_webhook(own_client, url, payload)


def send_single_webhook(client: httpx.Client, url: str, payload: Dict[str, Any]) -> bool:
    """
    Send a webhook to a single URL.

    Args:
        client: HTTP client
        url: Webhook URL
        payload: Event payload

    Returns:
        True if the receiver accepted the event
    """
    try:
        response = client.post(
            url,
            json=payload,
            headers={"Content-Type": "application/json"}
        )

        if response.status_code >= 400:
            logger.warning(f"Webhook failed for {url}: HTTP {response.status_code}")
            return False
        return True
    except httpx.HTTPError as e:
        logger.warning(f"Webhook error for {url}: {e}")
        return False


def dispatch_webhook(event_type: str, data: Dict[str, Any]) -> None:
    """Deliver an event in the background so request handling never waits on receivers."""
    if WEBHOOK_URLS and _executor is not None:
        _executor.submit(send_webhook, event_type, data)


def register() -> None:
    """Start the delivery pool and subscribe webhook delivery to every order event."""
    global _executor
    if _executor is None:
        _executor = ThreadPoolExecutor(max_workers=MAX_WORKERS, thread_name_prefix="webhooks")
    for event_type in events.ORDER_EVENTS:
        events.subscribe(event_type, dispatch_webhook)


def shutdown() -> None:
    """Wait for queued deliveries to finish and stop the delivery pool."""
    global _executor
    if _executor is not None:
        _executor.shutdown(wait=True)
        _executor = None
        logger.info("Webhook delivery pool stopped")
