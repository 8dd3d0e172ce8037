"""
Post-capture webhook notification.

The webhook is told that a capture finished (metadata only, never the image)
after the capture pipeline has already returned. Delivery is fire-and-forget.
"""

import asyncio
import logging
from datetime import datetime, timezone

import httpx

from pagecapture.config import get_settings
from pagecapture.models import CapturedImage

logger = logging.getLogger(__name__)

# Strong references so pending deliveries aren't garbage collected
_pending: set = set()


def capture_payload(url: str, image: CapturedImage) -> dict:
    return {
        "url": url,
        "format": image.format,
        "width": image.width,
        "height": image.height,
        "bytes": len(image.data),
        "captured_at": datetime.now(timezone.utc).isoformat(),
    }


async def deliver(webhook_url: str, payload: dict, timeout: float) -> bool:
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            resp = await client.post(webhook_url, json=payload)
            resp.raise_for_status()
        return True
    except httpx.HTTPError as e:
        logger.warning("[webhook] Delivery to %s failed: %s", webhook_url, e)
        return False


def notify_capture(url: str, image: CapturedImage):
    """Schedule delivery if a webhook is configured. Returns the task or None."""
    settings = get_settings()
    if not settings.webhook_url:
        return None
    task = asyncio.create_task(
        deliver(settings.webhook_url, capture_payload(url, image), settings.webhook_timeout)
    )
    _pending.add(task)
    task.add_done_callback(_pending.discard)
    return task


async def drain(timeout: float = 5.0):
    """Wait for in-flight deliveries (used on shutdown)."""
    if _pending:
        await asyncio.wait(list(_pending), timeout=timeout)
