"""
Lazy-load quiescence detection.

A page is considered settled when its image and iframe counts stop changing
and no request it issued is still in flight. Two back-to-back samples can
both land in a short lull, so a stable reading is only trusted once a second,
delayed sample agrees with it.

In-flight requests are counted on the host from Playwright's request events:
the page's Resource Timing buffer only receives an entry once a fetch has
completed, so it cannot see a request that is still loading.
"""

import logging
import time
import weakref

from pagecapture.config import get_settings
from pagecapture.models import StabilitySample

logger = logging.getLogger(__name__)

SAMPLE_JS = '''() => ({
    images: document.images.length,
    iframes: document.querySelectorAll('iframe').length,
})'''


class RequestTracker:
    """Requests issued by one page that have neither finished nor failed."""

    def __init__(self):
        self._in_flight = set()

    @property
    def pending(self) -> int:
        return len(self._in_flight)

    def started(self, request):
        self._in_flight.add(request)

    def settled(self, request):
        self._in_flight.discard(request)


_trackers: "weakref.WeakKeyDictionary" = weakref.WeakKeyDictionary()


def track_requests(page) -> RequestTracker:
    """Start counting the page's in-flight requests. Idempotent per page."""
    tracker = _trackers.get(page)
    if tracker is None:
        tracker = RequestTracker()
        page.on("request", tracker.started)
        page.on("requestfinished", tracker.settled)
        page.on("requestfailed", tracker.settled)
        _trackers[page] = tracker
    return tracker


async def sample(page) -> StabilitySample:
    raw = await page.evaluate(SAMPLE_JS)
    tracker = _trackers.get(page)
    return StabilitySample(
        images=int(raw["images"]),
        iframes=int(raw["iframes"]),
        pending=tracker.pending if tracker is not None else 0,
    )


async def wait_for_quiescence(page, timeout_ms: int) -> bool:
    """
    Poll until the page is quiescent or ``timeout_ms`` elapses.
    Returns True on quiescence, False on timeout. Never raises.
    """
    settings = get_settings()
    poll_ms = settings.stability_poll_interval
    confirm_ms = settings.stability_confirm_delay
    deadline = time.monotonic() + timeout_ms / 1000

    try:
        previous = await sample(page)
        while time.monotonic() < deadline:
            await page.wait_for_timeout(poll_ms)
            current = await sample(page)

            if current.matches(previous) and current.quiet:
                await page.wait_for_timeout(confirm_ms)
                confirm = await sample(page)
                if confirm.matches(current) and confirm.quiet:
                    return True
                current = confirm

            previous = current
    except Exception as e:
        logger.warning("[stability] Sampling failed, giving up on quiescence: %s", e)
        return False

    logger.warning("[stability] Page not quiescent after %dms, continuing", timeout_ms)
    return False
