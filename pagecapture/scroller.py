"""
Adaptive top-to-bottom scroll that triggers lazy-loaded content.

Page height and the number of lazy sections are unknown up front, so the step
size and time budgets are derived from the measured page (see
``adaptive_budget``) and every step waits for the page to settle before moving
on. The scroll always ends back at the top.
"""

import logging
import math
import time
from dataclasses import dataclass

from pagecapture.config import get_settings
from pagecapture.models import ScrollMetrics
from pagecapture.stability import wait_for_quiescence

logger = logging.getLogger(__name__)

METRICS_JS = '''() => {
    const body = document.body;
    const root = document.documentElement;
    return {
        viewportHeight: window.innerHeight,
        documentHeight: Math.max(
            body ? body.scrollHeight : 0, root.scrollHeight,
            body ? body.offsetHeight : 0, root.offsetHeight,
            body ? body.clientHeight : 0, root.clientHeight,
        ),
        scrollTop: window.scrollY || root.scrollTop || 0,
    };
}'''

SCROLL_BY_JS = "(step) => window.scrollBy(0, step)"

SCROLL_TOP_JS = '''() => {
    window.scrollTo(0, 0);
    document.documentElement.scrollTop = 0;
    if (document.body) document.body.scrollTop = 0;
}'''

STEP_RATIO = 0.8
STABILITY_RATIO = 0.1


@dataclass
class ScrollBudget:
    max_timeout_ms: int
    scroll_step_px: int
    stability_timeout_ms: int


def adaptive_budget(metrics: ScrollMetrics, base_timeout_ms: int | None = None,
                    max_timeout_ms: int | None = None,
                    stability_cap_ms: int | None = None) -> ScrollBudget:
    """Scale the scroll budget with the number of screens the page spans."""
    settings = get_settings()
    base_timeout_ms = base_timeout_ms or settings.scroll_base_timeout
    max_timeout_ms = max_timeout_ms or settings.scroll_max_timeout
    stability_cap_ms = stability_cap_ms or settings.stability_max_timeout

    viewport = max(metrics.viewport_height, 1)
    screens = max(math.ceil(metrics.document_height / viewport), 1)
    adjusted = min(base_timeout_ms * screens, max_timeout_ms)
    return ScrollBudget(
        max_timeout_ms=adjusted,
        scroll_step_px=max(int(viewport * STEP_RATIO), 1),
        stability_timeout_ms=min(int(adjusted * STABILITY_RATIO), stability_cap_ms),
    )


async def read_metrics(page) -> ScrollMetrics:
    raw = await page.evaluate(METRICS_JS)
    return ScrollMetrics(
        viewport_height=int(raw["viewportHeight"]),
        document_height=int(raw["documentHeight"]),
        scroll_top=int(raw["scrollTop"]),
    )


async def scroll_to_top(page):
    await page.evaluate(SCROLL_TOP_JS)


async def scroll_to_bottom_and_back(page, max_timeout_ms: int, scroll_step_px: int,
                                    stability_timeout_ms: int) -> int:
    """
    Step down the page until the bottom is reached, the document stops
    growing, or ``max_timeout_ms`` runs out. Returns the number of steps.
    """
    settings = get_settings()
    stable_limit = settings.scroll_stable_iterations
    started = time.monotonic()
    steps = 0
    last_height = None
    unchanged = 0

    try:
        while (time.monotonic() - started) * 1000 < max_timeout_ms:
            metrics = await read_metrics(page)
            if metrics.at_bottom:
                logger.debug("[scroll] Reached bottom after %d steps", steps)
                break

            if metrics.document_height == last_height:
                unchanged += 1
                if unchanged >= stable_limit:
                    logger.info("[scroll] Height stable at %dpx for %d steps, stopping",
                                metrics.document_height, unchanged)
                    break
            else:
                unchanged = 0
            last_height = metrics.document_height

            await page.evaluate(SCROLL_BY_JS, scroll_step_px)
            steps += 1
            await wait_for_quiescence(page, stability_timeout_ms)
        else:
            logger.warning("[scroll] Scroll budget of %dms exhausted after %d steps",
                           max_timeout_ms, steps)
    finally:
        await scroll_to_top(page)
        await page.wait_for_timeout(settings.scroll_settle_delay)

    return steps
