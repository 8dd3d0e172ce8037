"""
Capture pipeline: one browser, many short-lived pages.

``CaptureFlow`` walks a single request through
page setup -> widget suppression -> navigation (+ consent hook) ->
overlay neutralization -> lazy-load scroll -> screenshot -> restore -> close.
The page is always closed, whatever happened before. ``CaptureService`` owns
the Playwright driver, the browser, the filter-list blocker and the
concurrency cap shared by all flows.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

from playwright.async_api import async_playwright, TimeoutError as PlaywrightTimeoutError

from pagecapture import overlays, stability, widgets
from pagecapture.blocker import FilterListBlocker
from pagecapture.config import get_settings
from pagecapture.consent import ConsentDetector, build_detectors, handle_consent
from pagecapture.image_utils import screenshot_to_b64, to_captured_image
from pagecapture.models import BatchItem, CaptureRequest, CapturedImage, CaptureState
from pagecapture.scroller import adaptive_budget, read_metrics, scroll_to_bottom_and_back
from pagecapture.stability import wait_for_quiescence
from pagecapture.webhooks import notify_capture

try:
    from playwright_stealth import Stealth
    _stealth = Stealth()
except ImportError:
    _stealth = None

logger = logging.getLogger(__name__)

# Request wait conditions -> Playwright load states. Playwright has no
# "at most two connections" idle state, so networkidle2 loads first and then
# gives networkidle a bounded, best-effort wait.
NAVIGATION_WAITS = {
    "load": "load",
    "domcontentloaded": "domcontentloaded",
    "networkidle0": "networkidle",
    "networkidle2": "load",
}

CONSENT_GRACE = 5.0  # seconds on top of the classification budget for the opt-in


class CaptureError(RuntimeError):
    def __init__(self, url: str, message: str):
        super().__init__(message)
        self.url = url


class CaptureFlow:
    """One request, one page, strictly sequential."""

    def __init__(self, browser, request: CaptureRequest,
                 blocker: Optional[FilterListBlocker] = None,
                 detectors: Optional[list[ConsentDetector]] = None):
        self.browser = browser
        self.request = request
        self.url = str(request.url)
        self.blocker = blocker
        self.detectors = detectors or []
        self.settings = get_settings()
        self.state = CaptureState.IDLE
        self.context = None
        self.page = None
        self._dispose_widgets = None
        self._consent_task: Optional[asyncio.Task] = None
        self._neutralized = False

    def _advance(self, state: CaptureState):
        logger.debug("[capture] %s: %s -> %s", self.url, self.state.value, state.value)
        self.state = state

    async def run(self) -> CapturedImage:
        try:
            await self._open_page()
            await self._suppress()
            await self._navigate()
            await self._prepare()
            image = await self._capture()
            await self._restore()
            return image
        except Exception as e:
            self._advance(CaptureState.FAILED)
            logger.error("[capture] Screenshot failed for %s: %s", self.url, e)
            raise CaptureError(self.url, f"Screenshot failed for {self.url}: {e}") from e
        finally:
            await self._close()

    # ── Stages ──────────────────────────────────────────────────────────────

    async def _open_page(self):
        req = self.request
        self.context = await self.browser.new_context(
            viewport={"width": req.width, "height": req.height},
            user_agent=self.settings.user_agent,
        )
        self.page = await self.context.new_page()
        self.page.set_default_timeout(req.timeout)
        self.page.set_default_navigation_timeout(req.timeout)
        stability.track_requests(self.page)

        # Apply stealth to avoid bot detection
        if _stealth:
            await _stealth.apply_stealth_async(self.page)
        if self.blocker:
            await self.blocker.enable_blocking_in_page(self.page)
        self._advance(CaptureState.PAGE_READY)

    async def _suppress(self):
        self._dispose_widgets = await widgets.suppress(self.page)
        self._advance(CaptureState.SUPPRESSED)

    def _on_load(self, _page=None):
        # Fired once; runs alongside navigation and never blocks it
        if self._consent_task is None and self.detectors:
            self._consent_task = asyncio.create_task(
                handle_consent(self.page, self.url, self.detectors)
            )

    async def _navigate(self):
        req = self.request
        self.page.once("load", self._on_load)
        await self.page.goto(self.url, wait_until=NAVIGATION_WAITS[req.wait_until],
                             timeout=req.timeout)

        if req.wait_until == "networkidle2":
            try:
                await self.page.wait_for_load_state(
                    "networkidle",
                    timeout=min(self.settings.relaxed_idle_timeout, req.timeout),
                )
            except PlaywrightTimeoutError:
                logger.debug("[capture] %s never reached network idle, continuing", self.url)
        self._advance(CaptureState.NAVIGATED)

    async def _start_consent(self):
        """Make sure the consent hook has started once ``load`` fires, even
        when navigation returned before it (domcontentloaded, slow subresources)."""
        if self._consent_task is not None or not self.detectors:
            return
        try:
            await self.page.wait_for_load_state(
                "load", timeout=self.settings.consent_timeout * 1000
            )
        except PlaywrightTimeoutError:
            logger.warning("[consent] %s never fired load, skipping consent handling", self.url)
            return
        self._on_load()

    async def _await_consent(self):
        task = self._consent_task
        if task is None or task.done():
            return
        try:
            await asyncio.wait_for(task, timeout=self.settings.consent_timeout + CONSENT_GRACE)
        except asyncio.TimeoutError:
            logger.warning("[consent] Consent handling timed out for %s, continuing", self.url)

    async def _prepare(self):
        await self._start_consent()
        await self._await_consent()
        await overlays.neutralize(self.page)
        self._neutralized = True
        # Let animations triggered by the neutralization itself finish
        await self.page.wait_for_timeout(self.settings.neutralize_settle_delay)
        self._advance(CaptureState.PREPARED)

    async def _capture(self) -> CapturedImage:
        req = self.request
        if req.full_page:
            metrics = await read_metrics(self.page)
            budget = adaptive_budget(metrics)
            logger.info(
                "[capture] %s is %dpx tall (viewport %dpx), scroll budget %dms",
                self.url, metrics.document_height, metrics.viewport_height, budget.max_timeout_ms,
            )
            await scroll_to_bottom_and_back(
                self.page,
                max_timeout_ms=budget.max_timeout_ms,
                scroll_step_px=budget.scroll_step_px,
                stability_timeout_ms=budget.stability_timeout_ms,
            )
            await wait_for_quiescence(self.page, self.settings.final_quiescence_timeout)

        # A load that arrived during the scroll may have started the hook late
        await self._await_consent()
        await self._stop_widget_observer()
        data = await self.page.screenshot(**req.screenshot_options())
        image = to_captured_image(data, req.format)
        self._advance(CaptureState.CAPTURED)
        return image

    async def _restore(self):
        if self._neutralized:
            self._neutralized = False
            await overlays.restore(self.page)
        self._advance(CaptureState.RESTORED)

    async def _stop_widget_observer(self):
        if self._dispose_widgets is not None:
            dispose, self._dispose_widgets = self._dispose_widgets, None
            await dispose()

    async def _close(self):
        if self._consent_task is not None and not self._consent_task.done():
            self._consent_task.cancel()

        if self.page is not None and not self.page.is_closed():
            # Failure path: put the page back the way we found it before closing
            if self._neutralized:
                self._neutralized = False
                try:
                    await overlays.restore(self.page)
                except Exception as e:
                    logger.warning("[overlays] Restore failed for %s: %s", self.url, e)
            await self._stop_widget_observer()

        if self.context is not None:
            try:
                await self.context.close()
            except Exception as e:
                logger.warning("[capture] Failed to close page for %s: %s", self.url, e)
        if self.state is not CaptureState.FAILED:
            self._advance(CaptureState.CLOSED)


class CaptureService:
    """
    Lifecycle:
        - ``start()`` launches the browser and compiles the blocker (lazy, on first capture)
        - ``take_screenshot()`` / ``take_batch()`` capture
        - ``stop()`` releases the browser (call on shutdown)
    """

    def __init__(self, settings=None, detectors: Optional[list[ConsentDetector]] = None):
        self.settings = settings or get_settings()
        self.detectors = build_detectors() if detectors is None else detectors
        self._playwright = None
        self._browser = None
        self._blocker: Optional[FilterListBlocker] = None
        self._blocker_loaded = False
        self._lock = asyncio.Lock()
        self._pages = asyncio.Semaphore(self.settings.max_concurrent_pages)

    @property
    def running(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    async def start(self):
        async with self._lock:
            if self.running:
                return

            if not self._blocker_loaded:
                self._blocker_loaded = True
                try:
                    self._blocker = await FilterListBlocker.from_lists(self.settings.blocklist_urls)
                except Exception as e:
                    logger.warning("[blocker] Blocker initialization failed: %s", e)

            try:
                if self._playwright is None:
                    self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(
                    headless=self.settings.headless,
                    args=self.settings.browser_args,
                )
            except Exception as e:
                logger.error("[capture] Browser initialization failed: %s", e)
                await self._release()
                raise CaptureError("", "Failed to initialize screenshot service") from e
            logger.info("[capture] Browser started (max %d concurrent pages)",
                        self.settings.max_concurrent_pages)

    async def _release(self):
        if self._browser is not None:
            try:
                await self._browser.close()
            except Exception as e:
                logger.warning("[capture] Browser close failed: %s", e)
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

    async def stop(self):
        async with self._lock:
            await self._release()
        logger.info("[capture] Screenshot service stopped")

    async def take_screenshot(self, request: CaptureRequest) -> CapturedImage:
        await self.start()
        url = str(request.url)
        logger.info("[capture] Taking screenshot of %s...", url)

        async with self._pages:
            flow = CaptureFlow(self._browser, request, self._blocker, self.detectors)
            image = await flow.run()

        logger.info("[capture] Captured %s: %dx%d %s (%d bytes)",
                    url, image.width, image.height, image.format, len(image.data))

        if request.output_path:
            try:
                await asyncio.to_thread(Path(request.output_path).write_bytes, image.data)
            except OSError as e:
                raise CaptureError(url, f"Failed to write {request.output_path}: {e}") from e
            logger.info("[capture] Screenshot saved to %s", request.output_path)

        notify_capture(url, image)
        return image

    async def take_batch(self, requests: list[CaptureRequest]) -> list[BatchItem]:
        """Capture independently; one failure never fails the batch."""
        results = await asyncio.gather(
            *(self.take_screenshot(r) for r in requests),
            return_exceptions=True,
        )
        items = []
        for request, result in zip(requests, results):
            if isinstance(result, CapturedImage):
                items.append(BatchItem(url=str(request.url), success=True,
                                       data=screenshot_to_b64(result.data)))
            else:
                items.append(BatchItem(url=str(request.url), success=False,
                                       error=str(result) or type(result).__name__))
        return items
