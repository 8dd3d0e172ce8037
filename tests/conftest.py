import io

import pytest
from PIL import Image

from pagecapture import overlays, scroller, stability, widgets
from pagecapture.config import get_settings


class FakeClock:
    """Virtual time, advanced by the fake pages instead of real sleeps."""

    def __init__(self):
        self.now = 0.0

    def monotonic(self):
        return self.now

    def advance_ms(self, ms):
        self.now += ms / 1000


@pytest.fixture
def clock(monkeypatch):
    fake = FakeClock()
    monkeypatch.setattr(stability, "time", fake)
    monkeypatch.setattr(scroller, "time", fake)
    return fake


@pytest.fixture
def settings():
    return get_settings()


def png_bytes(width=4, height=3) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), (255, 255, 255)).save(buf, format="PNG")
    return buf.getvalue()


class FakeRequest:
    def __init__(self, url, resource_type="script"):
        self.url = url
        self.resource_type = resource_type


class FakeRoute:
    def __init__(self, url, abort_error=None, continue_errors=()):
        self.request = FakeRequest(url)
        self.calls = []
        self.abort_error = abort_error
        self.continue_errors = list(continue_errors)

    async def abort(self):
        self.calls.append("abort")
        if self.abort_error:
            raise self.abort_error

    async def continue_(self):
        self.calls.append("continue")
        if self.continue_errors:
            raise self.continue_errors.pop(0)


class FakePage:
    """
    Scripted stand-in for a Playwright page. ``evaluate`` dispatches on the
    module-level script constants; everything advances the (optional) clock.
    """

    def __init__(self, clock=None, viewport_height=1000, document_height=1000,
                 grow_per_step=0, scroll_locked=False, samples=None):
        self.clock = clock
        self.viewport_height = viewport_height
        self.document_height = document_height
        self.grow_per_step = grow_per_step
        self.scroll_locked = scroll_locked
        self.scroll_top = 0
        self.samples = samples
        self.sample_count = 0
        self.evaluated = []
        self.init_scripts = []
        self.routes = []
        self.handlers = {}
        self.top_at = None
        self.closed = False
        self.fail_on = set()
        self.url = "https://example.com/"
        self.child_frames = []
        self.events = {}

    @property
    def frames(self):
        return [self, *self.child_frames]

    def on(self, event, handler):
        self.events.setdefault(event, []).append(handler)

    def emit(self, event, arg):
        for handler in list(self.events.get(event, ())):
            handler(arg)

    def _tick(self, ms=1):
        if self.clock is not None:
            self.clock.advance_ms(ms)

    async def wait_for_timeout(self, ms):
        self._tick(ms)

    async def route(self, pattern, handler):
        self.routes.append((pattern, handler))

    async def add_init_script(self, script):
        if "add_init_script" in self.fail_on:
            raise RuntimeError("init script rejected")
        self.init_scripts.append(script)

    def _next_sample(self):
        self.sample_count += 1
        if callable(self.samples):
            return self.samples(self.sample_count)
        if self.samples:
            index = min(self.sample_count - 1, len(self.samples) - 1)
            return self.samples[index]
        return {"images": 1, "iframes": 0}

    async def evaluate(self, script, arg=None):
        self._tick()
        self.evaluated.append((script, arg))
        if script in self.fail_on:
            raise RuntimeError("evaluate failed")

        if script == stability.SAMPLE_JS:
            return self._next_sample()
        if script == scroller.METRICS_JS:
            return {
                "viewportHeight": self.viewport_height,
                "documentHeight": self.document_height,
                "scrollTop": self.scroll_top,
            }
        if script == scroller.SCROLL_BY_JS:
            if not self.scroll_locked:
                limit = max(self.document_height - self.viewport_height, 0)
                self.scroll_top = min(self.scroll_top + arg, limit)
            self.document_height += self.grow_per_step
            return None
        if script == scroller.SCROLL_TOP_JS:
            self.scroll_top = 0
            self.top_at = self.clock.monotonic() * 1000 if self.clock else None
            return None
        if script == overlays._NEUTRALIZE_JS:
            return self.handlers.get("neutralize", 2)
        if script == overlays._RESTORE_JS:
            return self.handlers.get("restore", 2)
        if script == widgets._DISPOSE_JS:
            return True
        return self.handlers.get(script)

    def scripts_run(self, script):
        return sum(1 for s, _ in self.evaluated if s == script)


@pytest.fixture
def fake_page(clock):
    return FakePage(clock=clock)


class FakeFrame:
    def __init__(self, url, fail=False):
        self.url = url
        self.fail = fail
        self.evaluated = []

    async def evaluate(self, script, arg=None):
        self.evaluated.append(script)
        if self.fail:
            raise RuntimeError("Frame was detached")
        return True
