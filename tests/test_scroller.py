import asyncio

import pytest

from conftest import FakePage
from pagecapture import scroller
from pagecapture.models import ScrollMetrics


def _run(page, max_timeout_ms=60000, step=800, stability_timeout_ms=500):
    return asyncio.run(scroller.scroll_to_bottom_and_back(
        page,
        max_timeout_ms=max_timeout_ms,
        scroll_step_px=step,
        stability_timeout_ms=stability_timeout_ms,
    ))


def test_read_metrics(fake_page):
    fake_page.document_height = 4200
    fake_page.scroll_top = 300
    metrics = asyncio.run(scroller.read_metrics(fake_page))
    assert metrics == ScrollMetrics(viewport_height=1000, document_height=4200, scroll_top=300)
    assert not metrics.at_bottom


def test_scrolls_to_bottom_then_back_to_top(clock):
    page = FakePage(clock=clock, viewport_height=1000, document_height=5000)
    steps = _run(page)
    # 0 -> 800 -> ... -> 4000 (clamped) reaches the bottom
    assert steps == 5
    assert page.scroll_top == 0
    assert page.scripts_run(scroller.SCROLL_TOP_JS) == 1


def test_short_page_does_not_scroll(clock):
    page = FakePage(clock=clock, viewport_height=1000, document_height=900)
    assert _run(page) == 0
    assert page.scroll_top == 0


def test_unbounded_page_stops_within_budget(clock):
    page = FakePage(clock=clock, viewport_height=1000, document_height=3000, grow_per_step=2000)
    _run(page, max_timeout_ms=2000, stability_timeout_ms=500)
    assert page.top_at is not None
    assert page.top_at <= 2000 + 500
    assert page.scroll_top == 0


def test_height_stable_cutoff(clock, settings):
    page = FakePage(clock=clock, viewport_height=1000, document_height=9000, scroll_locked=True)
    steps = _run(page)
    assert steps == settings.scroll_stable_iterations
    assert page.scroll_top == 0


def test_returns_to_top_even_when_scrolling_fails(clock):
    page = FakePage(clock=clock, viewport_height=1000, document_height=5000)
    page.fail_on.add(scroller.SCROLL_BY_JS)
    with pytest.raises(RuntimeError):
        _run(page)
    assert page.scripts_run(scroller.SCROLL_TOP_JS) == 1
    assert page.scroll_top == 0


def test_adaptive_budget_scales_with_page_length():
    metrics = ScrollMetrics(viewport_height=1000, document_height=10000, scroll_top=0)
    budget = scroller.adaptive_budget(metrics, base_timeout_ms=2000, max_timeout_ms=60000,
                                      stability_cap_ms=3000)
    assert budget.max_timeout_ms == 20000
    assert budget.scroll_step_px == 800
    assert budget.stability_timeout_ms == 2000


def test_adaptive_budget_is_capped():
    metrics = ScrollMetrics(viewport_height=800, document_height=500000, scroll_top=0)
    budget = scroller.adaptive_budget(metrics, base_timeout_ms=5000, max_timeout_ms=60000,
                                      stability_cap_ms=3000)
    assert budget.max_timeout_ms == 60000
    assert budget.stability_timeout_ms == 3000
    assert budget.scroll_step_px == 640


def test_adaptive_budget_short_page():
    metrics = ScrollMetrics(viewport_height=1000, document_height=600, scroll_top=0)
    budget = scroller.adaptive_budget(metrics, base_timeout_ms=5000, max_timeout_ms=60000,
                                      stability_cap_ms=3000)
    assert budget.max_timeout_ms == 5000
    assert budget.stability_timeout_ms == 500
