import asyncio

import httpx

from conftest import FakePage, FakeRequest, FakeRoute
from pagecapture.blocker import FilterListBlocker
from pagecapture.interception import Decision, router_for

RULES = """
! test list
||tracker.example^
/ads/banner.js
"""


def test_rules_decide_requests():
    blocker = FilterListBlocker.from_rules(RULES)
    assert blocker.decide(FakeRequest("https://tracker.example/t.js")) is Decision.ABORT
    assert blocker.decide(FakeRequest("https://cdn.example.com/ads/banner.js")) is Decision.ABORT
    assert blocker.decide(FakeRequest("https://cdn.example.com/app.js")) is Decision.CONTINUE


def _client(responses):
    def handler(request):
        status, body = responses[str(request.url)]
        return httpx.Response(status, text=body)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_from_lists_skips_failed_downloads(caplog):
    good = "https://lists.example/good.txt"
    bad = "https://lists.example/missing.txt"

    async def scenario():
        async with _client({good: (200, RULES), bad: (404, "")}) as client:
            return await FilterListBlocker.from_lists([bad, good], client=client)

    blocker = asyncio.run(scenario())
    assert blocker is not None
    assert blocker.lists == [good]
    assert "Failed to fetch filter list" in caplog.text
    assert blocker.decide(FakeRequest("https://tracker.example/t.js")) is Decision.ABORT


def test_from_lists_with_nothing_loaded():
    url = "https://lists.example/down.txt"

    async def scenario():
        async with _client({url: (503, "")}) as client:
            return await FilterListBlocker.from_lists([url], client=client)

    assert asyncio.run(scenario()) is None
    assert asyncio.run(FilterListBlocker.from_lists([])) is None


def test_blocker_votes_through_page_router():
    page = FakePage()
    blocker = FilterListBlocker.from_rules(RULES)

    async def scenario():
        await blocker.enable_blocking_in_page(page)
        router = await router_for(page)
        tracked = FakeRoute("https://tracker.example/pixel.gif")
        plain = FakeRoute("https://example.com/")
        await router.handle(tracked)
        await router.handle(plain)
        return tracked, plain

    tracked, plain = asyncio.run(scenario())
    assert tracked.calls == ["abort"]
    assert plain.calls == ["continue"]
    assert len(page.routes) == 1
