"""
Filter-list (adblock syntax) request blocking.

Lists are downloaded once with httpx and compiled into an ``adblock.Engine``;
the engine then votes on every request through the page's request router,
alongside the widget suppressor.
"""

import logging
from typing import Optional

import adblock
import httpx

from pagecapture.config import get_settings
from pagecapture.interception import Decision, router_for

logger = logging.getLogger(__name__)

# Playwright resource types -> adblock request types
REQUEST_TYPES = {
    "document": "document",
    "stylesheet": "stylesheet",
    "image": "image",
    "media": "media",
    "font": "font",
    "script": "script",
    "xhr": "xmlhttprequest",
    "fetch": "xmlhttprequest",
    "eventsource": "other",
    "websocket": "websocket",
    "manifest": "other",
    "texttrack": "media",
    "other": "other",
}


def _source_url(request) -> str:
    try:
        return request.frame.url or request.url
    except Exception:
        return request.url


def _request_type(request) -> str:
    rtype = REQUEST_TYPES.get(request.resource_type, "other")
    if rtype == "document":
        try:
            if request.frame.parent_frame is not None:
                return "subdocument"
        except Exception:
            pass
    return rtype


class FilterListBlocker:
    def __init__(self, engine, lists: list[str]):
        self.engine = engine
        self.lists = lists

    @classmethod
    def from_rules(cls, rules: str, lists: Optional[list[str]] = None) -> "FilterListBlocker":
        filter_set = adblock.FilterSet()
        filter_set.add_filter_list(rules)
        return cls(adblock.Engine(filter_set=filter_set), lists or [])

    @classmethod
    async def from_lists(cls, urls: list[str],
                         client: Optional[httpx.AsyncClient] = None) -> Optional["FilterListBlocker"]:
        """
        Download and compile the given lists. Lists that fail to download are
        skipped; returns None if none could be fetched.
        """
        if not urls:
            return None

        settings = get_settings()
        owns_client = client is None
        if owns_client:
            client = httpx.AsyncClient(timeout=settings.blocklist_fetch_timeout,
                                       follow_redirects=True)

        filter_set = adblock.FilterSet()
        loaded = []
        try:
            for url in urls:
                try:
                    resp = await client.get(url)
                    resp.raise_for_status()
                except httpx.HTTPError as e:
                    logger.warning("[blocker] Failed to fetch filter list %s: %s", url, e)
                    continue
                filter_set.add_filter_list(resp.text)
                loaded.append(url)
        finally:
            if owns_client:
                await client.aclose()

        if not loaded:
            logger.warning("[blocker] No filter lists loaded, tracker blocking disabled")
            return None

        logger.info("[blocker] Compiled %d filter list(s)", len(loaded))
        return cls(adblock.Engine(filter_set=filter_set), loaded)

    def decide(self, request) -> Decision:
        result = self.engine.check_network_urls(
            url=request.url,
            source_url=_source_url(request),
            request_type=_request_type(request),
        )
        return Decision.ABORT if result.matched else Decision.CONTINUE

    async def enable_blocking_in_page(self, page):
        router = await router_for(page)
        router.add(self.decide)
