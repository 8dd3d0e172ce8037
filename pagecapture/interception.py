"""
Per-page request routing.

Playwright allows a single ``page.route`` handler to decide each request, but
two collaborators want a say (the widget suppressor and the filter-list
blocker). ``RequestRouter`` asks each registered decider in order and resolves
the route exactly once: abort if any decider says so, continue otherwise.
"""

import logging
import re
import weakref
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)


class Decision(Enum):
    CONTINUE = "continue"
    ABORT = "abort"


Decider = Callable[[object], Decision]


def compile_pattern(pattern: str) -> Callable[[str], bool]:
    """
    Build a URL matcher. Plain patterns are substring matches; ``*`` means
    "any characters" and turns the pattern into an unanchored regex.
    Callers pass lowercased URLs.
    """
    pattern = pattern.lower()
    if "*" not in pattern:
        return lambda url: pattern in url
    regex = re.compile(".*".join(re.escape(part) for part in pattern.split("*")))
    return lambda url: regex.search(url) is not None


def pattern_decider(patterns: list[str]) -> Decider:
    matchers = [compile_pattern(p) for p in patterns]

    def decide(request) -> Decision:
        url = request.url.lower()
        if any(match(url) for match in matchers):
            return Decision.ABORT
        return Decision.CONTINUE

    return decide


def _already_handled(error: Exception) -> bool:
    return "already handled" in str(error).lower()


class RequestRouter:
    def __init__(self):
        self.deciders: list[Decider] = []
        self.installed = False

    def add(self, decider: Decider):
        if decider not in self.deciders:
            self.deciders.append(decider)

    def decide(self, request) -> Decision:
        for decider in self.deciders:
            if decider(request) is Decision.ABORT:
                return Decision.ABORT
        return Decision.CONTINUE

    async def handle(self, route):
        """Route handler. Every code path ends with the route resolved once."""
        request = route.request
        try:
            decision = self.decide(request)
        except Exception as e:
            logger.warning("[intercept] Classification failed for %s: %s", request.url, e)
            decision = Decision.CONTINUE

        try:
            if decision is Decision.ABORT:
                await route.abort()
            else:
                await route.continue_()
            return
        except Exception as e:
            if not _already_handled(e):
                logger.warning("[intercept] Request interception error for %s: %s", request.url, e)

        # The first call raised, so the request is either already resolved
        # elsewhere or still pending. One last continue keeps it from hanging.
        try:
            await route.continue_()
        except Exception:
            pass


_routers: "weakref.WeakKeyDictionary" = weakref.WeakKeyDictionary()


async def router_for(page) -> RequestRouter:
    """The page's router, installed on first use."""
    router = _routers.get(page)
    if router is None:
        router = RequestRouter()
        _routers[page] = router
    if not router.installed:
        router.installed = True
        await page.route("**/*", router.handle)
    return router
