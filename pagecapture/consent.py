"""
Cookie/consent dialog automation.

Each consent management platform (CMP) family gets a detector variant; the
catalogue itself is plain data (``RULESET``) turned into detectors once at
startup by ``build_detectors``. ``attach_to_page`` polls the detectors until
one recognises the page or the time budget runs out, after which the caller
may opt in through the matched rule.
"""

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from typing import Optional

from pagecapture.config import get_settings

logger = logging.getLogger(__name__)

_VISIBLE_JS = '''(selectors) => {
    const isVisible = (el) => {
        const style = window.getComputedStyle(el);
        if (style.display === 'none' || style.visibility === 'hidden') return false;
        const rect = el.getBoundingClientRect();
        return rect.width > 0 && rect.height > 0;
    };
    for (const selector of selectors) {
        for (const el of document.querySelectorAll(selector)) {
            if (isVisible(el)) return true;
        }
    }
    return false;
}'''

_CLICK_JS = '''(selectors) => {
    for (const selector of selectors) {
        for (const el of document.querySelectorAll(selector)) {
            if (el.offsetParent !== null || el.getClientRects().length) {
                el.click();
                return true;
            }
        }
    }
    return false;
}'''

_HAS_API_JS = '''(path) => {
    let target = window;
    for (const part of path.split('.')) {
        if (target == null) return false;
        target = target[part];
    }
    return typeof target === 'function';
}'''

_CALL_API_JS = '''([path, args]) => {
    const parts = path.split('.');
    const method = parts.pop();
    let owner = window;
    for (const part of parts) owner = owner[part];
    owner[method](...args);
    return true;
}'''

_HEURISTIC_CLICK_JS = '''([containers, pattern]) => {
    const accept = new RegExp(pattern, 'i');
    for (const container of document.querySelectorAll(containers.join(', '))) {
        for (const btn of container.querySelectorAll('button, a, [role="button"]')) {
            if (accept.test((btn.innerText || '').trim())) {
                btn.click();
                return true;
            }
        }
    }
    return false;
}'''


class ConsentDetector(ABC):
    """One CMP family: recognise its dialog, then accept it."""

    def __init__(self, name: str):
        self.name = name

    @abstractmethod
    async def detect(self, page) -> bool:
        ...

    @abstractmethod
    async def opt_in(self, page) -> bool:
        ...

    def __repr__(self):
        return f"{type(self).__name__}({self.name!r})"


class ButtonConsentDetector(ConsentDetector):
    """Banner rendered in the main document with a plain accept button."""

    def __init__(self, name: str, banner: list[str], accept: list[str]):
        super().__init__(name)
        self.banner = banner
        self.accept = accept

    async def detect(self, page) -> bool:
        return bool(await page.evaluate(_VISIBLE_JS, self.banner))

    async def opt_in(self, page) -> bool:
        return bool(await page.evaluate(_CLICK_JS, self.accept))


class ScriptApiConsentDetector(ConsentDetector):
    """CMPs exposing an accept-all JavaScript API (banner may live in shadow DOM)."""

    def __init__(self, name: str, call: str, args: Optional[list] = None,
                 banner: Optional[list[str]] = None):
        super().__init__(name)
        self.call = call
        self.args = args or []
        self.banner = banner or []

    async def detect(self, page) -> bool:
        if not await page.evaluate(_HAS_API_JS, self.call):
            return False
        if self.banner:
            return bool(await page.evaluate(_VISIBLE_JS, self.banner))
        return True

    async def opt_in(self, page) -> bool:
        return bool(await page.evaluate(_CALL_API_JS, [self.call, self.args]))


class FrameConsentDetector(ConsentDetector):
    """Consent dialog served from a third-party iframe."""

    def __init__(self, name: str, frame_url: str, accept: list[str]):
        super().__init__(name)
        self.frame_url = re.compile(frame_url, re.I)
        self.accept = accept

    def _frame(self, page):
        for frame in page.frames:
            if self.frame_url.search(frame.url or ""):
                return frame
        return None

    async def detect(self, page) -> bool:
        return self._frame(page) is not None

    async def opt_in(self, page) -> bool:
        frame = self._frame(page)
        if frame is None:
            return False
        return bool(await frame.evaluate(_CLICK_JS, self.accept))


class HeuristicConsentDetector(ConsentDetector):
    """Last resort: any cookie/consent-looking container with an accept-like button."""

    def __init__(self, name: str, containers: list[str], button_text: str):
        super().__init__(name)
        self.containers = containers
        self.button_text = button_text

    async def detect(self, page) -> bool:
        return bool(await page.evaluate(_VISIBLE_JS, self.containers))

    async def opt_in(self, page) -> bool:
        return bool(await page.evaluate(
            _HEURISTIC_CLICK_JS, [self.containers, self.button_text]
        ))


# ── Rule catalogue ──────────────────────────────────────────────────────────
# Order matters: specific vendors first, the heuristic rule last.

RULESET = [
    {
        "name": "onetrust",
        "kind": "button",
        "banner": ["#onetrust-banner-sdk", "#onetrust-consent-sdk .ot-sdk-container"],
        "accept": ["#onetrust-accept-btn-handler", "#accept-recommended-btn-handler"],
    },
    {
        "name": "cookiebot",
        "kind": "script_api",
        "call": "Cookiebot.submitCustomConsent",
        "args": [True, True, True],
        "banner": ["#CybotCookiebotDialog"],
    },
    {
        "name": "didomi",
        "kind": "script_api",
        "call": "Didomi.setUserAgreeToAll",
        "banner": ["#didomi-host .didomi-popup-container", "#didomi-notice"],
    },
    {
        "name": "usercentrics",
        "kind": "script_api",
        "call": "UC_UI.acceptAllConsents",
        "banner": ["#usercentrics-root"],
    },
    {
        "name": "quantcast",
        "kind": "button",
        "banner": [".qc-cmp2-container", "#qc-cmp2-ui"],
        "accept": ['.qc-cmp2-summary-buttons button[mode="primary"]'],
    },
    {
        "name": "cookieyes",
        "kind": "button",
        "banner": [".cky-consent-container"],
        "accept": [".cky-btn-accept"],
    },
    {
        "name": "osano",
        "kind": "button",
        "banner": [".osano-cm-dialog"],
        "accept": [".osano-cm-accept-all", ".osano-cm-accept"],
    },
    {
        "name": "complianz",
        "kind": "button",
        "banner": [".cmplz-cookiebanner"],
        "accept": [".cmplz-accept"],
    },
    {
        "name": "cookieconsent",
        "kind": "button",
        "banner": [".cc-window", ".cc-banner"],
        "accept": [".cc-allow", ".cc-dismiss"],
    },
    {
        "name": "trustarc",
        "kind": "frame",
        "frame_url": r"consent-pref\.trustarc\.com",
        "accept": [".call", "a.call", "button.call"],
    },
    {
        "name": "sourcepoint",
        "kind": "frame",
        "frame_url": r"privacy-mgmt\.com|sp_message_iframe",
        "accept": ['button[title*="Accept" i]', 'button[aria-label*="Accept" i]'],
    },
    {
        "name": "generic",
        "kind": "heuristic",
        "containers": [
            '[class*="cookie"]', '[id*="cookie"]',
            '[class*="consent"]', '[id*="consent"]',
            '[class*="gdpr"]', '[id*="gdpr"]',
        ],
        "button_text": r"^(accept|agree|allow|got it|ok|i agree|accept all|allow all)\b",
    },
]

DETECTOR_KINDS = {
    "button": ButtonConsentDetector,
    "script_api": ScriptApiConsentDetector,
    "frame": FrameConsentDetector,
    "heuristic": HeuristicConsentDetector,
}


def build_detectors(ruleset: list[dict] = RULESET) -> list[ConsentDetector]:
    detectors = []
    for rule in ruleset:
        options = dict(rule)
        kind = options.pop("kind", None)
        cls = DETECTOR_KINDS.get(kind)
        if cls is None:
            raise ValueError(f"Unknown consent rule kind {kind!r} for {rule.get('name')!r}")
        detectors.append(cls(**options))
    return detectors


class ConsentTab:
    """Classification of one page against the detector catalogue."""

    def __init__(self, page, url: str, detectors: list[ConsentDetector],
                 timeout: float, poll_interval: float):
        self.page = page
        self.url = url
        self.detectors = detectors
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.rule: Optional[ConsentDetector] = None
        self.checked = asyncio.ensure_future(self._classify())

    async def _classify(self) -> Optional[ConsentDetector]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout
        while True:
            for detector in self.detectors:
                try:
                    if await detector.detect(self.page):
                        self.rule = detector
                        return detector
                except Exception as e:
                    logger.debug("[consent] %s detection failed on %s: %s",
                                 detector.name, self.url, e)
            if loop.time() >= deadline:
                return None
            await asyncio.sleep(self.poll_interval)

    async def do_opt_in(self) -> bool:
        if self.rule is None:
            return False
        accepted = await self.rule.opt_in(self.page)
        logger.info("[consent] %s opt-in on %s: %s", self.rule.name, self.url,
                    "accepted" if accepted else "no accept control found")
        return accepted


def attach_to_page(page, url: str, detectors: list[ConsentDetector],
                   timeout: Optional[float] = None) -> ConsentTab:
    settings = get_settings()
    return ConsentTab(
        page,
        url,
        detectors,
        timeout=settings.consent_timeout if timeout is None else timeout,
        poll_interval=settings.consent_poll_interval / 1000,
    )


async def handle_consent(page, url: str, detectors: list[ConsentDetector],
                         timeout: Optional[float] = None) -> Optional[str]:
    """
    Attach, wait for classification and opt in when a rule matched.
    Best-effort: errors are logged and swallowed. Returns the rule name.
    """
    try:
        tab = attach_to_page(page, url, detectors, timeout)
        await tab.checked
        if tab.rule is None:
            logger.info("[consent] No consent rule found for %s, continuing without consent handling", url)
            return None
        await tab.do_opt_in()
        return tab.rule.name
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.warning("[consent] CMP handling error for %s: %s", url, e)
        return None
