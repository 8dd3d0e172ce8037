"""
Chat and consent widget suppression.

Two layers: network requests to known widget hosts are aborted through the
page's request router, and a page-side script removes (or force-hides) widget
containers, keeps doing so as the DOM mutates, and sweeps on a timer for the
widgets that re-insert themselves after the page settles.
"""

import json
import logging
import weakref

from pagecapture.config import get_settings
from pagecapture.interception import pattern_decider, router_for
from pagecapture.page_store import STORE_KEY

logger = logging.getLogger(__name__)

WIDGET_KEY = "widgets"

BLOCK_PATTERNS = [
    "crisp.chat",
    "intercom.io",
    "messenger.com",
    "facebook.com/*/customer_chat",
    "drift.com",
    "tawk.to",
    "user.com",
    "zoho.com/salesiq",
    "hubspot.com/messaging",
    "livechatinc.com",
    "zopim.com",
    "freshchat.com",
    "olark.com",
    "zendesk.com/embeddable",
    "gorgias.chat",
    "smooch.io",
    "purechat.com",
]

CHAT_SELECTORS = {
    "hubspot": [
        "#hubspot-messages-iframe-container",
        '[class*="hubspot-messages"]',
        "[data-hubspot-mounted]",
        "[data-hs-messaging]",
        'iframe[src*="hubspot"]',
        'iframe[id*="hubspot"]',
        'div[class*="hs-message"]',
        "#hs-eu-cookie-confirmation",
        "#hs-banner-iframe",
        "#chat-widget-container",
    ],
    "crisp": ["#crisp-chatbox", '[class*="crisp-client"]', 'div[class*="crisp"]'],
    "intercom": ["#intercom-container", "#intercom-frame", '[class*="intercom-"]'],
    "facebook": [".fb-customerchat", 'iframe[class*="fb_customer_chat"]'],
    "drift": ["#drift-widget", '[class*="drift-frame"]'],
    "tawk": ["#tawk-tooltip", 'iframe[title*="tawk"]'],
    "usercom": ["#usercom-messenger", '[class*="usercom"]'],
    "zoho": ["#zsiq_float", '[class*="zsiq"]'],
    "generic": [
        '[class*="chat-widget"]',
        '[id*="chat-widget"]',
        'iframe[title*="chat" i]',
        'iframe[title*="messenger" i]',
        'div[aria-label*="chat" i]',
        'div[class*="widget-chat"]',
        'div[class*="chat-button"]',
        'div[class*="chat-launcher"]',
        'div[class*="live-chat"]',
        'div[class*="livechat"]',
        '[data-testid*="chat"]',
        '[role="dialog"][aria-label*="chat" i]',
    ],
}

# Extra rules for the injected stylesheet only (not removed, just hidden)
HIDE_ONLY_SELECTORS = [
    'iframe[style*="z-index:"][style*="999999"]',
    'iframe[style*="z-index: "][style*="999999"]',
    'div[style*="z-index:"][style*="999999"]',
    'div[style*="z-index: "][style*="999999"]',
    ".hs-default-font-element",
    ".hs-shadow-container",
    'iframe[id^="hubspot-messages-iframe"]',
    ".hs-messages-iframe-wrapper",
]

WIDGET_HINT = r"chat|messenger|intercom|crisp|drift|tawk|hubspot|zsiq|livechat|widget"


def chat_selectors() -> list[str]:
    """Flattened, de-duplicated selector catalogue."""
    seen = []
    for selectors in CHAT_SELECTORS.values():
        for selector in selectors:
            if selector not in seen:
                seen.append(selector)
    return seen


_SUPPRESS_TEMPLATE = '''
(() => {
    const config = __CONFIG__;
    const store = (window[config.storeKey] = window[config.storeKey] || {});
    if (store[config.key]) return false;

    const hint = new RegExp(config.hint, 'i');
    const selector = config.selectors.join(', ');

    const hide = (el) => {
        try {
            el.style.setProperty('display', 'none', 'important');
            el.style.setProperty('visibility', 'hidden', 'important');
        } catch (e) {}
    };
    const removeWidgets = () => {
        let found;
        try {
            found = document.querySelectorAll(selector);
        } catch (e) {
            return;
        }
        for (const el of Array.from(found)) {
            try {
                el.remove();
            } catch (e) {
                hide(el);
            }
        }
    };
    const injectStyle = () => {
        const style = document.createElement('style');
        style.setAttribute('data-pagecapture', 'widgets');
        style.textContent = `
            ${selector} {
                display: none !important;
                visibility: hidden !important;
                opacity: 0 !important;
                pointer-events: none !important;
                width: 0 !important;
                height: 0 !important;
                position: absolute !important;
                z-index: -9999 !important;
            }
            ${config.hideOnly.join(', ')} {
                display: none !important;
                visibility: hidden !important;
                opacity: 0 !important;
            }
        `;
        (document.head || document.documentElement).appendChild(style);
    };
    const looksLikeWidget = (node) => {
        if (!(node instanceof Element)) return false;
        const cls = typeof node.className === 'string' ? node.className : '';
        return hint.test(cls) || hint.test(node.id || '');
    };

    const observer = new MutationObserver((mutations) => {
        for (const m of mutations) {
            if (m.addedNodes.length || (m.type === 'attributes' && looksLikeWidget(m.target))) {
                removeWidgets();
                return;
            }
        }
    });
    let timer = null;

    const arm = () => {
        removeWidgets();
        injectStyle();
        observer.observe(document.documentElement, {
            childList: true,
            subtree: true,
            attributes: true,
            attributeFilter: ['style', 'class', 'id'],
        });
        timer = setInterval(removeWidgets, config.interval);
    };

    store[config.key] = {
        dispose: () => {
            observer.disconnect();
            if (timer !== null) clearInterval(timer);
            timer = null;
        },
    };

    if (document.readyState === 'loading') {
        document.addEventListener('DOMContentLoaded', arm, { once: true });
    } else {
        arm();
    }
    return true;
})()
'''

_DISPOSE_JS = f'''() => {{
    const store = window['{STORE_KEY}'];
    if (!store || !store['{WIDGET_KEY}']) return false;
    store['{WIDGET_KEY}'].dispose();
    delete store['{WIDGET_KEY}'];
    return true;
}}'''


def suppression_script(interval_ms: int | None = None) -> str:
    """The self-contained page script, with its configuration inlined."""
    if interval_ms is None:
        interval_ms = get_settings().widget_cleanup_interval
    config = {
        "storeKey": STORE_KEY,
        "key": WIDGET_KEY,
        "selectors": chat_selectors(),
        "hideOnly": HIDE_ONLY_SELECTORS,
        "hint": WIDGET_HINT,
        "interval": interval_ms,
    }
    return _SUPPRESS_TEMPLATE.replace("__CONFIG__", json.dumps(config))


_disposers: "weakref.WeakKeyDictionary" = weakref.WeakKeyDictionary()
_block_widget_requests = pattern_decider(BLOCK_PATTERNS)


async def suppress(page):
    """
    Arm widget suppression on a page, before navigation. Idempotent: a second
    call returns the disposer from the first. The disposer stops the page-side
    observer and timer and should run before the page is captured or closed.
    """
    existing = _disposers.get(page)
    if existing is not None:
        return existing

    router = await router_for(page)
    router.add(_block_widget_requests)

    script = suppression_script()
    try:
        # Init scripts run in every new document before the page's own scripts
        await page.add_init_script(script)
        await page.evaluate(script)
    except Exception as e:
        logger.warning("[widgets] Chat widget blocking error: %s", e)

    # The registry is keyed weakly on the page, so the disposer must not pin it
    page_ref = weakref.ref(page)

    async def dispose():
        target = page_ref()
        if target is None:
            return
        # Init scripts also run inside iframes, each with its own observer
        for frame in target.frames:
            try:
                await frame.evaluate(_DISPOSE_JS)
            except Exception as e:
                logger.warning("[widgets] Failed to stop widget observer in %s: %s",
                               frame.url or "frame", e)

    _disposers[page] = dispose
    return dispose
