"""
Sticky/fixed element neutralization.

A full-page screenshot is stitched from the whole scrollable area, so anything
pinned with position fixed or sticky shows up at the wrong place (or repeated).
``neutralize`` flattens those elements to ``position: static`` and records
their original inline style inside the page; ``restore`` puts every style
string back verbatim.
"""

import logging

from pagecapture.page_store import page_script

logger = logging.getLogger(__name__)

OVERLAY_KEY = "overlays"

STICKY_STYLE_SELECTORS = [
    '[style*="position: fixed"]',
    '[style*="position:fixed"]',
    '[style*="position: sticky"]',
    '[style*="position:sticky"]',
]

_NEUTRALIZE_JS = page_script('''
    const isPinned = (el) => {
        const position = window.getComputedStyle(el).position;
        return position === 'fixed' || position === 'sticky';
    };
    const candidates = new Set([
        ...document.querySelectorAll(arg.selectors.join(', ')),
        ...Array.from(document.querySelectorAll('*')).filter(isPinned),
    ]);

    const records = store[arg.key] || [];
    for (const el of candidates) {
        if (!(el instanceof HTMLElement) || !isPinned(el)) continue;
        records.push({ element: el, style: el.style.cssText });
        el.style.setProperty('position', 'static', 'important');

        const tag = el.tagName.toLowerCase();
        if (tag === 'header' || tag === 'nav' || el.getAttribute('role') === 'navigation') {
            el.style.setProperty('top', '0', 'important');
            el.style.setProperty('z-index', 'auto', 'important');
        }
    }
    store[arg.key] = records;
    return records.length;
''')

# Walk backwards so an element recorded twice ends on its oldest style
_RESTORE_JS = page_script('''
    const records = store[arg.key];
    if (!records) return 0;
    for (let i = records.length - 1; i >= 0; i--) {
        records[i].element.style.cssText = records[i].style;
    }
    delete store[arg.key];
    return records.length;
''')


async def neutralize(page) -> int:
    """Flatten fixed/sticky elements. Must run before scrolling or capture."""
    count = await page.evaluate(
        _NEUTRALIZE_JS, {"key": OVERLAY_KEY, "selectors": STICKY_STYLE_SELECTORS}
    )
    logger.info("[overlays] Neutralized %d fixed/sticky elements", count)
    return count


async def restore(page) -> int:
    """Write back every recorded style. A no-op when nothing was recorded."""
    count = await page.evaluate(_RESTORE_JS, {"key": OVERLAY_KEY})
    if count:
        logger.info("[overlays] Restored %d elements", count)
    return count
