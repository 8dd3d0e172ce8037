"""
Session-scoped key/value store that lives inside the page.

Element references cannot cross the host/page boundary, so anything that has
to survive between two ``page.evaluate`` calls (the overlay record, the widget
observer) is kept in the page under one reserved window key. The host only
ever sends a self-contained script plus JSON-serializable arguments.
"""

STORE_KEY = "__pagecapture__"


def page_script(body: str) -> str:
    """Wrap a script body so it runs with ``store`` and ``arg`` in scope."""
    return (
        "(arg) => {\n"
        f"    const store = (window['{STORE_KEY}'] = window['{STORE_KEY}'] || {{}});\n"
        f"{body}\n"
        "}"
    )


_HAS_KEY_JS = page_script("    return Object.prototype.hasOwnProperty.call(store, arg);")
_DROP_KEY_JS = page_script("    delete store[arg];")


async def has_key(page, key: str) -> bool:
    return bool(await page.evaluate(_HAS_KEY_JS, key))


async def drop_key(page, key: str):
    await page.evaluate(_DROP_KEY_JS, key)
