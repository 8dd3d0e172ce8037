"""
Command-line entry point.

    pagecapture capture https://example.com -o example.png --format png
    pagecapture batch --url-list urls.txt -o shots/
    pagecapture serve --port 3000
"""

import argparse
import asyncio
import os
import re
import sys
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from pydantic import ValidationError

from pagecapture.capture import CaptureService
from pagecapture.config import get_settings
from pagecapture.logs import configure_logging
from pagecapture.models import CaptureRequest
from pagecapture.webhooks import drain


def ensure_scheme(url: str) -> str:
    if not re.match(r"^https?://", url, flags=re.I):
        return "https://" + url
    return url


def parse_url_list_file(path: Path) -> list[str]:
    raw = path.read_text(encoding="utf-8", errors="ignore")
    out = []
    for line in raw.splitlines():
        if line.strip().startswith("#"):
            continue
        for token in re.split(r"[\s,;|]+", line):
            token = token.strip()
            if token:
                out.append(token)
    return out


def _slugify(s: str) -> str:
    s = (s or "").strip().lower()
    s = re.sub(r"\.(html?|aspx|php)$", "", s)
    s = re.sub(r"[^a-z0-9\-_]+", "-", s)
    s = re.sub(r"-{2,}", "-", s).strip("-")
    return s or "page"


def unique_slug_for_url(url: str, used: set[str]) -> str:
    """host-lastsegment, with -N suffixes for duplicates."""
    parsed = urlparse(url)
    host = re.sub(r"^www\.", "", parsed.netloc.lower())
    parts = [seg for seg in (parsed.path or "/").split("/") if seg]
    base = _slugify(host)
    if parts:
        base = f"{base}-{_slugify(parts[-1])}"

    slug, n = base, 2
    while slug in used:
        slug = f"{base}-{n}"
        n += 1
    used.add(slug)
    return slug


def _request_fields(args) -> dict:
    fields = {
        "fullPage": not args.viewport_only,
        "format": args.format,
    }
    for name in ("width", "height", "quality", "timeout"):
        value = getattr(args, name)
        if value is not None:
            fields[name] = value
    if args.wait_until:
        fields["waitUntil"] = args.wait_until
    return fields


def build_request(url: str, args, output_path: Optional[str]) -> CaptureRequest:
    return CaptureRequest(url=ensure_scheme(url), outputPath=output_path, **_request_fields(args))


async def run_capture(args) -> int:
    output = args.output or f"screenshot.{'png' if args.format == 'png' else 'jpg'}"
    request = build_request(args.url, args, output)
    service = CaptureService()
    try:
        image = await service.take_screenshot(request)
    finally:
        # asyncio.run cancels whatever is still pending on exit
        await drain()
        await service.stop()
    print(f"Saved {image.width}x{image.height} {image.format} to {output}")
    return 0


async def run_batch(args) -> int:
    urls = parse_url_list_file(Path(args.url_list))
    if not urls:
        print(f"No URLs found in list: {args.url_list}", file=sys.stderr)
        return 1

    out_dir = Path(args.output or "output")
    out_dir.mkdir(parents=True, exist_ok=True)
    ext = "png" if args.format == "png" else "jpg"

    used: set[str] = set()
    requests = []
    for url in urls:
        slug = unique_slug_for_url(ensure_scheme(url), used)
        requests.append(build_request(url, args, str(out_dir / f"{slug}.{ext}")))

    service = CaptureService()
    try:
        items = await service.take_batch(requests)
    finally:
        # asyncio.run cancels whatever is still pending on exit
        await drain()
        await service.stop()

    failed = 0
    for request, item in zip(requests, items):
        if item.success:
            print(f"  ✓ {item.url} -> {request.output_path}")
        else:
            failed += 1
            print(f"  ✗ {item.url}: {item.error}")
    print(f"Done: {len(items) - failed} captured, {failed} failed")
    return 1 if failed else 0


def serve(args) -> int:
    import uvicorn

    port = args.port or int(os.environ.get("PORT", "3000"))
    print(f"Server starting on port {port}...")
    uvicorn.run("pagecapture.main:app", host=args.host, port=port)
    return 0


def _add_capture_options(parser):
    parser.add_argument("--format", choices=["jpeg", "png"], default=get_settings().default_format)
    parser.add_argument("--quality", type=int, default=None, help="JPEG quality 1-100 (ignored for png).")
    parser.add_argument("--width", type=int, default=None, help="Viewport width.")
    parser.add_argument("--height", type=int, default=None, help="Viewport height.")
    parser.add_argument("--viewport-only", action="store_true", help="Capture the viewport instead of the full page.")
    parser.add_argument(
        "--wait-until",
        choices=["load", "domcontentloaded", "networkidle0", "networkidle2"],
        default=None,
        help="Navigation wait condition.",
    )
    parser.add_argument("--timeout", type=int, default=None, help="Navigation timeout in ms.")


def parse_args(argv=None):
    ap = argparse.ArgumentParser(prog="pagecapture", description="Full-page website screenshots.")
    sub = ap.add_subparsers(dest="command", required=True)

    cap = sub.add_parser("capture", help="Capture a single URL.")
    cap.add_argument("url", help="Website URL (with or without http/https).")
    cap.add_argument("-o", "--output", default=None, help="Output file path.")
    _add_capture_options(cap)

    batch = sub.add_parser("batch", help="Capture every URL in a list file.")
    batch.add_argument("--url-list", required=True, help="Plaintext list of URLs (whitespace/comma separated).")
    batch.add_argument("-o", "--output", default=None, help="Output directory (default: ./output).")
    _add_capture_options(batch)

    srv = sub.add_parser("serve", help="Run the HTTP API.")
    srv.add_argument("--host", default="0.0.0.0")
    srv.add_argument("--port", type=int, default=None, help="Port (default: $PORT or 3000).")

    return ap.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    configure_logging(get_settings().log_level)

    if args.command == "serve":
        return serve(args)

    runner = run_capture if args.command == "capture" else run_batch
    try:
        return asyncio.run(runner(args))
    except ValidationError as e:
        print(f"Invalid request: {e}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        return 130
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
