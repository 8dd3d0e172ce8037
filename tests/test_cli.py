import asyncio
from pathlib import Path

from conftest import png_bytes
from pagecapture import cli, webhooks
from pagecapture.image_utils import to_captured_image


def test_ensure_scheme():
    assert cli.ensure_scheme("example.com") == "https://example.com"
    assert cli.ensure_scheme("http://example.com") == "http://example.com"
    assert cli.ensure_scheme("HTTPS://example.com") == "HTTPS://example.com"


def test_url_list_parsing(tmp_path: Path):
    path = tmp_path / "urls.txt"
    path.write_text("# sites\nexample.com, https://a.example/x\n\nb.example|c.example; d.example\n")
    assert cli.parse_url_list_file(path) == [
        "example.com", "https://a.example/x", "b.example", "c.example", "d.example",
    ]


def test_unique_slugs():
    used = set()
    assert cli.unique_slug_for_url("https://www.example.com/", used) == "example-com"
    assert cli.unique_slug_for_url("https://example.com/about/Team.html", used) == "example-com-team"
    assert cli.unique_slug_for_url("https://example.com", used) == "example-com-2"
    assert cli.unique_slug_for_url("https://example.com/", used) == "example-com-3"


def test_build_request_from_args():
    args = cli.parse_args(["capture", "example.com", "--format", "png", "--viewport-only",
                           "--width", "1280", "--wait-until", "load", "-o", "out.png"])
    request = cli.build_request(args.url, args, args.output)
    assert str(request.url) == "https://example.com/"
    assert request.full_page is False
    assert request.format == "png"
    assert request.width == 1280
    assert request.wait_until == "load"
    assert request.output_path == "out.png"


def test_invalid_quality_exits_with_usage_error(capsys):
    assert cli.main(["capture", "example.com", "--quality", "0"]) == 2
    assert "Invalid request" in capsys.readouterr().err


def test_empty_url_list(tmp_path, capsys):
    path = tmp_path / "urls.txt"
    path.write_text("# nothing yet\n")
    assert cli.main(["batch", "--url-list", str(path)]) == 1
    assert "No URLs found" in capsys.readouterr().err


class OfflineService:
    """Stands in for CaptureService: no browser, but notifies like the real one."""

    def __init__(self):
        self.stopped = False

    async def take_screenshot(self, request):
        image = to_captured_image(png_bytes(), request.format)
        webhooks.notify_capture(str(request.url), image)
        return image

    async def stop(self):
        self.stopped = True


def test_webhook_delivered_before_cli_exits(monkeypatch, settings, tmp_path):
    delivered = []

    async def slow_deliver(url, payload, timeout):
        await asyncio.sleep(0.01)
        delivered.append(payload["url"])
        return True

    monkeypatch.setattr(settings, "webhook_url", "http://hooks.invalid/capture")
    monkeypatch.setattr(webhooks, "deliver", slow_deliver)
    monkeypatch.setattr(cli, "CaptureService", OfflineService)

    code = cli.main(["capture", "example.com", "--format", "png", "-o", str(tmp_path / "x.png")])

    assert code == 0
    assert delivered == ["https://example.com/"]
