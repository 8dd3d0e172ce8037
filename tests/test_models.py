import pytest
from pydantic import ValidationError

from pagecapture.models import CaptureRequest, ScreenshotRequest, ScrollMetrics, StabilitySample


def test_defaults_come_from_settings(settings):
    req = CaptureRequest(url="https://example.com")
    assert req.width == settings.viewport_width
    assert req.height == settings.viewport_height
    assert req.format == settings.default_format
    assert req.quality == settings.default_quality
    assert req.wait_until == settings.default_wait_until
    assert req.full_page is True


def test_camel_case_aliases():
    req = ScreenshotRequest.model_validate({
        "url": "https://example.com",
        "fullPage": False,
        "waitUntil": "domcontentloaded",
    })
    assert req.full_page is False
    assert req.wait_until == "domcontentloaded"


def test_png_never_carries_quality():
    req = CaptureRequest(url="https://example.com", format="png", quality=50)
    assert req.screenshot_options() == {"full_page": True, "type": "png"}
    assert req.content_type == "image/png"


def test_jpeg_carries_quality():
    req = CaptureRequest(url="https://example.com", format="jpeg", quality=55, fullPage=False)
    assert req.screenshot_options() == {"full_page": False, "type": "jpeg", "quality": 55}
    assert req.content_type == "image/jpeg"


@pytest.mark.parametrize("field,value", [
    ("quality", 0),
    ("quality", 101),
    ("width", 0),
    ("format", "gif"),
    ("waitUntil", "networkidle1"),
    ("url", "not-a-url"),
    ("url", "ftp://example.com/file"),
])
def test_invalid_fields_rejected(field, value):
    body = {"url": "https://example.com", field: value}
    with pytest.raises(ValidationError):
        ScreenshotRequest.model_validate(body)


def test_output_path_not_accepted_over_http():
    with pytest.raises(ValidationError):
        ScreenshotRequest.model_validate({"url": "https://example.com", "outputPath": "/etc/passwd"})


def test_scroll_metrics_at_bottom():
    assert ScrollMetrics(viewport_height=1000, document_height=3000, scroll_top=2000).at_bottom
    assert not ScrollMetrics(viewport_height=1000, document_height=3000, scroll_top=1999).at_bottom


def test_stability_sample_comparison():
    a = StabilitySample(images=3, iframes=1, pending=0)
    assert a.quiet
    assert a.matches(StabilitySample(images=3, iframes=1, pending=2))
    assert not a.matches(StabilitySample(images=4, iframes=1, pending=0))
