"""
Request and result types shared by the capture pipeline, the API and the CLI.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Literal, Optional

from pydantic import AnyHttpUrl, BaseModel, ConfigDict, Field, PositiveInt

from pagecapture.config import get_settings


ImageFormat = Literal["jpeg", "png"]
WaitCondition = Literal["load", "domcontentloaded", "networkidle0", "networkidle2"]

CONTENT_TYPES = {
    "jpeg": "image/jpeg",
    "png": "image/png",
}


def _default(name: str):
    return lambda: getattr(get_settings(), name)


class ScreenshotRequest(BaseModel):
    """Capture parameters as accepted over HTTP (camelCase on the wire)."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    url: AnyHttpUrl
    width: PositiveInt = Field(default_factory=_default("viewport_width"))
    height: PositiveInt = Field(default_factory=_default("viewport_height"))
    full_page: bool = Field(default=True, alias="fullPage")
    quality: int = Field(default_factory=_default("default_quality"), ge=1, le=100)
    format: ImageFormat = Field(default_factory=_default("default_format"))
    wait_until: WaitCondition = Field(
        default_factory=_default("default_wait_until"), alias="waitUntil"
    )
    timeout: PositiveInt = Field(default_factory=_default("page_load_timeout"))


class CaptureRequest(ScreenshotRequest):
    """A ScreenshotRequest plus the local output sink (never set over HTTP)."""

    output_path: Optional[str] = Field(default=None, alias="outputPath")

    def screenshot_options(self) -> dict:
        """Keyword arguments for ``page.screenshot``; png never carries quality."""
        options = {"full_page": self.full_page, "type": self.format}
        if self.format == "jpeg":
            options["quality"] = self.quality
        return options

    @property
    def content_type(self) -> str:
        return CONTENT_TYPES[self.format]


class BatchRequest(BaseModel):
    urls: list[ScreenshotRequest]


class BatchItem(BaseModel):
    url: str
    success: bool
    data: Optional[str] = None  # base64
    error: Optional[str] = None


@dataclass
class ScrollMetrics:
    viewport_height: int
    document_height: int
    scroll_top: int

    @property
    def at_bottom(self) -> bool:
        return self.scroll_top + self.viewport_height >= self.document_height


@dataclass
class StabilitySample:
    images: int
    iframes: int
    pending: int

    @property
    def quiet(self) -> bool:
        return self.pending == 0

    def matches(self, other: "StabilitySample") -> bool:
        return self.images == other.images and self.iframes == other.iframes


@dataclass
class CapturedImage:
    data: bytes
    format: str
    width: int = 0
    height: int = 0

    @property
    def content_type(self) -> str:
        return CONTENT_TYPES[self.format]


class CaptureState(str, Enum):
    IDLE = "idle"
    PAGE_READY = "page_ready"
    SUPPRESSED = "suppressed"
    NAVIGATED = "navigated"
    PREPARED = "prepared"
    CAPTURED = "captured"
    RESTORED = "restored"
    CLOSED = "closed"
    FAILED = "failed"
