from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from pagecapture.capture import CaptureService
from pagecapture.config import get_settings
from pagecapture.logs import configure_logging
from pagecapture.models import BatchItem, BatchRequest, CaptureRequest, ScreenshotRequest
from pagecapture.webhooks import drain

logger = logging.getLogger(__name__)

capture_service = CaptureService()


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(get_settings().log_level)
    yield
    # Shutdown (SIGINT/SIGTERM under uvicorn): release the browser
    logger.info("Cleaning up screenshot service...")
    await drain()
    await capture_service.stop()


app = FastAPI(title="Page Capture API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _to_capture(body: ScreenshotRequest) -> CaptureRequest:
    # outputPath is never accepted from API requests
    return CaptureRequest.model_validate(body.model_dump(mode="json"))


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@app.get("/health")
async def health():
    return {"status": "ok"}


@app.post("/screenshot")
async def screenshot_endpoint(body: ScreenshotRequest):
    """Capture one page and return the encoded image."""
    request = _to_capture(body)
    try:
        image = await capture_service.take_screenshot(request)
    except Exception as e:
        logger.error("Screenshot error: %s", e)
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to capture screenshot", "message": str(e)},
        )

    return Response(
        content=image.data,
        media_type=request.content_type,
        headers={"Content-Length": str(len(image.data))},
    )


@app.post("/screenshots/batch", response_model=list[BatchItem], response_model_exclude_none=True)
async def batch_screenshot_endpoint(body: BatchRequest):
    """Capture every request independently; per-URL failures are reported inline."""
    try:
        return await capture_service.take_batch([_to_capture(item) for item in body.urls])
    except Exception as e:
        logger.error("Batch screenshot error: %s", e)
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to process batch screenshot request", "message": str(e)},
        )
