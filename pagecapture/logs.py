import logging


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO"):
    """Root logging setup shared by the CLI and the API server."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    # Playwright's driver and httpx are chatty at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
