from pydantic_settings import BaseSettings
from functools import lru_cache
import os


class Settings(BaseSettings):
    # Capture defaults (applied when a request leaves a field out)
    viewport_width: int = 1920
    viewport_height: int = 1080
    default_format: str = "jpeg"
    default_quality: int = 80
    default_wait_until: str = "networkidle2"
    page_load_timeout: int = 30000  # milliseconds

    # Browser
    headless: bool = True
    browser_args: list[str] = [
        "--no-sandbox",
        "--disable-setuid-sandbox",
        "--disable-dev-shm-usage",
        "--disable-gpu",
    ]
    user_agent: str = (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/131.0.0.0 Safari/537.36"
    )
    max_concurrent_pages: int = 4

    # Fanboy's Cookiemonster list blocks consent brokers at the network level
    blocklist_urls: list[str] = [
        "https://secure.fanboy.co.nz/fanboy-cookiemonster.txt",
    ]
    blocklist_fetch_timeout: float = 20.0  # seconds

    # Consent automation
    consent_timeout: float = 10.0  # seconds
    consent_poll_interval: int = 250  # milliseconds

    # Widget suppression
    widget_cleanup_interval: int = 1000  # milliseconds

    # Scroll + lazy-load (all milliseconds)
    scroll_base_timeout: int = 5000
    scroll_max_timeout: int = 60000
    stability_max_timeout: int = 3000
    stability_poll_interval: int = 100
    stability_confirm_delay: int = 250
    scroll_stable_iterations: int = 8
    scroll_settle_delay: int = 500
    neutralize_settle_delay: int = 500
    final_quiescence_timeout: int = 1000
    relaxed_idle_timeout: int = 5000

    # Webhook notified after each successful capture (optional)
    webhook_url: str = ""
    webhook_timeout: float = 10.0  # seconds

    log_level: str = "INFO"

    class Config:
        # Look for .env in the repo root (one level up from pagecapture/)
        # In containers, env vars are injected directly and .env is optional
        _env_path = os.path.join(os.path.dirname(__file__), "..", ".env")
        env_file = _env_path if os.path.exists(_env_path) else None
        env_file_encoding = "utf-8"
        env_prefix = "PAGECAPTURE_"
        extra = "ignore"


@lru_cache()
def get_settings():
    return Settings()
