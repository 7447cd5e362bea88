from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
from typing import Literal, Optional

from .utils import getenv_bool, getenv_int, getenv_str, getenv_csv

# ---------- Project Paths ----------
PROJECT_ROOT: Path = Path(__file__).resolve().parents[1]
DATA_DIR: Path = PROJECT_ROOT / "data"
LOG_DIR: Path = PROJECT_ROOT / "logs"

DATASET_CSV: Path = DATA_DIR / "data_cleaned_titles.csv"
OUTPUT_CSV: Path = DATA_DIR / "flickr_photo_urls.csv"
CLEANED_OUTPUT_CSV: Path = DATA_DIR / "flickr_photo_urls_cleaned.csv"
RUN_STATE_JSON: Path = DATA_DIR / "run_state.json"
LOG_FILE: Path = LOG_DIR / "crawler.log"


# ---------- Config dataclass ----------
@dataclass(frozen=True)
class Config:
    # Paths
    dataset_csv: Path
    output_csv: Path
    cleaned_output_csv: Path
    run_state_json: Path
    log_file: Path

    # Dataset columns
    owner_field: str
    item_field: str

    # Scheduling & persistence
    concurrency: int
    flush_every: int
    item_timeout_s: int                         # 0 disables the per-item bound

    # Resolution
    page_url_template: str
    image_extensions: tuple[str, ...]
    small_variant_suffixes: tuple[str, ...]

    # Browser
    user_agent: str
    navigation_wait_until: Literal["load", "domcontentloaded", "networkidle", "commit"]
    page_load_timeout_ms: int
    page_close_timeout_ms: int
    proxy_server: Optional[str]
    browser_args_extra: tuple[str, ...]
    headless: bool

    # Existence probe
    probe_timeout_ms: int
    probe_max_attempts: int
    probe_retry_initial_delay_ms: int
    probe_retry_max_delay_ms: int
    probe_retry_jitter_ms: int

    def with_overrides(self, **changes) -> "Config":
        """Return a copy with the non-None values in `changes` applied."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


# ---------- Loader ----------
def load_config() -> Config:

    cfg = Config(
        # paths
        dataset_csv=Path(getenv_str("DATASET_CSV", str(DATASET_CSV))),
        output_csv=Path(getenv_str("OUTPUT_CSV", str(OUTPUT_CSV))),
        cleaned_output_csv=Path(getenv_str("CLEANED_OUTPUT_CSV", str(CLEANED_OUTPUT_CSV))),
        run_state_json=Path(getenv_str("RUN_STATE_JSON", str(RUN_STATE_JSON))),
        log_file=Path(getenv_str("LOG_FILE", str(LOG_FILE))),

        owner_field=getenv_str("DATASET_OWNER_FIELD", "user"),
        item_field=getenv_str("DATASET_ITEM_FIELD", "id"),

        # Four concurrent browser sessions is what the remote site tolerates.
        concurrency=getenv_int("CONCURRENCY", 4, 1, 64),
        flush_every=getenv_int("FLUSH_EVERY", 10, 1, 10_000),
        item_timeout_s=getenv_int("ITEM_TIMEOUT_S", 90, 0, 3600),

        page_url_template=getenv_str("PAGE_URL_TEMPLATE", "https://www.flickr.com/photos/{owner}/{item}"),
        image_extensions=tuple(e.lower() for e in getenv_csv("IMAGE_EXTENSIONS", ".jpg,.png")),
        small_variant_suffixes=getenv_csv("SMALL_VARIANT_SUFFIXES", "_s"),

        user_agent=getenv_str(
            "SCRAPER_USER_AGENT",
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
            "AppleWebKit/537.36 (KHTML, like Gecko) "
            "Chrome/120.0.0.0 Safari/537.36"
        ),
        navigation_wait_until=getenv_str("NAV_WAIT_UNTIL", "networkidle"),
        page_load_timeout_ms=getenv_int("PAGE_LOAD_TIMEOUT_MS", 60000, 5000, 180000),
        page_close_timeout_ms=getenv_int("PAGE_CLOSE_TIMEOUT_MS", 1500, 100, 10000),
        proxy_server=getenv_str("PROXY_SERVER", "") or None,
        browser_args_extra=getenv_csv("BROWSER_ARGS_EXTRA", ""),
        headless=getenv_bool("BROWSER_HEADLESS", True),

        probe_timeout_ms=getenv_int("PROBE_TIMEOUT_MS", 15000, 1000, 120000),
        probe_max_attempts=getenv_int("PROBE_MAX_ATTEMPTS", 2, 1, 10),
        probe_retry_initial_delay_ms=getenv_int("PROBE_RETRY_INITIAL_DELAY_MS", 500, 0, 10000),
        probe_retry_max_delay_ms=getenv_int("PROBE_RETRY_MAX_DELAY_MS", 5000, 0, 60000),
        probe_retry_jitter_ms=getenv_int("PROBE_RETRY_JITTER_MS", 200, 0, 2000),
    )
    return cfg
