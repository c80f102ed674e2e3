"""Enrichment defaults (endpoints, deadlines, vocabularies, storage keys, paths).

Centralizes static defaults so the resolver and orchestrator have no embedded
magic numbers. ``EnrichConfig`` is the runtime view; callers can build their own
instance to override any of them.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Endpoints / headers
DEFAULT_PROXY_URL = "http://localhost:4000/fetch"
READ_PROXY_PREFIX = "https://r.jina.ai/http://"
FAVICON_ENDPOINT = "https://www.google.com/s2/favicons?domain={domain}&sz=64"
HDR_ACCEPT = "Accept"
HDR_USER_AGENT = "User-Agent"
ACCEPT_HTML = "text/html"
PROXY_USER_AGENT = "Mozilla/5.0 (compatible; QuietCapture/1.0)"
BROWSER_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)
LOCAL_PROXY_HOSTS = {"localhost", "127.0.0.1", "::1"}

# Paths (working-directory relative)
DEFAULT_DATA_DIR = Path("run") / "quietcapture"
DEFAULT_CACHE_PATH = DEFAULT_DATA_DIR / "meta_cache.json"
DEFAULT_STORE_PATH = DEFAULT_DATA_DIR / "capture_db.json"

# Persisted document keys (versioned)
CACHE_STORAGE_KEY = "meta_cache_v1"
STORE_STORAGE_KEY = "capture_app_db_v5"

# Deadlines (milliseconds)
FAST_PROXY_DEADLINE_MS = 1200
FAST_PROXY_IMAGE_DEADLINE_MS = 2000
DIRECT_FETCH_DEADLINE_MS = 4000
DIRECT_IMAGE_DEADLINE_MS = 2500
PROXY_RETRY_DEADLINE_MS = 4000
READ_PROXY_DEADLINE_MS = 5000
QUICK_TITLE_TIMEOUT_MS = 1000
QUICK_IMAGE_TIMEOUT_MS = 1200
QUICK_TITLE_PROXY_CAP_MS = 800
QUICK_IMAGE_PROXY_CAP_MS = 900
QUICK_IMAGE_VALIDATE_MS = 1200

# Proxy server
PROXY_UPSTREAM_TIMEOUT_S = 5.0
PROXY_HEAD_TIMEOUT_S = 3.0
DEFAULT_PROXY_PORT = 4000

# Image thresholds
PREVIEW_MIN_WIDTH = 200
PREVIEW_MIN_HEIGHT = 120
MAX_IMG_TAG_CANDIDATES = 12
MAX_IMAGE_PROBES = 3
MAX_IMAGE_BYTES = 8 * 1024 * 1024

# Orchestrator
DUPLICATE_WINDOW_MS = 10_000
MAX_AUTO_ATTEMPTS = 3
RETRY_BACKOFF_MS = 2000
ENRICH_FLASH_MS = 1400
MIN_TITLE_LENGTH = 3
PLACEHOLDER_TITLE = "Untitled link"
PASTED_IMAGE_TITLE = "Pasted Image"

# Vocabularies
TITLE_BOILERPLATE = (
    "price",
    "images",
    "mileage",
    "specs",
    "features",
    "overview",
    "review",
    "reviews",
    "news",
    "blogs",
    "blog",
    "updated",
    "latest",
    "model",
    "india",
    "official",
    "on-road",
    "on road",
)

URL_PATH_NOISE = {
    "blogs",
    "blog",
    "news",
    "reviews",
    "colors",
    "specs",
    "gallery",
    "images",
    "price",
    "posts",
    "category",
    "categories",
    "tag",
    "tags",
}

QUICK_TITLE_NOISE = ("home", "index", "welcome", "untitled", "page")

IMAGE_NOISE_PATTERN = r"logo|icon|sprite|(?<![a-z])ads?(?![a-z])|badge|googlesyndication|doubleclick"
FAVICON_PATTERN = r"s2/favicons|favicon"
IMAGE_EXTENSION_PATTERN = r"\.(jpeg|jpg|gif|png|webp)$"

SITE_TLD_SUFFIXES = ("com", "in", "co", "org", "net")


def _env_bool(name: str, default: str = "0") -> bool:
    raw = os.getenv(name, default)
    return str(raw).strip().lower() not in {"0", "false", "no", "off", ""}


def _env_int(name: str, default: int) -> int:
    try:
        raw = os.getenv(name, "")
        return int(raw) if raw.strip() else default
    except (TypeError, ValueError):
        return default


@dataclass
class EnrichConfig:
    """Runtime configuration for metadata resolution and persistence."""

    proxy_url: Optional[str] = DEFAULT_PROXY_URL
    fast_proxy_any_host: bool = False
    read_proxy_enabled: bool = True
    read_proxy_prefix: str = READ_PROXY_PREFIX
    user_agent: str = BROWSER_USER_AGENT
    accept_language: str = "en-US,en;q=0.9"
    cache_path: Optional[Path] = DEFAULT_CACHE_PATH
    store_path: Optional[Path] = DEFAULT_STORE_PATH
    preview_min_width: int = PREVIEW_MIN_WIDTH
    preview_min_height: int = PREVIEW_MIN_HEIGHT
    max_image_probes: int = MAX_IMAGE_PROBES
    max_auto_attempts: int = MAX_AUTO_ATTEMPTS
    retry_backoff_ms: int = RETRY_BACKOFF_MS
    flash_ms: int = ENRICH_FLASH_MS
    duplicate_window_ms: int = DUPLICATE_WINDOW_MS

    @property
    def proxy_enabled(self) -> bool:
        return bool(self.proxy_url)

    @classmethod
    def from_env(cls) -> "EnrichConfig":
        load_dotenv(override=False)
        proxy_url: Optional[str] = os.getenv("QUIETCAPTURE_PROXY_URL", DEFAULT_PROXY_URL).strip() or None
        if _env_bool("QUIETCAPTURE_PROXY_DISABLE"):
            proxy_url = None
        cache_path = os.getenv("QUIETCAPTURE_CACHE_PATH")
        store_path = os.getenv("QUIETCAPTURE_STORE_PATH")
        return cls(
            proxy_url=proxy_url,
            fast_proxy_any_host=_env_bool("QUIETCAPTURE_FAST_PROXY_ANY_HOST"),
            read_proxy_enabled=not _env_bool("QUIETCAPTURE_READ_PROXY_DISABLE"),
            user_agent=os.getenv("QUIETCAPTURE_USER_AGENT", BROWSER_USER_AGENT),
            cache_path=Path(cache_path) if cache_path else DEFAULT_CACHE_PATH,
            store_path=Path(store_path) if store_path else DEFAULT_STORE_PATH,
            max_auto_attempts=max(1, _env_int("QUIETCAPTURE_MAX_ATTEMPTS", MAX_AUTO_ATTEMPTS)),
        )


def proxy_port_from_env() -> int:
    return _env_int("QUIETCAPTURE_PROXY_PORT", DEFAULT_PROXY_PORT)
