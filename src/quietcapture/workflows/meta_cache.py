"""Durable URL -> (title, image, site) cache for resolved metadata."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from ..core.keys import K_IMAGE, K_SITE, K_TITLE
from .enrich_config import CACHE_STORAGE_KEY
from .enrich_utils import normalize_url

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    title: Optional[str]
    image: Optional[str]
    site: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheEntry":
        return cls(
            title=data.get(K_TITLE) or None,
            image=data.get(K_IMAGE) or None,
            site=str(data.get(K_SITE) or ""),
        )


class EnrichmentCache:
    """In-memory mirror of a JSON document, rewritten whole on every ``put``.

    Entries never expire. ``get`` is synchronous so callers can consult the
    cache without yielding to the event loop.
    """

    def __init__(self, path: Optional[Path] = None, *, storage_key: str = CACHE_STORAGE_KEY) -> None:
        self.path = path
        self.storage_key = storage_key
        self._entries: Dict[str, CacheEntry] = {}
        if path is not None and path.exists():
            self._entries = self._load(path)

    def _load(self, path: Path) -> Dict[str, CacheEntry]:
        try:
            document = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable metadata cache %s: %s", path, exc)
            return {}
        raw = document.get(self.storage_key) if isinstance(document, dict) else None
        if not isinstance(raw, dict):
            return {}
        entries: Dict[str, CacheEntry] = {}
        for url, data in raw.items():
            if isinstance(data, dict):
                entries[url] = CacheEntry.from_dict(data)
        logger.debug("Loaded %d cached metadata entries from %s", len(entries), path)
        return entries

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, url: object) -> bool:
        return isinstance(url, str) and normalize_url(url) in self._entries

    def get(self, url: str) -> Optional[CacheEntry]:
        return self._entries.get(normalize_url(url))

    def put(self, url: str, entry: CacheEntry) -> None:
        self._entries[normalize_url(url)] = entry
        logger.info("Cached metadata for %s", url)
        self.flush()

    def clear(self) -> int:
        dropped = len(self._entries)
        self._entries = {}
        self.flush()
        return dropped

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        return {url: entry.to_dict() for url, entry in self._entries.items()}

    def flush(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        document = {self.storage_key: self.to_dict()}
        self.path.write_text(json.dumps(document, ensure_ascii=False, indent=2), encoding="utf-8")


__all__ = ["CacheEntry", "EnrichmentCache"]
