"""Minimal persisted capture store: buckets, items and the pending-URL set.

The store is a plain in-memory document mirrored to one JSON file under the
versioned key ``capture_app_db_v5``. Every mutation is synchronous; the
orchestrator relies on that so no read-modify-write ever spans an ``await``.
"""

from __future__ import annotations

import json
import logging
import random
import re
import string
import time
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from ..core.keys import K_BUCKETS, K_ENRICH_FLASH, K_ITEMS, K_LAST_USED_BUCKET_ID, K_META_STATUS
from .enrich_config import (
    DUPLICATE_WINDOW_MS,
    IMAGE_EXTENSION_PATTERN,
    PASTED_IMAGE_TITLE,
    PLACEHOLDER_TITLE,
    STORE_STORAGE_KEY,
)
from .enrich_utils import is_http_url, site_label
from .errors import IllegalTransition
from .titles import infer_title_from_url, normalize_title

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.digits + string.ascii_lowercase
_IMAGE_EXT_RE = re.compile(IMAGE_EXTENSION_PATTERN, re.I)


def generate_id(length: int = 9) -> str:
    return "".join(random.choice(_ID_ALPHABET) for _ in range(length))


def now_ms() -> int:
    return int(time.time() * 1000)


class MetaStatus(str, Enum):
    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"

    def can_transition(self, target: "MetaStatus") -> bool:
        return target in _TRANSITIONS[self]

    def transition(self, target: "MetaStatus") -> "MetaStatus":
        if not self.can_transition(target):
            raise IllegalTransition(f"meta_status {self.value} -> {target.value} is not allowed")
        return target


_TRANSITIONS: Dict[MetaStatus, Set[MetaStatus]] = {
    MetaStatus.PENDING: {MetaStatus.PENDING, MetaStatus.DONE, MetaStatus.FAILED},
    MetaStatus.DONE: {MetaStatus.DONE, MetaStatus.PENDING},
    MetaStatus.FAILED: {MetaStatus.PENDING},
}


@dataclass
class CaptureItem:
    id: str
    bucket_id: str
    url: str
    title: str
    image: Optional[str] = None
    domain: str = ""
    site: str = ""
    meta_status: MetaStatus = MetaStatus.PENDING
    meta_attempts: int = 0
    enrich_flash: bool = False
    user_edited_title: bool = False
    user_edited_image: bool = False
    created_at: int = field(default_factory=now_ms)
    notes: str = ""
    price: str = ""
    status: str = "saved"
    is_archived: bool = False
    visit_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data[K_META_STATUS] = self.meta_status.value
        data[K_ENRICH_FLASH] = False
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CaptureItem":
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        try:
            kwargs[K_META_STATUS] = MetaStatus(kwargs.get(K_META_STATUS) or MetaStatus.DONE.value)
        except ValueError:
            kwargs[K_META_STATUS] = MetaStatus.DONE
        kwargs[K_ENRICH_FLASH] = False
        return cls(**kwargs)


@dataclass
class Bucket:
    id: str
    name: str
    emoji: str = ""
    view_mode: str = "calm"
    intent: str = ""
    created_at: int = field(default_factory=now_ms)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Bucket":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


def default_buckets() -> List[Bucket]:
    return [
        Bucket("b1", "Inspiration", "\U0001f4a1", "calm", ""),
        Bucket("b2", "Read Later", "\U0001f4da", "compact", "Things that make me smarter."),
        Bucket("b3", "Gear", "\U0001f4f7", "calm", "Buy only after 30 days of wanting."),
    ]


class CaptureStore:
    """Buckets and items (newest first) plus the in-memory pending-URL set."""

    def __init__(
        self,
        path: Optional[Path] = None,
        *,
        clock: Callable[[], int] = now_ms,
        duplicate_window_ms: int = DUPLICATE_WINDOW_MS,
        storage_key: str = STORE_STORAGE_KEY,
    ) -> None:
        self.path = path
        self.clock = clock
        self.duplicate_window_ms = duplicate_window_ms
        self.storage_key = storage_key
        self.buckets: List[Bucket] = default_buckets()
        self.items: List[CaptureItem] = []
        self.last_used_bucket_id: str = self.buckets[0].id
        self.pending_urls: Set[str] = set()
        if path is not None and path.exists():
            self.load()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> None:
        assert self.path is not None
        try:
            document = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable capture store %s: %s", self.path, exc)
            return
        raw = document.get(self.storage_key) if isinstance(document, dict) else None
        if not isinstance(raw, dict):
            return
        buckets = [Bucket.from_dict(b) for b in raw.get(K_BUCKETS) or [] if isinstance(b, dict)]
        if buckets:
            self.buckets = buckets
        self.items = [CaptureItem.from_dict(i) for i in raw.get(K_ITEMS) or [] if isinstance(i, dict)]
        self.last_used_bucket_id = raw.get(K_LAST_USED_BUCKET_ID) or self.buckets[0].id
        logger.debug("Loaded %d items from %s", len(self.items), self.path)

    def to_dict(self) -> Dict[str, Any]:
        return {
            K_BUCKETS: [b.to_dict() for b in self.buckets],
            K_ITEMS: [i.to_dict() for i in self.items],
            K_LAST_USED_BUCKET_ID: self.last_used_bucket_id,
        }

    def save(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        document = {self.storage_key: self.to_dict()}
        self.path.write_text(json.dumps(document, ensure_ascii=False, indent=2), encoding="utf-8")

    # ------------------------------------------------------------------
    # Buckets
    # ------------------------------------------------------------------

    def get_bucket(self, bucket_id: str) -> Optional[Bucket]:
        for bucket in self.buckets:
            if bucket.id == bucket_id:
                return bucket
        return None

    def add_bucket(self, name: str, emoji: str = "") -> Bucket:
        bucket = Bucket(generate_id(), name, emoji, created_at=self.clock())
        self.buckets.append(bucket)
        return bucket

    def delete_bucket(self, bucket_id: str) -> None:
        self.buckets = [b for b in self.buckets if b.id != bucket_id]
        self.items = [i for i in self.items if i.bucket_id != bucket_id]

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def get(self, item_id: str) -> Optional[CaptureItem]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def find_duplicate(self, url: str, bucket_id: str) -> Optional[CaptureItem]:
        """Existing item that a new capture of ``url`` should collapse into."""

        existing = next((i for i in self.items if i.url == url and i.bucket_id == bucket_id), None)
        if existing is None:
            return None
        if url in self.pending_urls:
            return existing
        if self.clock() - existing.created_at < self.duplicate_window_ms:
            return existing
        if existing.meta_status is MetaStatus.PENDING:
            return existing
        return None

    def add_item(
        self,
        content: str,
        bucket_id: str,
        *,
        kind: str = "url",
        initial_title: Optional[str] = None,
        initial_image: Optional[str] = None,
        fallback_image: Optional[str] = None,
    ) -> Tuple[CaptureItem, bool]:
        """Create an item or return the duplicate it collapses into.

        Returns ``(item, created)``. URL items are added to the pending set and
        start ``pending`` unless a quick probe already supplied a title or
        image; ``fallback_image`` (a favicon) never counts as such. Image
        captures start ``done`` and keep a remote image's address in ``url``.
        """

        # Image captures are finished on arrival, even when the image lives at a URL.
        is_url = kind != "image" and (kind == "url" or is_http_url(content))
        if is_url:
            duplicate = self.find_duplicate(content, bucket_id)
            if duplicate is not None:
                logger.info("Duplicate capture of %s collapsed into %s", content, duplicate.id)
                return duplicate, False
            self.pending_urls.add(content)

        site = site_label(content) if is_url else ""
        if is_url:
            inferred = initial_title or infer_title_from_url(content)
            title = normalize_title(inferred or "", site) or PLACEHOLDER_TITLE
        else:
            title = PASTED_IMAGE_TITLE

        if kind == "image":
            image: Optional[str] = content
        elif initial_image:
            image = initial_image
        elif _IMAGE_EXT_RE.search(content):
            image = content
        else:
            image = fallback_image

        meta_done = not is_url or bool(initial_title or initial_image)
        item = CaptureItem(
            id=generate_id(),
            bucket_id=bucket_id,
            url=content if is_url or is_http_url(content) else "",
            title=title,
            image=image,
            domain=site,
            site=site,
            meta_status=MetaStatus.DONE if meta_done else MetaStatus.PENDING,
            created_at=self.clock(),
        )
        self.items.insert(0, item)
        self.last_used_bucket_id = bucket_id
        logger.info("Captured %s as %s (%s)", content if is_url else "image", item.id, item.meta_status.value)
        return item, True

    def update_item(self, item_id: str, **updates: Any) -> Optional[CaptureItem]:
        """Apply ``updates`` in one step; returns ``None`` when the item is gone."""

        item = self.get(item_id)
        if item is None:
            logger.debug("Update for missing item %s ignored", item_id)
            return None
        target = updates.get(K_META_STATUS)
        if target is not None:
            updates[K_META_STATUS] = item.meta_status.transition(MetaStatus(target))
        for key, value in updates.items():
            if not hasattr(item, key):
                raise AttributeError(f"CaptureItem has no field {key!r}")
            setattr(item, key, value)
        return item

    def edit_title(self, item_id: str, title: str) -> Optional[CaptureItem]:
        return self.update_item(item_id, title=title, user_edited_title=True)

    def edit_image(self, item_id: str, image: Optional[str]) -> Optional[CaptureItem]:
        return self.update_item(item_id, image=image, user_edited_image=True)

    def remove_item(self, item_id: str) -> bool:
        before = len(self.items)
        self.items = [i for i in self.items if i.id != item_id]
        return len(self.items) != before

    def items_in(self, bucket_id: str, *, archived: bool = False) -> List[CaptureItem]:
        return [i for i in self.items if i.bucket_id == bucket_id and i.is_archived == archived]


__all__ = [
    "Bucket",
    "CaptureItem",
    "CaptureStore",
    "MetaStatus",
    "default_buckets",
    "generate_id",
]
