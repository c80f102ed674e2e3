"""Enrichment orchestration: cache lookup, resolution, merge, retry, flash.

The orchestrator owns no state of its own beyond task bookkeeping. Items live
in the :class:`CaptureStore`, resolved metadata in the :class:`EnrichmentCache`.
Each enrichment attempt ends in exactly one synchronous ``update_item`` call.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from ..core.keys import K_ENRICH_FLASH, K_IMAGE, K_META_ATTEMPTS, K_META_STATUS, K_SITE, K_TITLE
from .enrich_config import MIN_TITLE_LENGTH, PLACEHOLDER_TITLE, EnrichConfig
from .enrich_utils import favicon_url, is_favicon, site_label
from .errors import EnrichmentError, ResolutionExhausted
from .meta_cache import CacheEntry, EnrichmentCache
from .resolver import MetadataResolver
from .store import CaptureItem, CaptureStore, MetaStatus
from .titles import infer_title_from_url

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


def should_replace_title(item: CaptureItem, new_title: Optional[str], inferred: Optional[str]) -> bool:
    if item.user_edited_title or not new_title:
        return False
    current = item.title or ""
    return (
        not current
        or current == PLACEHOLDER_TITLE
        or (inferred is not None and current == inferred)
        or len(current) < MIN_TITLE_LENGTH
    )


def should_replace_image(item: CaptureItem, new_image: Optional[str]) -> bool:
    if item.user_edited_image or not new_image:
        return False
    return not item.image or is_favicon(item.image)


def merge_updates(item: CaptureItem, entry: CacheEntry, url: str) -> Dict[str, Any]:
    """Field updates that apply ``entry`` to ``item`` under the merge rules."""

    updates: Dict[str, Any] = {K_SITE: entry.site or site_label(url), K_META_STATUS: MetaStatus.DONE}
    if should_replace_title(item, entry.title, infer_title_from_url(url)):
        updates[K_TITLE] = entry.title
    if should_replace_image(item, entry.image):
        updates[K_IMAGE] = entry.image
    return updates


class EnrichmentOrchestrator:
    def __init__(
        self,
        store: CaptureStore,
        cache: EnrichmentCache,
        resolver: MetadataResolver,
        config: Optional[EnrichConfig] = None,
        *,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.store = store
        self.cache = cache
        self.resolver = resolver
        self.config = config or resolver.config
        self._sleep = sleep
        self._tasks: Set[asyncio.Task] = set()
        self._flash_tasks: Dict[str, asyncio.Task] = {}

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    async def capture(self, url: str, bucket_id: str, *, quick: bool = True) -> CaptureItem:
        """Create (or dedupe into) an item for ``url`` and start enrichment."""

        duplicate = self.store.find_duplicate(url, bucket_id)
        if duplicate is not None:
            logger.info("Capture of %s matches existing item %s", url, duplicate.id)
            return duplicate

        title: Optional[str] = None
        image: Optional[str] = None
        if quick:
            title, image = await asyncio.gather(
                self.resolver.fetch_title_quick(url),
                self.resolver.fetch_image_quick(url),
            )
        item, created = self.store.add_item(
            url,
            bucket_id,
            initial_title=title,
            initial_image=image,
            fallback_image=favicon_url(url),
        )
        if not created:
            return item
        if item.meta_status is MetaStatus.DONE:
            self.store.pending_urls.discard(url)
        else:
            self.schedule_enrichment(item.id, url)
        return item

    def capture_image(self, data: str, bucket_id: str) -> CaptureItem:
        item, _ = self.store.add_item(data, bucket_id, kind="image")
        return item

    # ------------------------------------------------------------------
    # Enrichment
    # ------------------------------------------------------------------

    def schedule_enrichment(self, item_id: str, url: str, delay_ms: int = 0) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(self._enrich_later(item_id, url, delay_ms))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _enrich_later(self, item_id: str, url: str, delay_ms: int) -> None:
        if delay_ms > 0:
            await self._sleep(delay_ms / 1000.0)
        await self.enrich(item_id, url)

    async def enrich(self, item_id: str, url: str) -> None:
        """Run one enrichment attempt; failures are recorded, never raised."""

        try:
            item = self.store.get(item_id)
            if item is None:
                logger.debug("Item %s vanished before enrichment", item_id)
                return
            if item.meta_status is MetaStatus.FAILED:
                self.store.update_item(item_id, meta_status=MetaStatus.PENDING)

            cached = self.cache.get(url)
            if cached is not None:
                logger.info("Cache hit for %s", url)
                self._merge(item_id, url, cached, flash=False)
                return

            resolved = await self.resolver.resolve(url)
            entry = CacheEntry(title=resolved.title, image=resolved.image, site=resolved.site or site_label(url))
            self.cache.put(url, entry)
            self._merge(item_id, url, entry, flash=True)
        except ResolutionExhausted as exc:
            logger.warning("%s", exc)
            self._record_failure(item_id, url)
        except (EnrichmentError, OSError, ValueError) as exc:
            logger.warning("Enrichment of %s failed: %s", url, exc)
            self._record_failure(item_id, url)
        finally:
            self.store.pending_urls.discard(url)

    def _merge(self, item_id: str, url: str, entry: CacheEntry, *, flash: bool) -> None:
        item = self.store.get(item_id)
        if item is None:
            return
        updates = merge_updates(item, entry, url)
        if flash:
            updates[K_ENRICH_FLASH] = True
        self.store.update_item(item_id, **updates)
        if flash:
            self._start_flash(item_id)

    def _record_failure(self, item_id: str, url: str) -> None:
        item = self.store.get(item_id)
        if item is None or not item.meta_status.can_transition(MetaStatus.FAILED):
            return
        attempts = item.meta_attempts + 1
        self.store.update_item(item_id, **{K_META_STATUS: MetaStatus.FAILED, K_META_ATTEMPTS: attempts})
        if attempts < self.config.max_auto_attempts:
            delay_ms = self.config.retry_backoff_ms * attempts
            logger.info("Retrying %s in %sms (attempt %s)", url, delay_ms, attempts + 1)
            self.schedule_enrichment(item_id, url, delay_ms)

    def _start_flash(self, item_id: str) -> None:
        previous = self._flash_tasks.pop(item_id, None)
        if previous is not None:
            previous.cancel()
        task = asyncio.get_running_loop().create_task(self._clear_flash(item_id))
        self._flash_tasks[item_id] = task

    async def _clear_flash(self, item_id: str) -> None:
        try:
            await self._sleep(self.config.flash_ms / 1000.0)
        except asyncio.CancelledError:
            return
        self.store.update_item(item_id, enrich_flash=False)
        if self._flash_tasks.get(item_id) is asyncio.current_task():
            del self._flash_tasks[item_id]

    # ------------------------------------------------------------------
    # Manual control
    # ------------------------------------------------------------------

    def retry(self, item_id: str) -> Optional[CaptureItem]:
        """Re-arm enrichment for ``item_id`` regardless of its attempt count."""

        item = self.store.get(item_id)
        if item is None or not item.url:
            return None
        self.store.update_item(item_id, **{K_META_STATUS: MetaStatus.PENDING, K_META_ATTEMPTS: 0})
        self.store.pending_urls.add(item.url)
        self.schedule_enrichment(item_id, item.url)
        return item

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def shutdown(self) -> None:
        for item_id, task in list(self._flash_tasks.items()):
            task.cancel()
            self.store.update_item(item_id, enrich_flash=False)
        self._flash_tasks.clear()
        self.store.save()


__all__ = [
    "EnrichmentOrchestrator",
    "merge_updates",
    "should_replace_image",
    "should_replace_title",
]
