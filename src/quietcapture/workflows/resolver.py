"""Metadata resolution: an ordered chain of scraping strategies for one URL.

Each strategy returns a :class:`StrategyOutcome` instead of raising. The first
successful outcome wins, even when it found no title or no image; only a
strategy that could not fetch anything lets the chain move on.

Chain (when enabled by :class:`EnrichConfig`):

1. ``remote_proxy``        local metadata proxy with a short deadline
2. ``direct``              fetch the page HTML ourselves
3. ``remote_proxy_retry``  the configured proxy again, any host, longer deadline
4. ``read_proxy``          r.jina.ai rendering of the page
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import aiohttp

from .enrich_config import (
    DIRECT_FETCH_DEADLINE_MS,
    DIRECT_IMAGE_DEADLINE_MS,
    FAST_PROXY_DEADLINE_MS,
    FAST_PROXY_IMAGE_DEADLINE_MS,
    PROXY_RETRY_DEADLINE_MS,
    QUICK_IMAGE_PROXY_CAP_MS,
    QUICK_IMAGE_TIMEOUT_MS,
    QUICK_IMAGE_VALIDATE_MS,
    QUICK_TITLE_PROXY_CAP_MS,
    QUICK_TITLE_TIMEOUT_MS,
    READ_PROXY_DEADLINE_MS,
    EnrichConfig,
)
from .enrich_utils import hostname_of, is_local_endpoint, site_label
from .errors import EnrichmentError, FetchError, ResolutionExhausted
from .image_probe import ImageValidator
from .page_fetch import PageFetcher, extract_candidates, open_session, proxy_query_url
from .titles import extract_best_title, normalize_title

logger = logging.getLogger(__name__)


@dataclass
class ResolvedMetadata:
    title: Optional[str]
    image: Optional[str]
    site: str
    source: str

    def to_dict(self) -> Dict[str, Any]:
        return {"title": self.title, "image": self.image, "site": self.site, "source": self.source}


@dataclass
class StrategyOutcome:
    strategy: str
    ok: bool
    metadata: Optional[ResolvedMetadata] = None
    error: Optional[str] = None

    @classmethod
    def success(cls, strategy: str, metadata: ResolvedMetadata) -> "StrategyOutcome":
        return cls(strategy=strategy, ok=True, metadata=metadata)

    @classmethod
    def failure(cls, strategy: str, error: str) -> "StrategyOutcome":
        return cls(strategy=strategy, ok=False, error=error)


Strategy = Callable[[str], Awaitable[StrategyOutcome]]


class MetadataResolver:
    """Resolve a URL into a display ``(title, image)`` pair.

    Use as an async context manager to own an aiohttp session, or inject a
    ``fetcher``/``validator`` pair (tests, or a caller sharing its session).
    """

    def __init__(
        self,
        config: Optional[EnrichConfig] = None,
        *,
        fetcher: Optional[PageFetcher] = None,
        validator: Optional[ImageValidator] = None,
    ) -> None:
        self.config = config or EnrichConfig()
        self.fetcher = fetcher
        self.validator = validator
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> "MetadataResolver":
        if self.fetcher is None or self.validator is None:
            self._session = open_session(self.config)
            self.fetcher = self.fetcher or PageFetcher(self._session, self.config)
            self.validator = self.validator or ImageValidator(self._session)
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    # ------------------------------------------------------------------
    # Full resolution
    # ------------------------------------------------------------------

    def strategies(self) -> List[Tuple[str, Strategy]]:
        chain: List[Tuple[str, Strategy]] = []
        cfg = self.config
        if cfg.proxy_enabled and (cfg.fast_proxy_any_host or is_local_endpoint(cfg.proxy_url)):
            chain.append(("remote_proxy", self._from_fast_proxy))
        chain.append(("direct", self._from_direct_fetch))
        if cfg.proxy_enabled:
            chain.append(("remote_proxy_retry", self._from_proxy_retry))
        if cfg.read_proxy_enabled:
            chain.append(("read_proxy", self._from_read_proxy))
        return chain

    async def resolve(self, url: str) -> ResolvedMetadata:
        """Return the first usable result or raise :class:`ResolutionExhausted`."""

        attempts: List[Tuple[str, str]] = []
        for name, strategy in self.strategies():
            outcome = await self._run(name, strategy, url)
            if outcome.ok and outcome.metadata is not None:
                logger.debug("Resolved %s via %s", url, name)
                return outcome.metadata
            attempts.append((name, outcome.error or "unknown error"))
            logger.debug("Strategy %s failed for %s: %s", name, url, outcome.error)
        raise ResolutionExhausted(url, attempts)

    async def _run(self, name: str, strategy: Strategy, url: str) -> StrategyOutcome:
        try:
            return await strategy(url)
        except EnrichmentError as exc:
            return StrategyOutcome.failure(name, str(exc))
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            return StrategyOutcome.failure(name, f"{type(exc).__name__}: {exc}")

    async def _from_proxy_payload(
        self,
        name: str,
        url: str,
        deadline_ms: int,
        image_deadline_ms: int,
        min_width: int,
        min_height: int,
    ) -> StrategyOutcome:
        assert self.fetcher is not None and self.validator is not None
        try:
            payload = await self.fetcher.fetch_json(proxy_query_url(self.config.proxy_url or "", url), deadline_ms)
        except FetchError as exc:
            return StrategyOutcome.failure(name, str(exc))
        image = payload.get("image") or None
        if image and not await self.validator.validate(image, image_deadline_ms, min_width, min_height):
            image = None
        title = normalize_title(payload.get("title") or "", hostname_of(url))
        return StrategyOutcome.success(name, ResolvedMetadata(title, image, site_label(url), name))

    async def _from_fast_proxy(self, url: str) -> StrategyOutcome:
        return await self._from_proxy_payload(
            "remote_proxy",
            url,
            FAST_PROXY_DEADLINE_MS,
            FAST_PROXY_IMAGE_DEADLINE_MS,
            self.config.preview_min_width,
            self.config.preview_min_height,
        )

    async def _from_proxy_retry(self, url: str) -> StrategyOutcome:
        return await self._from_proxy_payload(
            "remote_proxy_retry",
            url,
            PROXY_RETRY_DEADLINE_MS,
            DIRECT_IMAGE_DEADLINE_MS,
            0,
            0,
        )

    async def _first_valid_image(
        self,
        candidates: Sequence[str],
        deadline_ms: int,
        min_width: int,
        min_height: int,
    ) -> Optional[str]:
        assert self.validator is not None
        for candidate in list(candidates)[: max(1, self.config.max_image_probes)]:
            if await self.validator.validate(candidate, deadline_ms, min_width, min_height):
                return candidate
        return None

    async def _from_direct_fetch(self, url: str) -> StrategyOutcome:
        assert self.fetcher is not None
        try:
            html = await self.fetcher.fetch_html(url, DIRECT_FETCH_DEADLINE_MS)
        except FetchError as exc:
            return StrategyOutcome.failure("direct", str(exc))
        candidates = extract_candidates(html, url)
        image = await self._first_valid_image(
            candidates.image_candidates,
            DIRECT_IMAGE_DEADLINE_MS,
            self.config.preview_min_width,
            self.config.preview_min_height,
        )
        title = normalize_title(candidates.title, hostname_of(url))
        return StrategyOutcome.success("direct", ResolvedMetadata(title, image, site_label(url), "direct"))

    async def _from_read_proxy(self, url: str) -> StrategyOutcome:
        assert self.fetcher is not None
        try:
            html = await self.fetcher.fetch_via_read_proxy(url, READ_PROXY_DEADLINE_MS)
        except FetchError as exc:
            return StrategyOutcome.failure("read_proxy", str(exc))
        candidates = extract_candidates(html, url)
        image = await self._first_valid_image(candidates.image_candidates, DIRECT_IMAGE_DEADLINE_MS, 0, 0)
        title = normalize_title(candidates.meta_title, hostname_of(url))
        return StrategyOutcome.success("read_proxy", ResolvedMetadata(title, image, site_label(url), "read_proxy"))

    # ------------------------------------------------------------------
    # Quick probes (used before an item exists)
    # ------------------------------------------------------------------

    async def fetch_title_quick(self, url: str, timeout_ms: int = QUICK_TITLE_TIMEOUT_MS) -> Optional[str]:
        """Best-effort title within ``timeout_ms``; ``None`` on any failure."""

        try:
            return await asyncio.wait_for(self._quick_title(url, timeout_ms), timeout=timeout_ms / 1000.0)
        except (asyncio.TimeoutError, EnrichmentError, aiohttp.ClientError, ValueError) as exc:
            logger.debug("Quick title probe gave up on %s: %s", url, exc)
            return None

    async def _quick_title(self, url: str, timeout_ms: int) -> Optional[str]:
        assert self.fetcher is not None
        if self.config.proxy_enabled:
            try:
                payload = await self.fetcher.fetch_json(
                    proxy_query_url(self.config.proxy_url or "", url),
                    min(timeout_ms, QUICK_TITLE_PROXY_CAP_MS),
                )
                if payload.get("title"):
                    return extract_best_title(payload["title"], url)
            except FetchError as exc:
                logger.debug("Quick title proxy miss for %s: %s", url, exc)
        html = await self.fetcher.fetch_html(url, timeout_ms)
        candidates = extract_candidates(html, url)
        return extract_best_title(candidates.meta_title, url)

    async def fetch_image_quick(self, url: str, timeout_ms: int = QUICK_IMAGE_TIMEOUT_MS) -> Optional[str]:
        """Best-effort preview image within ``timeout_ms``; ``None`` on any failure."""

        try:
            return await asyncio.wait_for(self._quick_image(url, timeout_ms), timeout=timeout_ms / 1000.0)
        except (asyncio.TimeoutError, EnrichmentError, aiohttp.ClientError, ValueError) as exc:
            logger.debug("Quick image probe gave up on %s: %s", url, exc)
            return None

    async def _quick_image(self, url: str, timeout_ms: int) -> Optional[str]:
        assert self.fetcher is not None and self.validator is not None
        if self.config.proxy_enabled:
            try:
                payload = await self.fetcher.fetch_json(
                    proxy_query_url(self.config.proxy_url or "", url),
                    min(timeout_ms, QUICK_IMAGE_PROXY_CAP_MS),
                )
                image = payload.get("image")
                if image and await self.validator.validate(
                    image,
                    QUICK_IMAGE_VALIDATE_MS,
                    self.config.preview_min_width,
                    self.config.preview_min_height,
                ):
                    return image
            except FetchError as exc:
                logger.debug("Quick image proxy miss for %s: %s", url, exc)
        html = await self.fetcher.fetch_html(url, timeout_ms)
        candidates = extract_candidates(html, url)
        if not candidates.image_candidates:
            return None
        candidate = candidates.image_candidates[0]
        if await self.validator.validate(candidate, QUICK_IMAGE_VALIDATE_MS):
            return candidate
        return None


__all__ = ["MetadataResolver", "ResolvedMetadata", "StrategyOutcome"]
