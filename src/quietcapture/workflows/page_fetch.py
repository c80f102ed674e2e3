from __future__ import annotations

import asyncio
import json
import logging
import re
import warnings
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import quote, urljoin, urlparse

import aiohttp
from bs4 import BeautifulSoup, XMLParsedAsHTMLWarning  # type: ignore
from charset_normalizer import from_bytes

from .enrich_config import (
    ACCEPT_HTML,
    HDR_ACCEPT,
    HDR_USER_AGENT,
    IMAGE_NOISE_PATTERN,
    MAX_IMG_TAG_CANDIDATES,
    EnrichConfig,
)
from .enrich_utils import strip_scheme
from .errors import FetchError, ParseError

warnings.filterwarnings("ignore", category=XMLParsedAsHTMLWarning)

logger = logging.getLogger(__name__)

_IMAGE_NOISE_RE = re.compile(IMAGE_NOISE_PATTERN, re.I)
_SKIP_SCHEME_RE = re.compile(r"^(data:|javascript:)", re.I)
_MARKUP_HINT_RE = re.compile(r"<(html|head|meta|title|body)[\s>]", re.I)


def decode_body(body: bytes, headers: Optional[Mapping[str, str]] = None) -> str:
    """Decode HTTP bytes using charset header hints with charset-normalizer fallback."""

    if not body:
        return ""
    enc = None
    if headers:
        ct = headers.get("Content-Type", "") or headers.get("content-type", "")
        match = re.search(r"charset=([^\s;]+)", ct, re.I)
        if match:
            enc = match.group(1).strip(' "\'').lower()
    if enc:
        try:
            return body.decode(enc, errors="replace")
        except LookupError:
            pass
    result = from_bytes(body).best()
    if result is None:
        return body.decode("utf-8", errors="replace")
    return str(result)


def proxy_query_url(proxy_base: str, url: str) -> str:
    """Compose ``<proxy_base>?url=<percent-encoded url>``."""

    encoded = quote(url, safe="")
    if proxy_base.endswith("url="):
        return proxy_base + encoded
    joiner = "&" if "?" in proxy_base else "?"
    return f"{proxy_base}{joiner}url={encoded}"


def read_proxy_url(url: str, prefix: str) -> str:
    return prefix + strip_scheme(url)


@dataclass
class PageCandidates:
    """Title and ranked image candidates scraped from one HTML document."""

    title: Optional[str] = None
    title_source: Optional[str] = None
    image_candidates: List[str] = field(default_factory=list)

    @property
    def meta_title(self) -> Optional[str]:
        """Title from meta tags or ``<title>`` only, ignoring the description fallback."""

        if self.title_source == "description":
            return None
        return self.title


def _meta_content(soup: BeautifulSoup, *, prop: Optional[str] = None, name: Optional[str] = None) -> Optional[str]:
    attrs: Dict[str, str] = {}
    if prop:
        attrs["property"] = prop
    if name:
        attrs["name"] = name
    tag = soup.find("meta", attrs=attrs)
    if tag is None:
        return None
    content = (tag.get("content") or "").strip()
    return content or None


def _title_text(soup: BeautifulSoup) -> Optional[str]:
    if soup.title is None:
        return None
    text = " ".join(soup.title.get_text(" ", strip=True).split())
    return text or None


def is_noise_image(src: str) -> bool:
    return bool(_IMAGE_NOISE_RE.search(src or ""))


def _absolutize(src: str, base_url: str) -> Optional[str]:
    try:
        absolute = urljoin(base_url, src.strip())
        scheme = urlparse(absolute).scheme.lower()
    except ValueError:
        return None
    if scheme not in {"http", "https"}:
        return None
    return absolute


def _parse(html: str) -> BeautifulSoup:
    try:
        return BeautifulSoup(html or "", "lxml")
    except Exception as exc:  # pragma: no cover - lxml is permissive
        raise ParseError(str(exc)) from exc


def extract_candidates(html: str, base_url: str) -> PageCandidates:
    """Pull the best title and ranked preview-image URLs out of ``html``.

    Title order: ``og:title``, ``twitter:title``, ``<title>``, then the meta
    description as a last resort. Images: ``og:image``, ``twitter:image``,
    ``link[rel=image_src]``, then the first few ``<img>`` tags. Relative image
    URLs are made absolute against ``base_url`` and site chrome (logos, icons,
    ad pixels) is dropped.
    """

    try:
        soup = _parse(html)
    except ParseError as exc:
        logger.debug("Unparseable markup for %s: %s", base_url, exc)
        return PageCandidates()

    title: Optional[str] = None
    title_source: Optional[str] = None
    for source, value in (
        ("og:title", _meta_content(soup, prop="og:title")),
        ("twitter:title", _meta_content(soup, name="twitter:title") or _meta_content(soup, prop="twitter:title")),
        ("title", _title_text(soup)),
        ("description", _meta_content(soup, name="description") or _meta_content(soup, prop="og:description")),
    ):
        if value:
            title, title_source = value, source
            break

    ranked: List[str] = []
    for value in (
        _meta_content(soup, prop="og:image"),
        _meta_content(soup, name="twitter:image") or _meta_content(soup, prop="twitter:image"),
    ):
        if value:
            ranked.append(value)
    link = soup.find("link", rel="image_src")
    if link is not None and (link.get("href") or "").strip():
        ranked.append(link["href"])
    for img in soup.find_all("img", limit=MAX_IMG_TAG_CANDIDATES):
        src = (img.get("src") or img.get("data-src") or "").strip()
        if not src or _SKIP_SCHEME_RE.match(src):
            continue
        ranked.append(src)

    images: List[str] = []
    seen = set()
    for src in ranked:
        if is_noise_image(src):
            continue
        absolute = _absolutize(src, base_url)
        if not absolute or absolute in seen:
            continue
        seen.add(absolute)
        images.append(absolute)
    return PageCandidates(title=title, title_source=title_source, image_candidates=images)


def _looks_like_markup(text: str) -> bool:
    return bool(_MARKUP_HINT_RE.search((text or "")[:4096]))


class PageFetcher:
    """Deadline-bounded page and proxy fetches over a shared aiohttp session."""

    def __init__(self, session: aiohttp.ClientSession, config: Optional[EnrichConfig] = None) -> None:
        self.session = session
        self.config = config or EnrichConfig()

    async def _get(
        self,
        url: str,
        deadline_ms: int,
        headers: Optional[Dict[str, str]] = None,
    ) -> Tuple[int, str, bytes, Mapping[str, str]]:
        timeout = aiohttp.ClientTimeout(total=max(deadline_ms, 1) / 1000.0)
        try:
            async with self.session.get(url, timeout=timeout, headers=headers) as resp:
                status = resp.status
                content_type = resp.headers.get("Content-Type", "").split(";")[0].strip().lower()
                body = await resp.read()
                resp_headers = {"Content-Type": resp.headers.get("Content-Type", "")}
        except asyncio.TimeoutError as exc:
            raise FetchError(url, f"timed out after {deadline_ms}ms") from exc
        except aiohttp.ClientError as exc:
            raise FetchError(url, f"network error: {exc}") from exc
        if not 200 <= status < 300:
            raise FetchError(url, "upstream returned an error status", status)
        return status, content_type, body, resp_headers

    async def fetch_html(self, url: str, deadline_ms: int) -> str:
        """Return the page's HTML or raise :class:`FetchError`."""

        _, content_type, body, headers = await self._get(url, deadline_ms, {HDR_ACCEPT: ACCEPT_HTML})
        if "html" not in content_type:
            raise FetchError(url, f"not HTML ({content_type or 'no content type'})")
        return decode_body(body, headers)

    async def fetch_text(self, url: str, deadline_ms: int) -> str:
        """Decoded body of any 2xx response, whatever its content type."""

        _, _, body, headers = await self._get(url, deadline_ms, {HDR_ACCEPT: ACCEPT_HTML})
        return decode_body(body, headers)

    async def fetch_json(self, url: str, deadline_ms: int) -> Dict[str, Any]:
        _, _, body, headers = await self._get(url, deadline_ms, {HDR_ACCEPT: "application/json"})
        try:
            payload = json.loads(decode_body(body, headers) or "null")
        except json.JSONDecodeError as exc:
            raise FetchError(url, f"invalid JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise FetchError(url, "proxy payload is not an object")
        return payload

    async def fetch_via_read_proxy(self, url: str, deadline_ms: int) -> str:
        """Fetch ``url`` through the r.jina.ai read-proxy, asking for raw HTML."""

        proxied = read_proxy_url(url, self.config.read_proxy_prefix)
        _, content_type, body, headers = await self._get(
            proxied,
            deadline_ms,
            {HDR_ACCEPT: ACCEPT_HTML, "X-Return-Format": "html"},
        )
        text = decode_body(body, headers)
        if "html" in content_type:
            return text
        # The read-proxy labels rendered HTML as text/plain.
        if content_type.startswith("text/") and _looks_like_markup(text):
            return text
        raise FetchError(proxied, f"not HTML ({content_type or 'no content type'})")


def open_session(config: EnrichConfig, *, user_agent: Optional[str] = None) -> aiohttp.ClientSession:
    headers = {
        HDR_USER_AGENT: user_agent or config.user_agent,
        "Accept-Language": config.accept_language,
        "Accept-Encoding": "gzip, deflate",
    }
    return aiohttp.ClientSession(headers=headers)


__all__ = [
    "PageCandidates",
    "PageFetcher",
    "decode_body",
    "extract_candidates",
    "is_noise_image",
    "open_session",
    "proxy_query_url",
    "read_proxy_url",
]
