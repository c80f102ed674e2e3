"""Image candidate validation (loads, decodes, meets minimum dimensions)."""

from __future__ import annotations

import asyncio
import base64
import binascii
import io
import logging
from typing import Optional, Tuple

import aiohttp

from .enrich_config import MAX_IMAGE_BYTES, PROXY_HEAD_TIMEOUT_S
from .errors import FetchError, ValidationTimeout

try:
    from PIL import Image  # type: ignore
except Exception:  # pragma: no cover - reported by `quietcapture doctor`
    Image = None  # type: ignore

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024


def image_dimensions(payload: bytes) -> Optional[Tuple[int, int]]:
    """Return ``(width, height)`` when ``payload`` decodes as a raster image."""

    if Image is None or not payload:
        return None
    try:
        with Image.open(io.BytesIO(payload)) as img:
            width, height = img.size
    except Exception:
        return None
    return int(width), int(height)


def _decode_data_url(url: str) -> Optional[bytes]:
    header, _, data = url.partition(",")
    if not header.lower().startswith("data:image/"):
        return None
    try:
        if header.lower().endswith(";base64"):
            return base64.b64decode(data, validate=False)
        return data.encode("latin-1")
    except (binascii.Error, UnicodeEncodeError):
        return None


class ImageValidator:
    """Decide whether a preview candidate is worth showing.

    ``validate`` never raises. Timeouts, HTTP failures, non-image bodies and
    undersized images (tracking pixels, favicons) all resolve to ``False``.
    """

    def __init__(self, session: aiohttp.ClientSession, *, max_bytes: int = MAX_IMAGE_BYTES) -> None:
        self.session = session
        self.max_bytes = max_bytes

    async def validate(
        self,
        url: str,
        deadline_ms: int,
        min_width: int = 0,
        min_height: int = 0,
    ) -> bool:
        if not url:
            return False
        try:
            dims = await self._dimensions_within(url, deadline_ms)
        except ValidationTimeout:
            logger.debug("Image probe timed out after %sms: %s", deadline_ms, url)
            return False
        except FetchError as exc:
            logger.debug("Image probe failed: %s", exc)
            return False
        except Exception as exc:
            logger.debug("Image probe error for %s: %s", url, exc, exc_info=True)
            return False
        if dims is None:
            return False
        width, height = dims
        ok = width >= min_width and height >= min_height
        if not ok:
            logger.debug("Image %s too small (%sx%s < %sx%s)", url, width, height, min_width, min_height)
        return ok

    async def _dimensions_within(self, url: str, deadline_ms: int) -> Optional[Tuple[int, int]]:
        if url.lower().startswith("data:"):
            payload = _decode_data_url(url)
            return image_dimensions(payload) if payload else None
        try:
            payload = await asyncio.wait_for(self._download(url), timeout=max(deadline_ms, 1) / 1000.0)
        except asyncio.TimeoutError as exc:
            raise ValidationTimeout(url) from exc
        if payload is None:
            return None
        return image_dimensions(payload)

    async def _download(self, url: str) -> Optional[bytes]:
        try:
            async with self.session.get(url, headers={"Accept": "image/*,*/*;q=0.8"}) as resp:
                if not 200 <= resp.status < 300:
                    raise FetchError(url, "image request failed", resp.status)
                body = bytearray()
                async for chunk in resp.content.iter_chunked(_CHUNK_SIZE):
                    body.extend(chunk)
                    if len(body) > self.max_bytes:
                        break
        except aiohttp.ClientError as exc:
            raise FetchError(url, f"network error: {exc}") from exc
        if len(body) > self.max_bytes:
            logger.debug("Image %s exceeds %s bytes", url, self.max_bytes)
            return None
        return bytes(body)

    async def head_is_image(self, url: str, timeout: float = PROXY_HEAD_TIMEOUT_S) -> bool:
        """HEAD ``url`` and accept any 2xx ``image/*`` response."""

        try:
            async with self.session.head(
                url,
                timeout=aiohttp.ClientTimeout(total=timeout),
                allow_redirects=True,
            ) as resp:
                if not 200 <= resp.status < 300:
                    return False
                content_type = (resp.headers.get("Content-Type") or "").lower()
        except (aiohttp.ClientError, asyncio.TimeoutError):
            return False
        return content_type.startswith("image/")


__all__ = ["ImageValidator", "image_dimensions"]
