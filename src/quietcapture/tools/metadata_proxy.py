"""Metadata proxy server: ``GET /fetch?url=...`` -> ``{title, image, site}``.

Serves the fast remote path of the resolver. Run with ``quietcapture proxy``
or ``python -m quietcapture.tools.metadata_proxy``.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from quietcapture.core.keys import K_ERROR, K_IMAGE, K_SITE, K_TITLE
from quietcapture.workflows.enrich_config import (
    PROXY_HEAD_TIMEOUT_S,
    PROXY_UPSTREAM_TIMEOUT_S,
    PROXY_USER_AGENT,
    EnrichConfig,
    proxy_port_from_env,
)
from quietcapture.workflows.enrich_utils import site_label
from quietcapture.workflows.errors import FetchError
from quietcapture.workflows.image_probe import ImageValidator
from quietcapture.workflows.page_fetch import PageFetcher, extract_candidates, open_session

logger = logging.getLogger(__name__)


class MetadataScraper:
    """Fetch a page as the proxy and pick its title and first reachable image."""

    def __init__(self, fetcher: PageFetcher, validator: ImageValidator) -> None:
        self.fetcher = fetcher
        self.validator = validator

    async def scrape(self, url: str) -> Dict[str, Optional[str]]:
        html = await self.fetcher.fetch_text(url, int(PROXY_UPSTREAM_TIMEOUT_S * 1000))
        candidates = extract_candidates(html, url)
        image = None
        for candidate in candidates.image_candidates:
            if await self.validator.head_is_image(candidate, PROXY_HEAD_TIMEOUT_S):
                image = candidate
                break
        return {K_TITLE: candidates.meta_title, K_IMAGE: image, K_SITE: site_label(url)}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    config = EnrichConfig.from_env()
    session = open_session(config, user_agent=PROXY_USER_AGENT)
    app.state.scraper = MetadataScraper(PageFetcher(session, config), ImageValidator(session))
    try:
        yield
    finally:
        await session.close()


app = FastAPI(title="QuietCapture metadata proxy", version="1.0.0", lifespan=lifespan)


@app.middleware("http")
async def allow_any_origin(request: Request, call_next: Any) -> Any:
    response = await call_next(request)
    response.headers["Access-Control-Allow-Origin"] = "*"
    return response


def get_scraper(request: Request) -> MetadataScraper:
    return request.app.state.scraper


@app.get("/fetch")
async def fetch_metadata(url: Optional[str] = None, scraper: MetadataScraper = Depends(get_scraper)) -> JSONResponse:
    if not url:
        return JSONResponse({K_ERROR: "url required"}, status_code=400)
    try:
        payload = await scraper.scrape(url)
    except FetchError as exc:
        if exc.status is not None:
            logger.info("Upstream %s answered %s", url, exc.status)
            return JSONResponse({K_ERROR: "bad upstream"}, status_code=502)
        logger.info("Fetch failed for %s: %s", url, exc.reason)
        return JSONResponse({K_ERROR: "fetch failed"}, status_code=500)
    except Exception:
        logger.exception("Unexpected error scraping %s", url)
        return JSONResponse({K_ERROR: "fetch failed"}, status_code=500)
    return JSONResponse(payload)


def serve(host: str = "127.0.0.1", port: Optional[int] = None) -> None:
    port = port or proxy_port_from_env()
    logger.info("Metadata proxy listening on http://%s:%s", host, port)
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":  # pragma: no cover
    logging.basicConfig(level=logging.INFO)
    serve()
