import asyncio

import aiohttp
import pytest

from quietcapture.workflows.enrich_config import READ_PROXY_PREFIX, EnrichConfig
from quietcapture.workflows.errors import FetchError
from quietcapture.workflows.page_fetch import (
    PageFetcher,
    decode_body,
    extract_candidates,
    is_noise_image,
    proxy_query_url,
    read_proxy_url,
)

from http_fakes import FakeResponse, FakeSession

ARTICLE = """
<html><head>
<title>Fallback Title</title>
<meta property="og:title" content="OG Title">
<meta name="twitter:title" content="TW Title">
<meta property="og:image" content="/images/hero.jpg">
<meta name="twitter:image" content="https://cdn.example.com/tw.png">
<link rel="image_src" href="https://cdn.example.com/hero.jpg?x">
</head><body>
<img src="/static/logo.png">
<img src="data:image/png;base64,AAAA">
<img data-src="/lazy/photo.webp">
<img src="/images/hero.jpg">
<img src="/uploads/banner.jpg">
</body></html>
"""


def test_extract_candidates_ranks_meta_then_img_tags():
    page = extract_candidates(ARTICLE, "https://www.example.com/post/1")

    assert page.title == "OG Title"
    assert page.title_source == "og:title"
    assert page.image_candidates == [
        "https://www.example.com/images/hero.jpg",
        "https://cdn.example.com/tw.png",
        "https://cdn.example.com/hero.jpg?x",
        "https://www.example.com/lazy/photo.webp",
        "https://www.example.com/uploads/banner.jpg",
    ]


def test_extract_candidates_title_fallback_chain():
    html = '<html><head><meta property="twitter:title" content="Tweet Title"><title>T</title></head></html>'
    assert extract_candidates(html, "https://example.com").title == "Tweet Title"

    html = "<html><head><title>  Only   Title </title></head></html>"
    assert extract_candidates(html, "https://example.com").title == "Only Title"


def test_extract_candidates_description_is_last_resort():
    html = '<html><head><meta name="description" content="A page about things"></head></html>'
    page = extract_candidates(html, "https://example.com")

    assert page.title == "A page about things"
    assert page.title_source == "description"
    assert page.meta_title is None


def test_extract_candidates_never_raises_on_garbage():
    page = extract_candidates("<<<>>><meta content=", "https://example.com")
    assert page.title is None
    assert page.image_candidates == []


def test_is_noise_image_matches_tokens_not_substrings():
    assert is_noise_image("https://x.com/ads/banner.png")
    assert is_noise_image("https://x.com/img/site-logo.svg")
    assert is_noise_image("https://pagead2.googlesyndication.com/pixel.gif")
    assert not is_noise_image("https://x.com/uploads/cover.png")
    assert not is_noise_image("https://x.com/header.png")


def test_proxy_query_url_encodes_target():
    assert (
        proxy_query_url("http://localhost:4000/fetch", "https://a.com/x?y=1")
        == "http://localhost:4000/fetch?url=https%3A%2F%2Fa.com%2Fx%3Fy%3D1"
    )
    assert proxy_query_url("http://p/fetch?key=1", "https://a.com").startswith("http://p/fetch?key=1&url=")
    assert proxy_query_url("http://p/fetch?url=", "https://a.com") == "http://p/fetch?url=https%3A%2F%2Fa.com"


def test_read_proxy_url_drops_scheme():
    assert read_proxy_url("https://example.com/a", READ_PROXY_PREFIX) == "https://r.jina.ai/http://example.com/a"


def test_decode_body_prefers_header_charset():
    assert decode_body(b"caf\xe9", {"Content-Type": "text/html; charset=latin-1"}) == "café"
    assert decode_body(b"", {}) == ""


def test_fetch_html_rejects_non_html_and_error_status():
    session = FakeSession(
        {
            "https://a.com/page": FakeResponse(200, b"<html><title>x</title></html>", "text/html; charset=utf-8"),
            "https://a.com/file.pdf": FakeResponse(200, b"%PDF", "application/pdf"),
            "https://a.com/gone": FakeResponse(410, b"gone"),
            "https://a.com/down": aiohttp.ClientConnectionError("refused"),
        }
    )
    fetcher = PageFetcher(session, EnrichConfig())

    async def run():
        html = await fetcher.fetch_html("https://a.com/page", 1000)
        assert "<title>x</title>" in html
        with pytest.raises(FetchError):
            await fetcher.fetch_html("https://a.com/file.pdf", 1000)
        with pytest.raises(FetchError) as excinfo:
            await fetcher.fetch_html("https://a.com/gone", 1000)
        assert excinfo.value.status == 410
        with pytest.raises(FetchError) as excinfo:
            await fetcher.fetch_html("https://a.com/down", 1000)
        assert excinfo.value.status is None

    asyncio.run(run())


def test_fetch_json_requires_an_object():
    session = FakeSession(
        {
            "http://p/ok": FakeResponse(200, b'{"title": "T", "image": null}', "application/json"),
            "http://p/list": FakeResponse(200, b"[1, 2]", "application/json"),
            "http://p/bad": FakeResponse(200, b"{nope", "application/json"),
        }
    )
    fetcher = PageFetcher(session)

    async def run():
        assert await fetcher.fetch_json("http://p/ok", 500) == {"title": "T", "image": None}
        for url in ("http://p/list", "http://p/bad"):
            with pytest.raises(FetchError):
                await fetcher.fetch_json(url, 500)

    asyncio.run(run())


def test_fetch_via_read_proxy_accepts_markup_labelled_plain_text():
    proxied = "https://r.jina.ai/http://example.com/a"
    session = FakeSession({proxied: FakeResponse(200, b"<html><head><title>Hi</title></head></html>", "text/plain")})
    fetcher = PageFetcher(session, EnrichConfig())

    html = asyncio.run(fetcher.fetch_via_read_proxy("https://example.com/a", 1000))

    assert "<title>Hi</title>" in html
    _, url, kwargs = session.calls[0]
    assert url == proxied
    assert kwargs["headers"]["X-Return-Format"] == "html"


def test_fetch_via_read_proxy_rejects_plain_prose():
    proxied = "https://r.jina.ai/http://example.com/a"
    session = FakeSession({proxied: FakeResponse(200, b"Title: Hi\n\nMarkdown Content:", "text/plain")})
    fetcher = PageFetcher(session, EnrichConfig())

    with pytest.raises(FetchError):
        asyncio.run(fetcher.fetch_via_read_proxy("https://example.com/a", 1000))
