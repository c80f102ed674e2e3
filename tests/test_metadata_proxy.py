import asyncio

from fastapi.testclient import TestClient

from quietcapture.tools import metadata_proxy
from quietcapture.tools.metadata_proxy import MetadataScraper, app, get_scraper
from quietcapture.workflows.errors import FetchError

from http_fakes import FakeFetcher, FakeValidator


class StubScraper:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.urls = []

    async def scrape(self, url):
        self.urls.append(url)
        if self.error is not None:
            raise self.error
        return self.result


def _client(scraper):
    app.dependency_overrides[get_scraper] = lambda: scraper
    return TestClient(app)


def teardown_function(_):
    app.dependency_overrides.clear()


def test_missing_url_is_a_400_with_cors_header():
    client = _client(StubScraper())
    resp = client.get("/fetch")

    assert resp.status_code == 400
    assert resp.json() == {"error": "url required"}
    assert resp.headers["access-control-allow-origin"] == "*"


def test_successful_scrape_returns_payload():
    scraper = StubScraper({"title": "Hello", "image": "https://cdn.a.com/x.jpg", "site": "a.com"})
    client = _client(scraper)

    resp = client.get("/fetch", params={"url": "https://www.a.com/post?id=1"})

    assert resp.status_code == 200
    assert resp.json() == {"title": "Hello", "image": "https://cdn.a.com/x.jpg", "site": "a.com"}
    assert scraper.urls == ["https://www.a.com/post?id=1"]
    assert resp.headers["access-control-allow-origin"] == "*"


def test_upstream_error_status_maps_to_502():
    client = _client(StubScraper(error=FetchError("https://a.com", "upstream returned an error status", 503)))
    resp = client.get("/fetch", params={"url": "https://a.com"})

    assert resp.status_code == 502
    assert resp.json() == {"error": "bad upstream"}


def test_other_failures_map_to_500():
    for error in (FetchError("https://a.com", "timed out after 5000ms"), RuntimeError("boom")):
        client = _client(StubScraper(error=error))
        resp = client.get("/fetch", params={"url": "https://a.com"})

        assert resp.status_code == 500
        assert resp.json() == {"error": "fetch failed"}


def test_scraper_picks_first_head_valid_candidate():
    url = "https://www.a.com/post"
    html = """
    <html><head>
    <meta property="og:title" content="Post Title">
    <meta property="og:image" content="https://cdn.a.com/og.jpg">
    </head><body><img src="/static/logo.png"><img src="/img/one.jpg"><img src="/img/two.jpg"></body></html>
    """
    fetcher = FakeFetcher(html_routes={url: html})
    validator = FakeValidator(head_valid=["https://www.a.com/img/one.jpg", "https://www.a.com/img/two.jpg"])
    scraper = MetadataScraper(fetcher, validator)

    payload = asyncio.run(scraper.scrape(url))

    assert payload == {"title": "Post Title", "image": "https://www.a.com/img/one.jpg", "site": "a.com"}
    assert [c[0] for c in validator.calls] == ["https://cdn.a.com/og.jpg", "https://www.a.com/img/one.jpg"]
    assert fetcher.calls[0][2] == int(metadata_proxy.PROXY_UPSTREAM_TIMEOUT_S * 1000)


def test_scraper_title_ignores_description():
    url = "https://a.com/x"
    fetcher = FakeFetcher(html_routes={url: '<meta name="description" content="Only a description">'})
    scraper = MetadataScraper(fetcher, FakeValidator())

    assert asyncio.run(scraper.scrape(url)) == {"title": None, "image": None, "site": "a.com"}
