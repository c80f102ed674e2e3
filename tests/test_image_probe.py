import asyncio
import base64

import aiohttp

from quietcapture.workflows.image_probe import ImageValidator, image_dimensions

from http_fakes import FakeResponse, FakeSession, jpeg_bytes, png_bytes

HERO = "https://cdn.example.com/hero.png"
PIXEL = "https://cdn.example.com/pixel.png"


def _validator(routes, **kwargs):
    return ImageValidator(FakeSession(routes), **kwargs)


def test_image_dimensions_reads_png_and_rejects_junk():
    assert image_dimensions(png_bytes(320, 180)) == (320, 180)
    assert image_dimensions(b"<html>not an image</html>") is None
    assert image_dimensions(b"") is None


def test_validate_enforces_minimum_dimensions():
    validator = _validator(
        {
            HERO: FakeResponse(200, png_bytes(640, 360), "image/png"),
            PIXEL: FakeResponse(200, png_bytes(16, 16), "image/png"),
        }
    )

    async def run():
        assert await validator.validate(HERO, 1000, 200, 120)
        assert not await validator.validate(PIXEL, 1000, 200, 120)
        # No minimum: any decodable image passes.
        assert await validator.validate(PIXEL, 1000)

    asyncio.run(run())


def test_validate_reads_streamed_body_to_the_end():
    # Large comment segment pushes the JPEG size header past the first network chunk.
    photo = jpeg_bytes(800, 600, comment=b"x" * 60000)
    validator = _validator({HERO: FakeResponse(200, photo, "image/jpeg", chunk_size=16 * 1024)})

    assert asyncio.run(validator.validate(HERO, 1000, 200, 120)) is True


def test_validate_is_false_on_http_and_network_failures():
    validator = _validator(
        {
            "https://x.com/missing.png": FakeResponse(404, b""),
            "https://x.com/page.png": FakeResponse(200, b"<html></html>", "text/html"),
            "https://x.com/refused.png": aiohttp.ClientConnectionError("refused"),
        }
    )

    async def run():
        for url in ("https://x.com/missing.png", "https://x.com/page.png", "https://x.com/refused.png", ""):
            assert await validator.validate(url, 1000) is False

    asyncio.run(run())


def test_validate_times_out_without_raising():
    validator = _validator({HERO: FakeResponse(200, png_bytes(640, 360), "image/png", delay=0.5)})

    assert asyncio.run(validator.validate(HERO, 50)) is False


def test_validate_rejects_oversized_payloads():
    whole = _validator({HERO: FakeResponse(200, png_bytes(640, 360), "image/png")}, max_bytes=64)
    chunked = _validator({HERO: FakeResponse(200, png_bytes(640, 360), "image/png", chunk_size=16)}, max_bytes=64)

    assert asyncio.run(whole.validate(HERO, 1000)) is False
    assert asyncio.run(chunked.validate(HERO, 1000)) is False


def test_validate_decodes_inline_data_urls_locally():
    session = FakeSession()
    validator = ImageValidator(session)
    data_url = "data:image/png;base64," + base64.b64encode(png_bytes(300, 200)).decode("ascii")

    assert asyncio.run(validator.validate(data_url, 1000, 200, 120)) is True
    assert session.calls == []


def test_head_is_image_checks_status_and_content_type():
    session = FakeSession(
        head_routes={
            HERO: FakeResponse(200, b"", "image/jpeg"),
            "https://x.com/page": FakeResponse(200, b"", "text/html"),
            "https://x.com/gone.png": FakeResponse(404, b"", "image/png"),
        }
    )
    validator = ImageValidator(session)

    async def run():
        assert await validator.head_is_image(HERO)
        assert not await validator.head_is_image("https://x.com/page")
        assert not await validator.head_is_image("https://x.com/gone.png")

    asyncio.run(run())
    assert session.calls[0][2]["allow_redirects"] is True
