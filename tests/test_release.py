import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from common.release import ReleaseFetcher

ASSET = "https://github.com/frida/frida/releases/download/{tag}/frida-server-{tag}-android-{arch}.xz"


def _feed(payload, status=200):
    async def handler(_: web.Request) -> web.Response:
        return web.json_response(payload, status=status)

    app = web.Application()
    app.router.add_get("/releases/latest", handler)
    return app


@pytest.mark.asyncio
async def test_latest_tag():
    async with TestServer(_feed({"tag_name": "16.1.0", "name": "Frida 16.1.0"})) as server:
        fetcher = ReleaseFetcher(str(server.make_url("/releases/latest")), ASSET)
        assert await fetcher.latest_tag() == "16.1.0"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload,status",
    [
        ({"message": "Not Found"}, 404),
        ({"name": "no tag"}, 200),
        (["16.1.0"], 200),
        ({"tag_name": ""}, 200),
    ],
)
async def test_missing_tag_yields_none(payload, status):
    async with TestServer(_feed(payload, status)) as server:
        fetcher = ReleaseFetcher(str(server.make_url("/releases/latest")), ASSET)
        assert await fetcher.latest_tag() is None


@pytest.mark.asyncio
async def test_unreachable_feed_yields_none():
    fetcher = ReleaseFetcher("http://127.0.0.1:9/releases/latest", ASSET, timeout=2)
    assert await fetcher.latest_tag() is None


def test_asset_url():
    fetcher = ReleaseFetcher("https://example.invalid", ASSET, arch="x86_64")
    assert fetcher.asset_url("16.1.0") == (
        "https://github.com/frida/frida/releases/download/16.1.0/frida-server-16.1.0-android-x86_64.xz"
    )
