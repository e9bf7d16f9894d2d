import aiohttp
from aiohttp import web

from beaconboard.board.projector import LeaderboardProjector
from beaconboard.net.mirror import LeaderboardMirror
from beaconboard.storage.records import FieldUpdate, MergePolicy


async def test_push_once_puts_rendered_text(aiohttp_server, memory_store):
    received = {}

    async def sink(request: web.Request):
        received["body"] = await request.text()
        received["auth"] = request.headers.get("Authorization")
        return web.Response(status=204)

    app = web.Application()
    app.router.add_put("/board.txt", sink)
    server = await aiohttp_server(app)

    memory_store.merge("k", "Hero", [FieldUpdate("total_ms", 5000, MergePolicy.MAX)])
    mirror = LeaderboardMirror(LeaderboardProjector(memory_store), str(server.make_url("/board.txt")), token="t0k")
    async with aiohttp.ClientSession() as http:
        assert await mirror.push_once(http) is True

    assert received["body"] == "[Hero] : 00:00:05:000 | 0\n"
    assert received["auth"] == "Bearer t0k"


async def test_push_failures_are_contained(aiohttp_server, memory_store):
    async def reject(_: web.Request):
        return web.Response(status=500)

    app = web.Application()
    app.router.add_put("/board.txt", reject)
    server = await aiohttp_server(app)

    mirror = LeaderboardMirror(LeaderboardProjector(memory_store), str(server.make_url("/board.txt")))
    async with aiohttp.ClientSession() as http:
        assert await mirror.push_once(http) is False
        # Nothing listening here.
        mirror.url = "http://127.0.0.1:9/board.txt"
        assert await mirror.push_once(http) is False


async def test_start_stop(memory_store):
    mirror = LeaderboardMirror(LeaderboardProjector(memory_store), "http://127.0.0.1:9/x", interval_sec=3600)
    await mirror.start()
    await mirror.stop()
    assert mirror._task.done()
