"""Shared fixtures: a fake AirPlay receiver served by aiohttp and a recording listener."""

import asyncio
import plistlib

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from airplay_remote.lib import config
from airplay_remote.lib.digest import digest_response, parse_challenge
from airplay_remote.lib.listener import CastingListener
from airplay_remote.lib.registry import Device

REALM = "AirPlay"
NONCE = "MTMzNzEzMzc6MTMzNzEzMzc="


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Never pick up a developer's config.json during tests."""
    monkeypatch.setenv(config.ENV_CONFIG_PATH, str(tmp_path / "missing.json"))
    monkeypatch.chdir(tmp_path)
    config.reload_config()
    yield
    config.reload_config()


class FakeReceiver:
    """Just enough of an AirPlay receiver to exercise the client.

    ``playback`` is a list of dicts served one per playback-info request
    (the last one repeats).  ``status`` overrides the HTTP status per path
    and ``delay`` holds the response for that many seconds.
    Set ``password`` to demand digest auth on every request.
    """

    def __init__(self):
        self.requests: list[dict] = []
        self.playback: list[dict] = []
        self.status: dict[str, int] = {}
        self.delay: dict[str, float] = {}
        self.password: str | None = None
        self.raw_playback: bytes | None = None
        self._served = 0

    def make_app(self) -> web.Application:
        app = web.Application()
        app.router.add_route("*", "/{tail:.*}", self.handle)
        return app

    def paths(self, path: str | None = None) -> list[str]:
        return [r["path"] for r in self.requests if path is None or r["path"] == path]

    def last(self, path: str) -> dict:
        return [r for r in self.requests if r["path"] == path][-1]

    def _authorized(self, request: web.Request) -> bool:
        header = request.headers.get("Authorization")
        if not header:
            return False
        params = parse_challenge(header)
        if not params.get("uri", "").endswith(request.path_qs):
            return False
        expected = digest_response(params.get("username", ""), REALM, self.password,
                                   request.method, params["uri"], NONCE)
        return params.get("response") == expected

    async def handle(self, request: web.Request) -> web.Response:
        body = await request.read()
        self.requests.append({
            "method": request.method,
            "path": request.path,
            "path_qs": request.path_qs,
            "headers": request.headers.copy(),
            "body": body.decode("utf-8", "replace"),
        })
        if request.path in self.delay:
            await asyncio.sleep(self.delay[request.path])
        if self.password is not None and not self._authorized(request):
            return web.Response(status=401, headers={
                "WWW-Authenticate": f'Digest realm="{REALM}", nonce="{NONCE}"'})

        status = self.status.get(request.path, 200)
        if status != 200:
            return web.Response(status=status)

        if request.path == "/playback-info":
            if self.raw_playback is not None:
                return web.Response(body=self.raw_playback)
            if not self.playback:
                payload = {}
            else:
                payload = self.playback[min(self._served, len(self.playback) - 1)]
                self._served += 1
            return web.Response(body=plistlib.dumps(payload),
                                content_type="text/x-apple-plist+xml")
        return web.Response(status=200)


@pytest_asyncio.fixture
async def receiver():
    fake = FakeReceiver()
    server = TestServer(fake.make_app())
    await server.start_server()
    fake.server = server
    fake.device = Device(id="fake-receiver", name="Fake", host=server.host, port=server.port)
    yield fake
    await server.close()


class RecordingListener(CastingListener):
    def __init__(self):
        self.events: list[tuple] = []

    def _record(self, *event):
        self.events.append(event)

    def on_device_detected(self, device):
        self._record("device_detected", device)

    def on_device_removed(self, device):
        self._record("device_removed", device)

    def on_device_selected(self, device):
        self._record("device_selected", device)

    def on_connected(self, device):
        self._record("connected", device)

    def on_disconnected(self):
        self._record("disconnected")

    def on_ready(self):
        self._record("ready")

    def on_playback_changed(self, playing, position):
        self._record("playback_changed", playing, position)

    def on_command_failed(self, command, reason):
        self._record("command_failed", command, reason)

    def names(self) -> list[str]:
        return [e[0] for e in self.events]


@pytest.fixture
def listener():
    return RecordingListener()


async def wait_until(predicate, timeout: float = 2.0):
    """Poll *predicate* until it is true or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not met within %.1fs" % timeout)
        await asyncio.sleep(0.01)
