"""Tests for playback-info parsing and the two polling loops."""

import plistlib

import pytest

from airplay_remote.lib.polling import PlaybackInfo, PlaybackInfoError, parse_playback_info
from airplay_remote.lib.registry import Device
from airplay_remote.lib.session import SessionController

from conftest import wait_until


class TestParsePlaybackInfo:

    def test_xml_plist(self):
        body = plistlib.dumps({"position": 10.0, "duration": 100.0, "rate": 1.0,
                               "readyToPlay": True})
        info = parse_playback_info(body)
        assert info == PlaybackInfo(position=10.0, duration=100.0, rate=1.0, ready_to_play=True)
        assert info.playing

    def test_binary_plist(self):
        body = plistlib.dumps({"position": 5, "duration": 50, "rate": 0},
                              fmt=plistlib.FMT_BINARY)
        info = parse_playback_info(body)
        assert info.position == 5.0
        assert not info.playing
        assert not info.ready_to_play

    def test_nothing_loaded_yet(self):
        assert parse_playback_info(plistlib.dumps({"readyToPlay": False})) is None

    def test_garbage(self):
        with pytest.raises(PlaybackInfoError):
            parse_playback_info(b"not a plist")

    def test_truncated_xml(self):
        with pytest.raises(PlaybackInfoError):
            parse_playback_info(b'<?xml version="1.0"?><plist><dict><key>position')

    def test_not_a_dict(self):
        with pytest.raises(PlaybackInfoError):
            parse_playback_info(plistlib.dumps([1, 2, 3]))

    def test_missing_rate(self):
        with pytest.raises(PlaybackInfoError):
            parse_playback_info(plistlib.dumps({"position": 1.0, "duration": 2.0}))


class TestFinished:

    @pytest.mark.parametrize("position, duration, finished", [
        (100.0, 100.0, True),
        (0.0, 0.0, True),
        (99.999, 100.0, False),
        (100.0, 99.999, False),
        (100.00000001, 100.0, False),
    ])
    def test_exact_equality(self, position, duration, finished):
        info = PlaybackInfo(position=position, duration=duration, rate=1.0)
        assert info.finished is finished


class TestStatusLoop:

    @pytest.mark.asyncio
    async def test_reports_and_stops_at_end(self, receiver, listener):
        ctrl = SessionController(listener, ping_interval=30, poll_interval=0.01)
        receiver.playback = [
            {"position": 10.0, "duration": 100.0, "rate": 1.0, "readyToPlay": True},
            {"position": 100.0, "duration": 100.0, "rate": 0.0},
        ]
        await ctrl.connect(receiver.device)
        await ctrl.load_media("http://x/movie.mp4")
        await ctrl.status.wait()

        changes = [e for e in listener.events if e[0] in ("ready", "playback_changed")]
        assert changes == [
            ("ready",),
            ("playback_changed", True, 10.0),
            ("playback_changed", False, 100.0),
        ]
        assert not ctrl.is_polling
        assert len(receiver.paths("/playback-info")) == 2
        await ctrl.close()

    @pytest.mark.asyncio
    async def test_keeps_polling_just_short_of_duration(self, receiver, listener):
        ctrl = SessionController(listener, ping_interval=30, poll_interval=0.01)
        receiver.playback = [{"position": 99.999, "duration": 100.0, "rate": 0.0}]
        await ctrl.connect(receiver.device)
        await ctrl.load_media("http://x/movie.mp4")

        await wait_until(lambda: len(receiver.paths("/playback-info")) >= 5)
        assert ctrl.is_polling
        await ctrl.close()
        assert not ctrl.is_polling

    @pytest.mark.asyncio
    async def test_keeps_polling_until_position_appears(self, receiver, listener):
        ctrl = SessionController(listener, ping_interval=30, poll_interval=0.01)
        receiver.playback = [{}, {}, {"position": 3.0, "duration": 3.0, "rate": 1.0}]
        await ctrl.connect(receiver.device)
        await ctrl.load_media("http://x/movie.mp4")
        await ctrl.status.wait()

        changes = [e for e in listener.events if e[0] == "playback_changed"]
        assert changes == [("playback_changed", True, 3.0)]
        assert len(receiver.paths("/playback-info")) == 3
        await ctrl.close()

    @pytest.mark.asyncio
    async def test_parse_error_stops_silently(self, receiver, listener):
        ctrl = SessionController(listener, ping_interval=30, poll_interval=0.01)
        receiver.raw_playback = b"garbage"
        await ctrl.connect(receiver.device)
        await ctrl.load_media("http://x/movie.mp4")
        await ctrl.status.wait()

        assert not ctrl.is_polling
        assert "command_failed" not in listener.names()
        assert len(receiver.paths("/playback-info")) == 1
        await ctrl.close()

    @pytest.mark.asyncio
    async def test_http_error_reports_failure(self, receiver, listener):
        ctrl = SessionController(listener, ping_interval=30, poll_interval=0.01)
        receiver.status["/playback-info"] = 500
        await ctrl.connect(receiver.device)
        await ctrl.load_media("http://x/movie.mp4")
        await ctrl.status.wait()

        assert ("command_failed", "playback-info", "Cannot get playback info") in listener.events
        await ctrl.close()

    @pytest.mark.asyncio
    async def test_polled_rate_updates_playback_state(self, receiver, listener):
        ctrl = SessionController(listener, ping_interval=30, poll_interval=0.01)
        receiver.playback = [{"position": 1.0, "duration": 1.0, "rate": 0.0}]
        await ctrl.connect(receiver.device)
        assert ctrl.playback_state == "stopped"
        await ctrl.load_media("http://x/movie.mp4")
        await ctrl.status.wait()
        assert ctrl.playback_state == "paused"
        await ctrl.close()


class TestLivenessLoop:

    @pytest.mark.asyncio
    async def test_reschedules_while_ping_succeeds(self, receiver, listener):
        ctrl = SessionController(listener, ping_interval=0.02, poll_interval=0.01)
        await ctrl.connect(receiver.device)

        await wait_until(lambda: listener.names().count("connected") >= 3)
        assert ctrl.state == "connected"
        assert ctrl.liveness.running
        await ctrl.close()

    @pytest.mark.asyncio
    async def test_failed_ping_ends_session(self, receiver, listener):
        ctrl = SessionController(listener, ping_interval=0.02, poll_interval=0.01)
        receiver.status["/server-info"] = 503
        await ctrl.connect(receiver.device)
        await ctrl.liveness.wait()

        assert ctrl.session_id is None
        assert ctrl.current_device is None
        assert ctrl.state == "disconnected"
        assert listener.names()[-2:] == ["command_failed", "disconnected"]
        assert listener.events[-2][1] == "server-info"
        assert len(receiver.paths("/server-info")) == 1
        await ctrl.close()

    @pytest.mark.asyncio
    async def test_unreachable_device(self, unused_tcp_port, listener):
        ctrl = SessionController(listener, ping_interval=0.02, poll_interval=0.01)
        device = Device(id="gone", name="Gone", host="127.0.0.1", port=unused_tcp_port)
        await ctrl.connect(device)
        await ctrl.liveness.wait()

        assert ctrl.session_id is None
        assert listener.names() == ["device_selected", "command_failed", "disconnected"]
        assert listener.events[1][1] == "server-info"
        await ctrl.close()
