"""
Polling engine — the two self-rescheduling loops bound to a session.

LivenessLoop   GET server-info every 30 s while connected.  The first probe
               runs as soon as the loop starts; any failure ends the session.
StatusLoop     GET playback-info every 200 ms after load_media.  Reports
               position and play/pause to the listener and stops once the
               position reaches the duration, on failure, or on a payload it
               cannot parse.

Each loop is a single asyncio task owned by the SessionController.  Both
capture the session id they were started for and drop any result that
arrives after that session stopped being current.
"""

import asyncio
import logging
import plistlib
from dataclasses import dataclass
from xml.parsers.expat import ExpatError

from .config import cfg
from .transport import TransportError

logger = logging.getLogger(__name__)

PING_INTERVAL = 30     # seconds between liveness probes
POLL_INTERVAL = 0.2    # seconds between playback-info requests


class PlaybackInfoError(ValueError):
    """playback-info body was not a usable property list."""


@dataclass(frozen=True)
class PlaybackInfo:
    position: float
    duration: float
    rate: float
    ready_to_play: bool = False

    @property
    def playing(self) -> bool:
        return self.rate > 0

    @property
    def finished(self) -> bool:
        # Exact comparison: a receiver that stops at 99.999 of 100.0 keeps polling.
        return self.position == self.duration


def parse_playback_info(body: bytes) -> PlaybackInfo | None:
    """Parse a playback-info plist (XML or binary).

    Returns None when the receiver has nothing loaded yet (no ``position``).
    Raises PlaybackInfoError for anything malformed.
    """
    try:
        root = plistlib.loads(body)
    except (plistlib.InvalidFileException, ExpatError, ValueError, TypeError) as e:
        raise PlaybackInfoError(f"invalid plist: {e}") from e
    if not isinstance(root, dict):
        raise PlaybackInfoError(f"expected a dict, got {type(root).__name__}")
    if "position" not in root:
        return None
    try:
        return PlaybackInfo(
            position=float(root["position"]),
            duration=float(root["duration"]),
            rate=float(root["rate"]),
            ready_to_play=bool(root.get("readyToPlay", False)),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise PlaybackInfoError(f"bad playback-info field: {e!r}") from e


class PollingLoop:
    """One self-rescheduling task.  Subclasses implement _run()."""

    command = ""

    def __init__(self, controller, interval: float):
        self.controller = controller
        self.interval = interval
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, device, session_id: str):
        self.cancel()
        self._task = asyncio.create_task(
            self._run(device, session_id), name=f"{self.command}-{session_id[:8]}")

    def cancel(self):
        task = self._task
        self._task = None
        if task is None or task.done():
            return
        # A loop may end its own session (liveness failure); never cancel ourselves.
        if task is not asyncio.current_task():
            task.cancel()

    async def wait(self):
        """Wait for the current task to finish.  Used by the CLI and tests."""
        task = self._task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self, device, session_id: str):
        raise NotImplementedError


class LivenessLoop(PollingLoop):
    command = "server-info"

    def __init__(self, controller, interval: float | None = None):
        super().__init__(controller, interval if interval is not None else cfg(
            "airplay", "ping_interval", default=PING_INTERVAL))

    async def _run(self, device, session_id: str):
        transport = self.controller.transport
        while True:
            try:
                resp = await transport.send(device, self.command, session_id=session_id)
            except TransportError as e:
                logger.warning("Ping to %s failed: %s", device, e.reason)
                self.controller._liveness_failed(session_id, e.reason)
                return

            if not self.controller.is_current(session_id):
                return
            if not resp.ok:
                logger.warning("Ping to %s returned HTTP %d", device, resp.status)
                self.controller._liveness_failed(session_id, "Device did not respond to ping")
                return

            logger.debug("Ping successful to %s", device)
            self.controller._liveness_ok(session_id)
            await asyncio.sleep(self.interval)


class StatusLoop(PollingLoop):
    command = "playback-info"

    def __init__(self, controller, interval: float | None = None):
        super().__init__(controller, interval if interval is not None else cfg(
            "airplay", "poll_interval", default=POLL_INTERVAL))

    async def _run(self, device, session_id: str):
        transport = self.controller.transport
        while True:
            try:
                resp = await transport.send(device, self.command, session_id=session_id)
            except TransportError as e:
                if self.controller.is_current(session_id):
                    self.controller._command_failed(self.command, e.reason)
                return

            if not self.controller.is_current(session_id):
                return
            if not resp.ok:
                self.controller._command_failed(self.command, "Cannot get playback info")
                return

            try:
                info = parse_playback_info(resp.body)
            except PlaybackInfoError as e:
                logger.warning("Stopped polling %s: %s", device, e)
                return

            if info is not None:
                logger.debug("PlaybackInfo: playing: %s, rate: %s, position: %s, ready: %s",
                             info.playing, info.rate, info.position, info.ready_to_play)
                self.controller._playback_info(session_id, info)
                if info.finished:
                    logger.info("Playback reached the end (%.1fs) on %s", info.duration, device)
                    return

            await asyncio.sleep(self.interval)
