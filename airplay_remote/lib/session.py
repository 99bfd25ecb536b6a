# BeoSound 5c
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
SessionController — owns the one active receiver connection.

Connection states:

    disconnected ──connect()──▶ connecting ──first ping ok──▶ connected
         ▲                          │                            │
         └──── disconnect() / device removed / ping failure ─────┘

A session is a random UUID sent as X-Apple-Session-ID on every request.  It
exists only while a device is current, and the liveness loop runs exactly as
long as it exists.  Loop results and command completions carry the session
id they were issued under; anything that comes back for an older session is
dropped instead of touching the new one.

Commands never raise to the caller: failures are reported through
``on_command_failed(command, reason)`` on the listener.

Usage:
    controller = SessionController(MyListener(), prompt=console_prompt)
    await controller.connect(device)
    await controller.load_media("http://x/movie.mp4", 0)
    await controller.pause()
    await controller.close()
"""

import logging
import uuid

from .digest import Authenticator, CredentialPrompt
from .listener import CastingListener, ListenerDispatcher
from .polling import LivenessLoop, PlaybackInfo, StatusLoop
from .registry import Device
from .transport import ASSET_KEY_HEADER, TYPE_PARAMETERS, CommandTransport, TransportError

logger = logging.getLogger(__name__)

# Connection states
DISCONNECTED = "disconnected"
CONNECTING = "connecting"
CONNECTED = "connected"

# Playback states
STOPPED = "stopped"
PLAYING = "playing"
PAUSED = "paused"


class SessionController:
    """Drives connect/disconnect and playback commands for one receiver."""

    def __init__(self, listener: CastingListener | None = None, *,
                 transport: CommandTransport | None = None,
                 authenticator: Authenticator | None = None,
                 prompt: CredentialPrompt | None = None,
                 ping_interval: float | None = None,
                 poll_interval: float | None = None):
        if authenticator is None:
            authenticator = transport.authenticator if transport else None
        self.authenticator = authenticator or Authenticator(prompt)
        self.transport = transport or CommandTransport(self.authenticator)
        if self.transport.authenticator is None:
            self.transport.authenticator = self.authenticator
        self.events = ListenerDispatcher(listener)
        self.liveness = LivenessLoop(self, ping_interval)
        self.status = StatusLoop(self, poll_interval)

        self._device: Device | None = None
        self._session_id: str | None = None
        self._state: str = DISCONNECTED
        self._playback_state: str = STOPPED

    # ── Read-only state ──

    @property
    def current_device(self) -> Device | None:
        return self._device

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def state(self) -> str:
        return self._state

    @property
    def playback_state(self) -> str:
        return self._playback_state

    @property
    def is_polling(self) -> bool:
        return self.status.running

    def is_current(self, session_id: str | None) -> bool:
        return session_id is not None and session_id == self._session_id

    # ── Connection lifecycle ──

    async def connect(self, device: Device):
        """Select *device*, open a new session and start the liveness loop.

        Returns as soon as the first ping has been scheduled; on_connected
        fires once it succeeds.
        """
        if self._device is not None and self._device.id != device.id:
            await self.disconnect()
        else:
            self.liveness.cancel()
            self.status.cancel()

        self._device = device
        self._session_id = str(uuid.uuid4())
        self._state = CONNECTING
        logger.info("Connecting to airplay device: %s - %s", device.id, device.host)
        logger.debug("Session ID: %s", self._session_id)

        self.events.emit("on_device_selected", device)
        self.liveness.start(device, self._session_id)

    async def disconnect(self):
        """Stop playback (best effort), end the session and cancel both loops."""
        device, session_id = self._device, self._session_id
        if device is None:
            return

        self.liveness.cancel()
        self.status.cancel()
        try:
            resp = await self.transport.send(
                device, "stop", http_method="POST", session_id=session_id,
                authenticate=self.authenticator.credential is not None)
            if not resp.ok:
                logger.warning("Stop on disconnect returned HTTP %d from %s", resp.status, device)
        except TransportError as e:
            logger.warning("Stop on disconnect failed for %s: %s", device, e.reason)

        # The session may have ended (or been replaced) while we awaited stop
        if self._session_id != session_id:
            return
        self._end_session()
        logger.info("Disconnected from %s", device)
        self.events.emit("on_disconnected")

    def device_removed(self, device: Device):
        """Discovery lost *device*; drop the session without talking to it."""
        if self._device is None or self._device.id != device.id:
            return
        logger.info("Current device %s disappeared — disconnecting", device)
        self._end_session()
        self.events.emit("on_disconnected")

    async def close(self):
        """Disconnect and release the HTTP session.  Call on shutdown."""
        await self.disconnect()
        await self.transport.stop()

    def _end_session(self):
        self.liveness.cancel()
        self.status.cancel()
        self._device = None
        self._session_id = None
        self._state = DISCONNECTED
        self._playback_state = STOPPED
        self.authenticator.clear()

    # ── Playback commands ──

    async def load_media(self, location: str, start_position: float = 0):
        """Send the media URL to the receiver and start polling its status.

        Polling starts before the play command is acknowledged; the status
        loop sorts out what actually happened.
        """
        device, session_id = self._device, self._session_id
        if device is None:
            return
        logger.info("Load media: %s", location)

        self.status.cancel()
        body = (f"Content-Location: {location}\n"
                f"Start-Position: {float(start_position):f}\n")
        self.status.start(device, session_id)

        try:
            resp = await self.transport.send(
                device, "play", http_method="POST", session_id=session_id,
                data=body, content_type=TYPE_PARAMETERS,
                headers={ASSET_KEY_HEADER: str(uuid.uuid4())})
        except TransportError as e:
            logger.warning("Failed to load media: %s", e.reason)
            if self.is_current(session_id):
                self._command_failed("play", e.reason)
            return

        if not self.is_current(session_id):
            return
        if resp.ok:
            logger.info("Load media successful")
        else:
            logger.warning("Failed to play media (HTTP %d)", resp.status)
            self._command_failed("play", "Failed to play media")

    async def play(self):
        """Resume playback.  Only sent while paused."""
        if self._playback_state != PAUSED:
            return
        await self._send_ignoring_result("rate?value=1.000000")

    async def pause(self):
        """Pause playback.  Only sent while playing."""
        if self._playback_state != PLAYING:
            return
        await self._send_ignoring_result("rate?value=0.000000")

    async def seek(self, position: float):
        """Jump to *position* seconds."""
        await self._send_ignoring_result(f"scrub?position={float(position):f}")

    async def stop(self):
        """Stop playback; status polling ends once the receiver confirms."""
        device, session_id = self._device, self._session_id
        if device is None:
            return
        try:
            resp = await self.transport.send(
                device, "stop", http_method="POST", session_id=session_id)
        except TransportError as e:
            if self.is_current(session_id):
                self._command_failed("stop", e.reason)
            return

        if not self.is_current(session_id):
            return
        if resp.ok:
            self.status.cancel()
            self._playback_state = STOPPED
            logger.info("Stopped")
        else:
            self._command_failed("stop", "Cannot stop")

    def set_volume(self, volume: float):
        """Volume is not controllable over this protocol."""

    def can_control_volume(self) -> bool:
        return False

    async def _send_ignoring_result(self, method: str):
        # The status loop reports the outcome; the response itself is not needed.
        device, session_id = self._device, self._session_id
        if device is None:
            return
        try:
            resp = await self.transport.send(
                device, method, http_method="POST", session_id=session_id)
            logger.debug("%s -> HTTP %d", method, resp.status)
        except TransportError as e:
            logger.debug("%s failed: %s", method, e.reason)

    # ── Callbacks from the polling loops ──

    def _liveness_ok(self, session_id: str):
        if not self.is_current(session_id):
            return
        self._state = CONNECTED
        self.events.emit("on_connected", self._device)

    def _liveness_failed(self, session_id: str, reason: str):
        if not self.is_current(session_id):
            return
        self._end_session()
        self._command_failed("server-info", reason)
        self.events.emit("on_disconnected")

    def _playback_info(self, session_id: str, info: PlaybackInfo):
        if not self.is_current(session_id):
            return
        self._playback_state = PLAYING if info.playing else PAUSED
        if info.ready_to_play:
            self.events.emit("on_ready")
        self.events.emit("on_playback_changed", info.playing, info.position)

    def _command_failed(self, command: str, reason: str):
        self.events.emit("on_command_failed", command, reason)
