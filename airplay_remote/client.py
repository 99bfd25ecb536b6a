# BeoSound 5c
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
AirPlayClient — discovery callbacks, device registry and session controller
wired together.

The client is what an application holds on to.  Discovery feeds it
appeared/resolved/removed events; it keeps the registry up to date, tells the
listener about devices, and forces a disconnect when the current device goes
away.  Playback commands are forwarded to the SessionController.

Usage:
    client = AirPlayClient(MyListener(), prompt=console_prompt)
    await client.start()                 # starts mDNS browsing
    await client.connect(client.registry.devices[0])
    await client.load_media("http://x/movie.mp4")
    await client.close()
"""

import logging

from .lib.digest import CredentialPrompt
from .lib.discovery import DiscoveredService, ZeroconfDiscovery
from .lib.listener import CastingListener
from .lib.registry import Device, DeviceRegistry
from .lib.session import SessionController

logger = logging.getLogger(__name__)


class AirPlayClient:
    """Casting client for AirPlay video receivers."""

    def __init__(self, listener: CastingListener | None = None, *,
                 prompt: CredentialPrompt | None = None,
                 controller: SessionController | None = None,
                 discovery: ZeroconfDiscovery | None = None):
        self.controller = controller or SessionController(listener, prompt=prompt)
        self.events = self.controller.events
        self.registry = DeviceRegistry(on_remove=self.controller.device_removed)
        self.discovery = discovery
        self._services: dict[str, DiscoveredService] = {}

    async def start(self):
        """Start mDNS browsing (creates a ZeroconfDiscovery if none was given)."""
        if self.discovery is None:
            self.discovery = ZeroconfDiscovery(self)
        await self.discovery.start()

    async def close(self):
        """Call on shutdown: disconnect, stop discovery, close HTTP."""
        await self.controller.close()
        if self.discovery is not None:
            await self.discovery.stop()

    # ── Discovery callbacks ──

    def on_device_appeared(self, service: DiscoveredService):
        logger.debug("Found AirPlay service: %s", service.name)
        self._services[service.key] = service

    def on_device_resolved(self, service: DiscoveredService):
        logger.info("Resolved AirPlay service: %s @ %s:%s",
                    service.name, service.host, service.port)
        self._services[service.key] = service
        device = self.registry.upsert(Device.from_service(service))
        self.events.emit("on_device_detected", device)

    def on_device_removed(self, service: DiscoveredService):
        logger.info("Removed AirPlay service: %s", service.name)
        self._services.pop(service.key, None)
        device = self.registry.lookup(service.key)
        if device is None:
            # Never resolved, or connected by address without discovery
            current = self.controller.current_device
            if current is None or current.id != service.key:
                return
            device = current
        self.events.emit("on_device_removed", device)
        if self.registry.remove(device.id) is None:
            self.controller.device_removed(device)

    # ── Commands (forwarded to the controller) ──

    @property
    def current_device(self) -> Device | None:
        return self.controller.current_device

    async def connect(self, device: Device):
        await self.controller.connect(device)

    async def disconnect(self):
        await self.controller.disconnect()

    async def load_media(self, location: str, start_position: float = 0):
        await self.controller.load_media(location, start_position)

    async def play(self):
        await self.controller.play()

    async def pause(self):
        await self.controller.pause()

    async def seek(self, position: float):
        await self.controller.seek(position)

    async def stop(self):
        await self.controller.stop()

    def set_volume(self, volume: float):
        self.controller.set_volume(volume)

    def can_control_volume(self) -> bool:
        return self.controller.can_control_volume()
