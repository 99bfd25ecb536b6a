# BeoSound 5c
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Device model and in-memory registry of discovered receivers.

The registry is fed by discovery callbacks (see client.AirPlayClient) and is
the only owner of Device objects.  The session controller only ever holds a
reference to whichever device is current.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

DEFAULT_AIRPLAY_PORT = 7000


@dataclass(frozen=True)
class Device:
    """A resolved receiver endpoint.  Immutable once created."""

    id: str
    name: str
    host: str
    port: int = DEFAULT_AIRPLAY_PORT
    properties: dict = field(default_factory=dict, compare=False, hash=False)

    @property
    def base_url(self) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"http://{host}:{self.port}/"

    @classmethod
    def from_service(cls, service) -> "Device":
        """Build a Device from a resolved DiscoveredService."""
        return cls(
            id=service.key,
            name=service.display_name,
            host=service.host,
            port=service.port or DEFAULT_AIRPLAY_PORT,
            properties=dict(service.properties or {}),
        )

    def __str__(self) -> str:
        return f"{self.name} ({self.host}:{self.port})"


class DeviceRegistry:
    """Known devices keyed by id."""

    def __init__(self, on_remove: Callable[[Device], None] | None = None):
        self._devices: dict[str, Device] = {}
        self._on_remove = on_remove

    def set_remove_hook(self, callback: Callable[[Device], None] | None):
        """Register a callback invoked with every device evicted by remove()."""
        self._on_remove = callback

    def upsert(self, device: Device) -> Device:
        previous = self._devices.get(device.id)
        self._devices[device.id] = device
        if previous is None:
            logger.info("Device added: %s", device)
        elif previous != device:
            logger.info("Device updated: %s (was %s)", device, previous)
        return device

    def remove(self, id: str) -> Device | None:
        device = self._devices.pop(id, None)
        if device is None:
            return None
        logger.info("Device removed: %s", device)
        if self._on_remove:
            self._on_remove(device)
        return device

    def lookup(self, id: str) -> Device | None:
        return self._devices.get(id)

    @property
    def devices(self) -> list[Device]:
        return list(self._devices.values())

    def __contains__(self, id: str) -> bool:
        return id in self._devices

    def __len__(self) -> int:
        return len(self._devices)
