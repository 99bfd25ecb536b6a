"""
mDNS discovery of AirPlay receivers (_airplay._tcp).

The client only depends on the callback contract:

    on_device_appeared(service)   — a name showed up, not resolved yet
    on_device_resolved(service)   — host/port known, a Device can be built
    on_device_removed(service)    — the name went away

ZeroconfDiscovery is a thin binding of that contract onto python-zeroconf's
asyncio browser.  Anything else that produces DiscoveredService objects
(a static list, another mDNS stack, a test) can drive the client the same way.

Usage:
    discovery = ZeroconfDiscovery(client)
    await discovery.start()
    ...
    await discovery.stop()
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Protocol

from zeroconf import ServiceStateChange
from zeroconf.asyncio import AsyncServiceBrowser, AsyncServiceInfo, AsyncZeroconf

from .config import cfg

logger = logging.getLogger(__name__)

AIRPLAY_SERVICE_TYPE = "_airplay._tcp.local."
RESOLVE_TIMEOUT_MS = 3000


@dataclass
class DiscoveredService:
    """What discovery knows about one advertised receiver."""

    name: str
    host: str = ""
    port: int = 0
    properties: dict = field(default_factory=dict)
    service_type: str = AIRPLAY_SERVICE_TYPE

    @property
    def key(self) -> str:
        return self.name.lower()

    @property
    def display_name(self) -> str:
        suffix = "." + self.service_type
        if self.name.endswith(suffix):
            return self.name[:-len(suffix)]
        return self.name

    @property
    def resolved(self) -> bool:
        return bool(self.host)


class DiscoveryCallbacks(Protocol):
    def on_device_appeared(self, service: DiscoveredService) -> None: ...

    def on_device_resolved(self, service: DiscoveredService) -> None: ...

    def on_device_removed(self, service: DiscoveredService) -> None: ...


def _decode_properties(raw: dict | None) -> dict:
    props = {}
    for k, v in (raw or {}).items():
        key = k.decode("utf-8", "replace") if isinstance(k, bytes) else str(k)
        if isinstance(v, bytes):
            v = v.decode("utf-8", "replace")
        props[key] = v
    return props


class ZeroconfDiscovery:
    """Browse for AirPlay receivers and report them to *callbacks*."""

    def __init__(self, callbacks: DiscoveryCallbacks, service_type: str | None = None):
        self.callbacks = callbacks
        self.service_type = service_type or cfg(
            "discovery", "service_type", default=AIRPLAY_SERVICE_TYPE)
        self._azc: AsyncZeroconf | None = None
        self._browser: AsyncServiceBrowser | None = None
        self._resolving: set[asyncio.Task] = set()

    async def start(self):
        if self._azc is not None:
            return
        self._azc = AsyncZeroconf()
        self._browser = AsyncServiceBrowser(
            self._azc.zeroconf, self.service_type,
            handlers=[self._on_service_state_change])
        logger.info("Browsing for %s", self.service_type)

    async def stop(self):
        for task in list(self._resolving):
            task.cancel()
        self._resolving.clear()
        if self._browser:
            await self._browser.async_cancel()
            self._browser = None
        if self._azc:
            await self._azc.async_close()
            self._azc = None
        logger.info("Discovery stopped")

    def _on_service_state_change(self, zeroconf, service_type: str, name: str,
                                 state_change: ServiceStateChange):
        service = DiscoveredService(name=name, service_type=service_type)
        if state_change is ServiceStateChange.Removed:
            logger.debug("Removed AirPlay service: %s", name)
            self.callbacks.on_device_removed(service)
            return
        if state_change is ServiceStateChange.Added:
            logger.debug("Found AirPlay service: %s", name)
            self.callbacks.on_device_appeared(service)
        task = asyncio.get_running_loop().create_task(self._resolve(service))
        self._resolving.add(task)
        task.add_done_callback(self._resolving.discard)

    async def _resolve(self, service: DiscoveredService):
        info = AsyncServiceInfo(service.service_type, service.name)
        try:
            ok = await info.async_request(self._azc.zeroconf, RESOLVE_TIMEOUT_MS)
        except Exception as e:
            logger.warning("Failed to resolve %s: %s", service.name, e)
            return
        if not ok:
            logger.debug("No answer resolving %s", service.name)
            return
        addresses = info.parsed_addresses()
        if not addresses:
            return
        service.host = addresses[0]
        service.port = info.port or 0
        service.properties = _decode_properties(info.properties)
        logger.debug("Resolved AirPlay service: %s @ %s:%s", service.name,
                     service.host, service.port)
        self.callbacks.on_device_resolved(service)
