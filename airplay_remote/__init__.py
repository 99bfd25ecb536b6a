"""
airplay-remote — control AirPlay video receivers over their HTTP interface.

A client does NOT serve media.  It tells a receiver (Apple TV, AirPlay
capable TV, ...) which URL to fetch, then drives and watches playback:
load, play, pause, seek, stop, with a liveness ping and a playback-info poll
running in the background.  Password/PIN protected receivers are handled with
HTTP Digest authentication.

Modules:
  client.py          — AirPlayClient: discovery + registry + session wired together
  lib/session.py     — SessionController: connection state machine and commands
  lib/transport.py   — CommandTransport: aiohttp requests, 401 retry
  lib/digest.py      — challenge parsing, digest header, credential prompts
  lib/polling.py     — liveness and playback-info loops
  lib/registry.py    — Device and DeviceRegistry
  lib/discovery.py   — ZeroconfDiscovery (mDNS browsing)
  lib/listener.py    — CastingListener event interface
  lib/config.py      — JSON config loader
"""

from .client import AirPlayClient
from .lib.listener import CastingListener
from .lib.registry import Device

__all__ = ["AirPlayClient", "CastingListener", "Device"]
