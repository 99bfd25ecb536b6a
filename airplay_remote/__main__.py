#!/usr/bin/env python3
"""
airplay-remote — play a URL on an AirPlay receiver from the command line.

    airplay-remote --host 192.168.0.50 http://example.com/movie.mp4
    airplay-remote --discover 5 --name "Living Room" http://example.com/movie.mp4

Prompts for the on-screen PIN when the receiver asks for one, prints
playback progress, and exits when the media ends, the receiver goes away,
or on Ctrl-C.
"""

import argparse
import asyncio
import logging
import os
import signal
import sys

from .client import AirPlayClient
from .lib.config import ENV_CONFIG_PATH, reload_config
from .lib.digest import console_prompt
from .lib.listener import CastingListener
from .lib.registry import DEFAULT_AIRPLAY_PORT, Device

logger = logging.getLogger("airplay-remote")


class ConsoleListener(CastingListener):
    """Logs events and flags when a device shows up or the session ends."""

    def __init__(self, name: str | None = None):
        self.name = name.lower() if name else None
        self.found = asyncio.Event()
        self.disconnected = asyncio.Event()
        self.device: Device | None = None

    def on_device_detected(self, device):
        logger.info("Found %s", device)
        if self.device is None and (self.name is None or device.name.lower() == self.name):
            self.device = device
            self.found.set()

    def on_device_removed(self, device):
        logger.info("Lost %s", device)

    def on_device_selected(self, device):
        logger.info("Selected %s", device)

    def on_connected(self, device):
        logger.info("Connected to %s", device)

    def on_disconnected(self):
        logger.info("Disconnected")
        self.disconnected.set()

    def on_ready(self):
        logger.debug("Ready to play")

    def on_playback_changed(self, playing, position):
        logger.info("%s at %.1fs", "Playing" if playing else "Paused", position)

    def on_command_failed(self, command, reason):
        logger.error("Command %s failed: %s", command, reason)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog="airplay-remote",
        description="Play a media URL on an AirPlay receiver")
    parser.add_argument("url", help="media URL the receiver should fetch")
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--host", help="receiver address (skips discovery)")
    target.add_argument("--discover", type=float, metavar="SECONDS",
                        help="browse mDNS for up to SECONDS and use the first match")
    parser.add_argument("--port", type=int, default=DEFAULT_AIRPLAY_PORT,
                        help="receiver port with --host (default %(default)s)")
    parser.add_argument("--name", help="with --discover, pick the receiver with this name")
    parser.add_argument("--start", type=float, default=0.0,
                        help="start position passed to the receiver")
    parser.add_argument("--config", help="path to a config.json")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    return parser.parse_args(argv)


async def run(args) -> int:
    listener = ConsoleListener(args.name)
    client = AirPlayClient(listener, prompt=console_prompt)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop_event.set)

    try:
        if args.host:
            device = Device(id=args.host, name=args.host, host=args.host, port=args.port)
        else:
            await client.start()
            try:
                await asyncio.wait_for(listener.found.wait(), timeout=args.discover)
            except asyncio.TimeoutError:
                logger.error("No AirPlay receiver found within %.0fs", args.discover)
                return 1
            device = listener.device

        await client.connect(device)
        await client.load_media(args.url, args.start)

        waiters = [
            asyncio.create_task(client.controller.status.wait()),
            asyncio.create_task(listener.disconnected.wait()),
            asyncio.create_task(stop_event.wait()),
        ]
        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in waiters:
                task.cancel()
        return 0
    finally:
        await client.close()


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(asctime)s] %(levelname)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    if args.config:
        os.environ[ENV_CONFIG_PATH] = args.config
        reload_config()
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
