"""
Listener interface — how the client reports back to whoever drives it.

Subclass CastingListener and override the events you care about; every
method defaults to a no-op.  ListenerDispatcher wraps a listener so that an
exception in caller code is logged and never leaks into the polling loops.
"""

import logging

logger = logging.getLogger(__name__)


class CastingListener:
    """Events emitted by AirPlayClient / SessionController."""

    def on_device_detected(self, device): ...

    def on_device_removed(self, device): ...

    def on_device_selected(self, device): ...

    def on_connected(self, device): ...

    def on_disconnected(self): ...

    def on_ready(self): ...

    def on_playback_changed(self, playing: bool, position: float): ...

    def on_command_failed(self, command: str, reason: str): ...


class ListenerDispatcher:
    """Calls the listener, logging instead of raising on listener errors."""

    def __init__(self, listener: CastingListener | None = None):
        self.listener = listener or CastingListener()

    def emit(self, event: str, *args):
        handler = getattr(self.listener, event, None)
        if handler is None:
            return
        try:
            handler(*args)
        except Exception as e:
            logger.error("Error in listener %s: %s", event, e)
