"""
Command transport for the AirPlay HTTP control channel.

Every request goes to ``<device.base_url><method>`` and carries:
  User-Agent:          MediaControl/1.0
  X-Apple-Session-ID:  <session>   (when a session exists)

Methods used by the session controller:
  GET  server-info             — liveness ping
  GET  playback-info           — position/duration/rate plist
  POST play                    — text/parameters body with Content-Location
  POST stop
  POST rate?value=<float>      — 1.0 resumes, 0.0 pauses
  POST scrub?position=<float>  — seek

Network failures raise TransportError; any completed exchange (2xx or not)
is returned as a CommandResponse and the caller decides what it means.  A 401
is answered once with a digest Authorization header when the Authenticator
can produce a credential.

Usage:
    transport = CommandTransport(authenticator)
    await transport.start()
    resp = await transport.send(device, "server-info", session_id=sid)
    await transport.stop()
"""

import asyncio
import logging
from dataclasses import dataclass, field

import aiohttp

from .config import cfg
from .digest import Authenticator

logger = logging.getLogger(__name__)

USER_AGENT = "MediaControl/1.0"
SESSION_HEADER = "X-Apple-Session-ID"
ASSET_KEY_HEADER = "X-Apple-AssetKey"
TYPE_PARAMETERS = "text/parameters"
DEFAULT_REQUEST_TIMEOUT = 10  # seconds


class TransportError(Exception):
    """The request never produced an HTTP response (refused, timeout, DNS...)."""

    def __init__(self, method: str, reason: str):
        super().__init__(f"{method}: {reason}")
        self.method = method
        self.reason = reason


@dataclass
class CommandResponse:
    method: str
    status: int
    body: bytes = b""
    headers: dict = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class CommandTransport:
    """Sends control commands to one device at a time over a shared session."""

    def __init__(self, authenticator: Authenticator | None = None,
                 session: aiohttp.ClientSession | None = None,
                 timeout: float | None = None,
                 user_agent: str | None = None):
        self.authenticator = authenticator
        self.timeout = timeout if timeout is not None else cfg(
            "airplay", "request_timeout", default=DEFAULT_REQUEST_TIMEOUT)
        self.user_agent = user_agent or cfg("airplay", "user_agent", default=USER_AGENT)
        self._session = session
        self._owns_session = session is None

    async def start(self):
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout))
            self._owns_session = True

    async def stop(self):
        if self._session and self._owns_session:
            await self._session.close()
        self._session = None

    def build_headers(self, session_id: str | None = None,
                      extra: dict | None = None) -> dict:
        headers = {"User-Agent": self.user_agent}
        if session_id:
            headers[SESSION_HEADER] = session_id
        if extra:
            headers.update(extra)
        return headers

    async def send(self, device, method: str, *, http_method: str = "GET",
                   session_id: str | None = None, data: str | bytes | None = None,
                   content_type: str | None = None, headers: dict | None = None,
                   authenticate: bool = True) -> CommandResponse:
        """Send one command.  Raises TransportError if no response arrives."""
        if self._session is None or self._session.closed:
            await self.start()

        url = f"{device.base_url}{method}"
        request_headers = self.build_headers(session_id, headers)
        if content_type:
            request_headers["Content-Type"] = content_type

        resp = await self._exchange(http_method, url, method, request_headers, data)

        if resp.status == 401 and authenticate and self.authenticator is not None:
            resp = await self._retry_authenticated(
                device, http_method, url, method, request_headers, data, resp)
        return resp

    async def _exchange(self, http_method: str, url: str, method: str,
                        headers: dict, data) -> CommandResponse:
        logger.debug("%s %s", http_method, url)
        try:
            async with self._session.request(
                http_method, url, headers=headers, data=data,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as resp:
                body = await resp.read()
                return CommandResponse(method, resp.status, body, dict(resp.headers))
        except asyncio.TimeoutError:
            raise TransportError(method, f"timed out after {self.timeout}s") from None
        except aiohttp.ClientError as e:
            raise TransportError(method, str(e) or e.__class__.__name__) from e
        except OSError as e:
            raise TransportError(method, str(e)) from e

    async def _retry_authenticated(self, device, http_method: str, url: str, method: str,
                                   headers: dict, data,
                                   challenge_resp: CommandResponse) -> CommandResponse:
        challenge = challenge_resp.headers.get("WWW-Authenticate")
        if not challenge:
            logger.warning("%s returned 401 without a challenge for %s", device, method)
            return challenge_resp

        credential = await self.authenticator.credential_for(device)
        if not credential:
            logger.warning("No credential for %s — giving up on %s", device, method)
            return challenge_resp

        authorization = self.authenticator.authorization(challenge, http_method, url)
        retry_headers = dict(headers)
        retry_headers["Authorization"] = authorization
        resp = await self._exchange(http_method, url, method, retry_headers, data)
        if resp.status == 401:
            logger.warning("Authentication rejected by %s for %s", device, method)
        return resp
