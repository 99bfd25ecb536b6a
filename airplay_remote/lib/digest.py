"""
HTTP Digest authentication for password/PIN protected AirPlay receivers.

Single round, no qop / nonce-count / cnonce:

    HA1      = MD5(username:realm:password)
    HA2      = MD5(method:uri)
    response = MD5(HA1:nonce:HA2)

The username is fixed ("Airplay"); only the password or on-screen PIN comes
from the user.  Asking the user is delegated to a CredentialPrompt, which is
awaited only on the 401 retry path so nothing else waits on a human.

Usage:
    params = parse_challenge(resp.headers["WWW-Authenticate"])
    header = make_authorization_header(params, "POST", url, "1234")
"""

import asyncio
import getpass
import hashlib
import logging
from collections.abc import Awaitable, Callable
from typing import Protocol

from .config import cfg

logger = logging.getLogger(__name__)

AUTH_USERNAME = "Airplay"
DEFAULT_CREDENTIAL_TIMEOUT = 120  # seconds a prompt may stay unanswered


def md5_hex(text: str) -> str:
    """MD5 of the UTF-8 encoded text as 32 lowercase hex characters."""
    return hashlib.md5(text.encode("utf-8")).hexdigest()


def parse_challenge(header: str) -> dict[str, str]:
    """Parse ``Digest realm="x", nonce="y"`` into ``{"realm": "x", "nonce": "y"}``.

    Grammar: the scheme runs up to the first space; the remainder is split on
    ``", `` and each part on its first ``="``.  One trailing quote is stripped
    from the value.  Parts without ``="`` are skipped.
    """
    params: dict[str, str] = {}
    if not header:
        return params
    _, _, rest = header.strip().partition(" ")
    rest = rest.replace("\r\n", " ")
    for part in rest.split('", '):
        key, sep, value = part.partition('="')
        if not sep:
            logger.debug("Skipping malformed challenge part: %r", part)
            continue
        if value.endswith('"'):
            value = value[:-1]
        params[key.strip()] = value
    return params


def digest_response(username: str, realm: str, password: str,
                    method: str, uri: str, nonce: str) -> str:
    ha1 = md5_hex(f"{username}:{realm}:{password}")
    ha2 = md5_hex(f"{method}:{uri}")
    return md5_hex(f"{ha1}:{nonce}:{ha2}")


def make_authorization_header(params: dict, method: str, uri: str, password: str,
                              username: str = AUTH_USERNAME) -> str:
    """Build the ``Authorization`` header value answering a digest challenge."""
    realm = params.get("realm", "")
    nonce = params.get("nonce", "")
    response = digest_response(username, realm, password, method, uri, nonce)
    return (f'Digest username="{username}", '
            f'realm="{realm}", '
            f'nonce="{nonce}", '
            f'uri="{uri}", '
            f'response="{response}"')


class CredentialPrompt(Protocol):
    """Asks a human for the receiver's password/PIN.  None means cancelled."""

    def __call__(self, device) -> Awaitable[str | None]: ...


class FutureCredentialPrompt:
    """A prompt answered from elsewhere (a UI dialog, a web form, a test).

    Each call creates a future and invokes ``on_request(device)`` so the UI can
    show its dialog; the UI later calls ``supply(pin)`` or ``cancel()``.
    """

    def __init__(self, on_request: Callable[..., None] | None = None):
        self.on_request = on_request
        self._pending: asyncio.Future | None = None

    @property
    def pending(self) -> bool:
        return self._pending is not None and not self._pending.done()

    async def __call__(self, device) -> str | None:
        loop = asyncio.get_running_loop()
        self._pending = loop.create_future()
        if self.on_request:
            try:
                self.on_request(device)
            except Exception as e:
                logger.error("Credential request hook failed: %s", e)
        try:
            return await self._pending
        finally:
            self._pending = None

    def supply(self, credential: str | None):
        if self.pending:
            self._pending.set_result(credential)

    def cancel(self):
        if self.pending:
            self._pending.set_result(None)


async def console_prompt(device) -> str | None:
    """Read the PIN from the terminal without blocking the event loop."""
    loop = asyncio.get_running_loop()
    try:
        return await loop.run_in_executor(
            None, getpass.getpass, f"Enter pincode for {device}: ")
    except (EOFError, KeyboardInterrupt):
        return None


class Authenticator:
    """Caches the session credential and computes digest headers.

    Only one prompt is shown at a time; concurrent 401s wait on the same lock
    and reuse whatever the first prompt produced.
    """

    def __init__(self, prompt: CredentialPrompt | None = None,
                 username: str | None = None,
                 timeout: float | None = None):
        self.prompt = prompt
        self.username = username or cfg("airplay", "auth_username", default=AUTH_USERNAME)
        self.timeout = timeout if timeout is not None else cfg(
            "airplay", "credential_timeout", default=DEFAULT_CREDENTIAL_TIMEOUT)
        self._credential: str | None = None
        self._lock = asyncio.Lock()
        # Bumped by clear(); answers for an older session are discarded
        self._generation = 0
        self._prompting: asyncio.Future | None = None

    @property
    def credential(self) -> str | None:
        return self._credential

    def set_credential(self, credential: str | None):
        self._credential = credential or None

    def clear(self):
        """Forget the credential and abandon any prompt still waiting for one."""
        self._credential = None
        self._generation += 1
        if self._prompting is not None and not self._prompting.done():
            self._prompting.cancel()

    async def credential_for(self, device) -> str | None:
        """Return the cached credential, prompting the user if there is none."""
        if self._credential:
            return self._credential
        if self.prompt is None:
            logger.warning("%s requires a password but no credential prompt is configured",
                           device)
            return None
        generation = self._generation
        async with self._lock:
            if self._generation != generation:
                return None
            if self._credential:
                return self._credential
            logger.info("Waiting for credential for %s", device)
            self._prompting = asyncio.ensure_future(self.prompt(device))
            try:
                answer = await asyncio.wait_for(self._prompting, timeout=self.timeout)
            except asyncio.TimeoutError:
                logger.warning("Credential prompt for %s timed out after %ss",
                               device, self.timeout)
                return None
            except asyncio.CancelledError:
                if self._generation == generation:
                    raise
                answer = None
            finally:
                self._prompting = None
            if self._generation != generation:
                logger.info("Session ended while asking for the %s credential; dropping it",
                            device)
                return None
            self.set_credential(answer)
            return self._credential

    def authorization(self, challenge: str, method: str, uri: str) -> str | None:
        """Answer a WWW-Authenticate challenge with the cached credential."""
        if not self._credential:
            return None
        params = parse_challenge(challenge)
        return make_authorization_header(params, method, uri, self._credential,
                                         username=self.username)
