"""
Portal token lifecycle and the OTP challenge/response protocol.

``TokenManager`` hands out a valid JWT on demand. When the cached token is
close to expiry it logs in again; if the portal asks for a one-time code it
first tries to read the code from the challenge text, and otherwise asks the
operator on Telegram and waits for a 6-digit reply through ``OtpSession``.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
import re
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Awaitable, Callable, Optional

from .errors import AuthError, OtpSessionBusy, OtpTimeoutError
from .formatting import format_auth_failure, format_otp_request, format_otp_timeout
from .models import AuthToken
from .portal import LoginResponse, PortalClient

logger = logging.getLogger(__name__)


NotifyFunc = Callable[[str], Awaitable[None]]
Clock = Callable[[], datetime]

# code right after a dot, e.g. "Your code is 123.456789"
STRICT_OTP_RE = re.compile(r"\.([0-9]{6})\b")
LOOSE_OTP_RE = re.compile(r"([0-9]{6})")
OTP_REPLY_RE = re.compile(r"[0-9]{6}")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def extract_otp(message: Optional[str]) -> Optional[str]:
    """Pull a 6-digit code out of a challenge message, or return None."""
    if not message:
        return None
    match = STRICT_OTP_RE.search(message) or LOOSE_OTP_RE.search(message)
    return match.group(1) if match else None


def parse_token_expiry(token: str) -> Optional[datetime]:
    """Read the ``exp`` claim of a JWT without verifying it."""
    parts = token.split(".")
    if len(parts) != 3:
        return None
    payload = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(payload.encode("ascii")))
        exp = claims.get("exp")
        if exp is None:
            return None
        return datetime.fromtimestamp(float(exp), tz=timezone.utc)
    except (binascii.Error, UnicodeError, ValueError, TypeError, AttributeError, OverflowError):
        return None


class OtpState(str, Enum):
    IDLE = "idle"
    AWAITING = "awaiting"
    RESOLVED = "resolved"
    TIMED_OUT = "timed_out"


class OtpSession:
    """
    Single-slot wait for an operator OTP reply.

    Only one wait may be pending. Opening another while one is pending raises
    ``OtpSessionBusy`` instead of replacing the first.
    """

    def __init__(self, clock: Clock = _utcnow) -> None:
        self._clock = clock
        self._state = OtpState.IDLE
        self._future: Optional[asyncio.Future[str]] = None
        self._deadline: Optional[datetime] = None

    @property
    def state(self) -> OtpState:
        return self._state

    @property
    def deadline(self) -> Optional[datetime]:
        return self._deadline

    @property
    def is_pending(self) -> bool:
        return self._state is OtpState.AWAITING

    async def wait_for_code(self, timeout: float) -> str:
        if self.is_pending:
            raise OtpSessionBusy("An OTP session is already waiting for a reply")

        future: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        self._future = future
        self._deadline = self._clock() + timedelta(seconds=timeout)
        self._state = OtpState.AWAITING
        try:
            code = await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            self._state = OtpState.TIMED_OUT
            raise OtpTimeoutError(f"No OTP reply within {timeout:g} seconds") from None
        except asyncio.CancelledError:
            self._state = OtpState.IDLE
            raise
        finally:
            self._future = None
            self._deadline = None
        self._state = OtpState.RESOLVED
        return code

    def submit(self, text: str) -> bool:
        """Resolve the pending wait if ``text`` is a bare 6-digit code."""
        if not self.is_pending or self._future is None or self._future.done():
            return False
        if text.startswith("/") or not OTP_REPLY_RE.fullmatch(text):
            return False
        self._future.set_result(text)
        return True


class TokenManager:
    """Owns the portal JWT; refreshes it with login and OTP when needed."""

    def __init__(
        self,
        client: PortalClient,
        *,
        email: str,
        password: str,
        notify: NotifyFunc,
        safety_margin: timedelta = timedelta(hours=1),
        otp_timeout: float = 300.0,
        default_lifetime: timedelta = timedelta(hours=24),
        clock: Clock = _utcnow,
    ) -> None:
        self._client = client
        self._email = email
        self._password = password
        self._notify = notify
        self._safety_margin = safety_margin
        self._otp_timeout = otp_timeout
        self._default_lifetime = default_lifetime
        self._clock = clock
        self._token: Optional[AuthToken] = None
        self._login_task: Optional[asyncio.Task[AuthToken]] = None
        self._otp = OtpSession(clock=clock)

    @property
    def token(self) -> Optional[AuthToken]:
        return self._token

    @property
    def otp_session(self) -> OtpSession:
        return self._otp

    def install(self, value: str) -> AuthToken:
        """Cache an externally issued token, e.g. one seeded from the environment."""
        self._token = self._build_token(value)
        return self._token

    def invalidate(self) -> None:
        if self._token is not None:
            logger.info("Invalidating cached portal token")
        self._token = None

    def handle_operator_message(self, text: str) -> bool:
        """Feed an operator chat message; returns True if it resolved a pending OTP."""
        accepted = self._otp.submit(text)
        if accepted:
            logger.info("OTP reply received from operator")
        return accepted

    async def get_token(self) -> AuthToken:
        token = self._token
        if token is not None and token.is_fresh(self._clock(), self._safety_margin):
            return token

        # concurrent callers share the login already in flight
        if self._login_task is None or self._login_task.done():
            self._login_task = asyncio.create_task(self._login(), name="portal-login")
        task = self._login_task
        try:
            return await asyncio.shield(task)
        finally:
            if task.done() and self._login_task is task:
                self._login_task = None

    async def _login(self) -> AuthToken:
        try:
            token = await self._login_sequence()
        except OtpTimeoutError:
            raise
        except AuthError as e:
            logger.error("Portal login failed: %s", e)
            await self._safe_notify(format_auth_failure(e))
            raise
        self._token = token
        logger.info("Portal token refreshed, expires at %s", token.expires_at.isoformat())
        return token

    async def _login_sequence(self) -> AuthToken:
        logger.info("Logging in to the portal as %s", self._email)
        response = await self._client.login(self._email, self._password)
        if response.jwt:
            return self._build_token(response.jwt)

        code = await self._resolve_otp(response)
        jwt = await self._client.verify_otp(response.email or self._email, code)
        return self._build_token(jwt)

    async def _resolve_otp(self, response: LoginResponse) -> str:
        code = extract_otp(response.message)
        if code:
            logger.info("OTP extracted from the challenge message")
            return code

        logger.info("OTP challenge needs operator input")
        await self._safe_notify(format_otp_request(response.message or "", self._otp_timeout))
        try:
            return await self._otp.wait_for_code(self._otp_timeout)
        except OtpTimeoutError:
            logger.warning("OTP session timed out after %.0f seconds", self._otp_timeout)
            await self._safe_notify(format_otp_timeout(self._otp_timeout))
            raise

    def _build_token(self, value: str) -> AuthToken:
        expires_at = parse_token_expiry(value) or self._clock() + self._default_lifetime
        return AuthToken(value=value, expires_at=expires_at)

    async def _safe_notify(self, text: str) -> None:
        try:
            await self._notify(text)
        except Exception as e:  # noqa: BLE001
            logger.warning("Failed to notify operator: %s", e)


__all__ = [
    "TokenManager",
    "OtpSession",
    "OtpState",
    "extract_otp",
    "parse_token_expiry",
]
