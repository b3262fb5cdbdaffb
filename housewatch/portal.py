"""
aiohttp client for the housemanship portal.

Three endpoints are used: the vacancy list, the password login and the OTP
verification. ``VacancyFetcher`` joins the vacancy endpoint with the token
manager so the scheduler only ever sees snapshots or ``FetchError``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, TYPE_CHECKING

import aiohttp
from pydantic import BaseModel, ValidationError

from .config import PortalConfig
from .errors import AuthError, FetchError, PortalUnauthorized
from .models import VacancyEntry, VacancySnapshot

if TYPE_CHECKING:
    from .auth import TokenManager

logger = logging.getLogger(__name__)


OTP_REQUIRED = "OTP_REQUIRED"


class LoginResponse(BaseModel):
    """Body of the login endpoint: either a JWT or an OTP challenge."""

    jwt: Optional[str] = None
    status: Optional[str] = None
    email: Optional[str] = None
    message: Optional[str] = None

    @property
    def otp_required(self) -> bool:
        return self.status == OTP_REQUIRED


class PortalClient:
    """
    Thin async wrapper around the portal HTTP API.

    The aiohttp session is created lazily and reused until ``close()``.
    """

    def __init__(self, config: PortalConfig, session: Optional[aiohttp.ClientSession] = None) -> None:
        self._config = config
        self._session = session
        self._owns_session = session is None

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self._config.request_timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def fetch_vacancies(self, token: str) -> VacancySnapshot:
        """Fetch the current vacancy list. Raises FetchError on any failure."""
        session = await self._ensure_session()
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {token}",
        }
        try:
            async with session.post(
                self._config.api_url,
                json={"jwt": token, "tid": 1},
                headers=headers,
            ) as resp:
                if resp.status == 401:
                    raise PortalUnauthorized("Portal rejected the token (HTTP 401)")
                if resp.status >= 400:
                    body = await resp.text()
                    raise FetchError(f"Vacancy endpoint HTTP {resp.status}: {body[:200]}")
                payload = await resp.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise FetchError("Vacancy request timed out") from e
        except aiohttp.ClientError as e:
            raise FetchError(f"Vacancy request failed: {e}") from e
        except ValueError as e:
            raise FetchError(f"Vacancy endpoint returned invalid JSON: {e}") from e

        return _parse_snapshot(payload)

    async def login(self, email: str, password: str) -> LoginResponse:
        """Call the login endpoint. Raises AuthError when no usable answer comes back."""
        payload = await self._post_auth(self._config.login_url, {"email": email, "password": password})
        try:
            result = LoginResponse.model_validate(payload)
        except ValidationError as e:
            raise AuthError(f"Unexpected login response: {e}") from e
        if not result.jwt and not result.otp_required:
            raise AuthError(f"Login rejected: {result.message or payload}")
        return result

    async def verify_otp(self, email: str, otp_code: str) -> str:
        """Submit an OTP and return the issued JWT."""
        payload = await self._post_auth(self._config.otp_url, {"email": email, "otp_code": otp_code})
        jwt = payload.get("jwt") if isinstance(payload, dict) else None
        if not jwt:
            raise AuthError(f"OTP verification rejected: {payload}")
        return str(jwt)

    async def _post_auth(self, url: str, body: dict[str, Any]) -> Any:
        session = await self._ensure_session()
        try:
            async with session.post(url, json=body) as resp:
                if resp.status >= 400:
                    text = await resp.text()
                    raise AuthError(f"Auth endpoint HTTP {resp.status}: {text[:200]}")
                return await resp.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise AuthError("Auth request timed out") from e
        except aiohttp.ClientError as e:
            raise AuthError(f"Auth request failed: {e}") from e
        except ValueError as e:
            raise AuthError(f"Auth endpoint returned invalid JSON: {e}") from e


def _parse_snapshot(payload: Any) -> VacancySnapshot:
    """Validate the vacancy array; duplicate center names keep the first entry."""
    if not isinstance(payload, list):
        raise FetchError(f"Vacancy endpoint returned {type(payload).__name__}, expected a list")
    entries: list[VacancyEntry] = []
    seen: set[str] = set()
    try:
        for item in payload:
            entry = VacancyEntry.model_validate(item)
            if entry.center_name in seen:
                continue
            seen.add(entry.center_name)
            entries.append(entry)
    except ValidationError as e:
        raise FetchError(f"Malformed vacancy entry: {e}") from e
    return tuple(entries)


class VacancyFetcher:
    """Fetch snapshots with a valid token, invalidating it on 401."""

    def __init__(self, client: PortalClient, tokens: "TokenManager") -> None:
        self._client = client
        self._tokens = tokens

    async def __call__(self) -> VacancySnapshot:
        try:
            token = await self._tokens.get_token()
        except AuthError as e:
            # the operator was already told by the token manager
            raise FetchError(f"No auth token available: {e}") from e

        try:
            return await self._client.fetch_vacancies(token.value)
        except PortalUnauthorized:
            logger.warning("Portal returned 401, dropping cached token")
            self._tokens.invalidate()
            raise


__all__ = ["PortalClient", "LoginResponse", "VacancyFetcher", "OTP_REQUIRED"]
