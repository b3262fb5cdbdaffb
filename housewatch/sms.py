"""Templated SMS gateway adapter (Termii-style template API)."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import aiohttp

from .config import SmsConfig
from .errors import DispatchError

logger = logging.getLogger(__name__)


class SmsGateway:
    """Sends the vacancy template to one phone number per call."""

    def __init__(
        self,
        config: SmsConfig,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 30.0,
    ) -> None:
        self._config = config
        self._session = session
        self._owns_session = session is None
        self._timeout = timeout

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self._timeout))
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    def build_payload(self, phone_number: str, hospital_list: str) -> dict:
        return {
            "phone_number": phone_number,
            "device_id": self._config.device_id,
            "template_id": self._config.template_id,
            "api_key": self._config.api_key,
            "data": {"hospitallist": hospital_list},
        }

    async def send_template(self, phone_number: str, hospital_list: str) -> None:
        """Raise DispatchError if the gateway does not accept the message."""
        if not self._config.api_key:
            raise DispatchError("SMS gateway is not configured (missing api key)")

        session = await self._ensure_session()
        payload = self.build_payload(phone_number, hospital_list)
        try:
            async with session.post(self._config.url, json=payload) as resp:
                if resp.status >= 400:
                    body = await resp.text()
                    raise DispatchError(f"SMS gateway HTTP {resp.status}: {body[:200]}")
        except asyncio.TimeoutError as e:
            raise DispatchError("SMS gateway request timed out") from e
        except aiohttp.ClientError as e:
            raise DispatchError(f"SMS gateway request failed: {e}") from e
        logger.debug("SMS sent to %s", phone_number)


__all__ = ["SmsGateway"]
