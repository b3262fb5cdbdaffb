"""
Subscriber store port and its Supabase (PostgREST) adapter.

Only one query is needed: subscribers whose watched hospitals overlap a set of
center names. The overlap filter runs in the database, never locally.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, List, Optional, Protocol

import aiohttp
from pydantic import ValidationError

from .config import SubscriberStoreConfig
from .errors import SubscriberQueryError
from .models import Subscriber

logger = logging.getLogger(__name__)


class SubscriberStore(Protocol):
    """Query contract used by the notification dispatcher."""

    async def find_overlapping(self, center_names: Iterable[str]) -> List[Subscriber]:
        ...


def _postgrest_array(values: Iterable[str]) -> str:
    quoted = []
    for value in values:
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        quoted.append(f'"{escaped}"')
    return "{" + ",".join(quoted) + "}"


class SupabaseSubscriberStore:
    """Reads subscribers through the Supabase REST API."""

    def __init__(
        self,
        config: SubscriberStoreConfig,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 30.0,
    ) -> None:
        self._config = config
        self._session = session
        self._owns_session = session is None
        self._timeout = timeout

    def _endpoint(self) -> str:
        return f"{self._config.url.rstrip('/')}/rest/v1/{self._config.table}"

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self._timeout))
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def find_overlapping(self, center_names: Iterable[str]) -> List[Subscriber]:
        names = sorted(set(center_names))
        if not names:
            return []

        session = await self._ensure_session()
        params = {
            "select": "*",
            "watched_hospitals": f"ov.{_postgrest_array(names)}",
        }
        headers = {
            "apikey": self._config.key,
            "Authorization": f"Bearer {self._config.key}",
            "Accept": "application/json",
        }
        try:
            async with session.get(self._endpoint(), params=params, headers=headers) as resp:
                if resp.status >= 400:
                    body = await resp.text()
                    raise SubscriberQueryError(f"Subscriber query HTTP {resp.status}: {body[:200]}")
                rows = await resp.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise SubscriberQueryError("Subscriber query timed out") from e
        except aiohttp.ClientError as e:
            raise SubscriberQueryError(f"Subscriber query failed: {e}") from e
        except ValueError as e:
            raise SubscriberQueryError(f"Subscriber query returned invalid JSON: {e}") from e

        if not isinstance(rows, list):
            raise SubscriberQueryError(f"Subscriber query returned {type(rows).__name__}, expected a list")
        return _parse_rows(rows)


def _parse_rows(rows: list[Any]) -> List[Subscriber]:
    subscribers: List[Subscriber] = []
    for row in rows:
        if not isinstance(row, dict):
            logger.warning("Skipping subscriber row of type %s", type(row).__name__)
            continue
        try:
            subscribers.append(Subscriber.model_validate(_normalize_row(row)))
        except (ValidationError, TypeError, ValueError) as e:
            logger.warning("Skipping malformed subscriber row: %s", e)
    return subscribers


def _normalize_row(row: dict[str, Any]) -> dict[str, Any]:
    data = dict(row)
    data["id"] = str(data.get("id", ""))
    data["watched_hospitals"] = tuple(data.get("watched_hospitals") or ())
    if data.get("channel") is None:
        data.pop("channel", None)
    return data


__all__ = ["SubscriberStore", "SupabaseSubscriberStore"]
