"""
Base class for third-party data collectors.

Collectors own an aiohttp session, translate transport failures into
ProviderUnavailableError and parse raw JSON into typed provider models.
Retries and circuit breaking are applied by the caller.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Generic, Optional, Tuple, TypeVar

import aiohttp
import orjson

from utils.errors import APIRateLimitError, ProviderUnavailableError

logger = logging.getLogger(__name__)

DatumT = TypeVar("DatumT")


class BaseCollector(ABC, Generic[DatumT]):
    """Shared HTTP plumbing for provider collectors"""

    name: str = "provider"
    base_url: str = ""

    def __init__(self, api_key: str = "", request_timeout: float = 8.0,
                 session: Optional[aiohttp.ClientSession] = None):
        self.api_key = api_key
        self.request_timeout = request_timeout
        self.session = session
        self._owns_session = session is None

        self.stats = {
            'total_requests': 0,
            'successful_requests': 0,
            'failed_requests': 0,
            'empty_responses': 0,
        }

    async def initialize(self):
        """Initialize the collector"""
        if not self.session:
            timeout = aiohttp.ClientTimeout(total=self.request_timeout)
            self.session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True

    async def close(self):
        """Close the collector"""
        if self.session and self._owns_session:
            await self.session.close()
        self.session = None

    def _headers(self) -> Dict[str, str]:
        return {'Accept': 'application/json'}

    async def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None,
                        empty_statuses: Tuple[int, ...] = (404,)) -> Optional[Any]:
        """
        GET base_url/path and decode JSON.

        Returns None for `empty_statuses` (the provider has nothing for the
        token, 404 by default).
        Raises ProviderUnavailableError for any other non-200 status,
        timeouts, connection errors and undecodable bodies.
        """
        if not self.session:
            await self.initialize()

        url = f"{self.base_url}/{path.lstrip('/')}"
        self.stats['total_requests'] += 1

        try:
            async with self.session.get(url, params=params, headers=self._headers()) as response:
                if response.status == 200:
                    data = await response.json(content_type=None, loads=orjson.loads)
                    self.stats['successful_requests'] += 1
                    return data
                if response.status in empty_statuses:
                    self.stats['empty_responses'] += 1
                    return None
                self.stats['failed_requests'] += 1
                if response.status == 429:
                    raise APIRateLimitError(self.name)
                raise ProviderUnavailableError(self.name, f"HTTP {response.status}")

        except asyncio.TimeoutError as e:
            self.stats['failed_requests'] += 1
            raise ProviderUnavailableError(self.name, "request timeout") from e
        except aiohttp.ContentTypeError as e:
            self.stats['failed_requests'] += 1
            raise ProviderUnavailableError(self.name, f"unexpected content type: {e.message}") from e
        except aiohttp.ClientError as e:
            self.stats['failed_requests'] += 1
            raise ProviderUnavailableError(self.name, f"{type(e).__name__}: {e}") from e
        except ValueError as e:
            self.stats['failed_requests'] += 1
            raise ProviderUnavailableError(self.name, f"invalid JSON: {e}") from e

    @abstractmethod
    async def fetch(self, token_address: str) -> Optional[DatumT]:
        """Fetch and parse provider data for a token, None when the provider has none"""

    def get_stats(self) -> Dict[str, Any]:
        return {'name': self.name, **self.stats}
