"""
Shared plumbing for Google API connectors.
"""

import asyncio
import logging
from typing import Any, Callable, Optional, TypeVar

from googleapiclient.discovery import build

from dealsync.connectors.credentials import CredentialsProvider
from dealsync.core.retry import RateLimiter, with_rate_limit_and_retry

logger = logging.getLogger(__name__)

T = TypeVar("T")

ServiceFactory = Callable[[Any], Any]


class GoogleConnector:
    """
    Base class for discovery-based Google API clients.

    The googleapiclient library is synchronous, so every request runs in the
    default executor. Each call is throttled by the connector's rate limiter
    and retried on transient failures.
    """

    api_name: str = ""
    api_version: str = ""

    def __init__(
        self,
        credentials: CredentialsProvider,
        rate_limiter: RateLimiter,
        service_factory: Optional[ServiceFactory] = None,
    ):
        self.credentials = credentials
        self.rate_limiter = rate_limiter
        self._service_factory = service_factory or self._build_service
        self._service: Any = None
        self._service_credentials: Any = None

    def _build_service(self, creds: Any) -> Any:
        return build(
            self.api_name,
            self.api_version,
            credentials=creds,
            cache_discovery=False,
        )

    async def get_service(self) -> Any:
        creds = await self.credentials.get_credentials()
        # Rebuild when the provider hands out refreshed credentials
        if self._service is None or creds is not self._service_credentials:
            self._service = self._service_factory(creds)
            self._service_credentials = creds
        return self._service

    async def _run(self, fn: Callable[[], T]) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn)

    async def _call(self, request_fn: Callable[[], Any]) -> Any:
        """Execute ``request_fn().execute()`` with rate limiting and retries."""
        return await with_rate_limit_and_retry(
            self.rate_limiter,
            lambda: self._run(lambda: request_fn().execute()),
        )
