"""
Rate-limited SPARQL client with timeout, retry and Retry-After handling.
"""

import asyncio
import json
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Callable, Dict, Optional, Any, Awaitable

import requests

from config import QueryServiceConfig
from wikidata_radius_dump.utils.logging import get_business_logger
from wikidata_radius_dump.utils.errors import TransportError, TransportErrorKind, ValidationError


logger = get_business_logger('query_client')


class ResponseFormat(Enum):
    """Accept types understood by the query endpoint."""
    SPARQL_JSON = "application/sparql-results+json"
    NTRIPLES = "application/n-triples"


Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


class RateLimiter:
    """
    Enforces a minimum interval between request start times.

    One limiter instance is shared by every caller that must respect the same
    upstream policy; acquisitions are serialized so concurrent jobs cannot
    start two requests closer together than ``min_interval``.
    """

    def __init__(self, min_interval: float = 0.2,
                 clock: Clock = time.monotonic,
                 sleep: Sleep = asyncio.sleep):
        if min_interval < 0:
            raise ValidationError("min_interval must not be negative", {"min_interval": min_interval})
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._last_request_time: Optional[float] = None
        self._lock: Optional[asyncio.Lock] = None

    @property
    def last_request_time(self) -> Optional[float]:
        return self._last_request_time

    async def acquire(self) -> float:
        """
        Wait until a request may start, then record its start time.

        Returns:
            The recorded start time (clock units)
        """
        # Created lazily so the lock binds to the running loop
        if self._lock is None:
            self._lock = asyncio.Lock()

        async with self._lock:
            if self._last_request_time is not None:
                wait = self.min_interval - (self._clock() - self._last_request_time)
                if wait > 0:
                    logger.debug(f"Rate limiting delay: {wait:.3f}s")
                    await self._sleep(wait)
            self._last_request_time = self._clock()
            return self._last_request_time


def parse_retry_after(value: Optional[str], default: float = 5.0,
                      now: Optional[datetime] = None) -> float:
    """
    Parse a Retry-After header into seconds.

    Accepts delta-seconds or an HTTP-date; missing or unparsable values
    yield ``default``.
    """
    if not value:
        return default

    value = value.strip()
    try:
        return max(0.0, float(int(value)))
    except ValueError:
        pass

    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return default
    if retry_at is None:
        return default
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=timezone.utc)

    now = now or datetime.now(timezone.utc)
    return max(0.0, (retry_at - now).total_seconds())


class QueryClient:
    """SPARQL endpoint client shared by all crawl jobs of a process."""

    def __init__(self,
                 config: Optional[QueryServiceConfig] = None,
                 rate_limiter: Optional[RateLimiter] = None,
                 session: Optional[requests.Session] = None,
                 sleep: Sleep = asyncio.sleep):
        """
        Initialize the client.

        Args:
            config: Endpoint, agent, timeout and retry settings
            rate_limiter: Shared limiter; a private one is created when omitted
            session: requests session (created when omitted)
            sleep: Awaitable sleep used for backoff and Retry-After waits
        """
        self.config = config or QueryServiceConfig()
        if not self.config.agent_name or not self.config.agent_name.strip():
            raise ValidationError("A client identification (agent name) is required for every request")

        self.rate_limiter = rate_limiter or RateLimiter(self.config.min_request_interval)
        self.session = session or requests.Session()
        self._sleep = sleep

    def _prepare_headers(self, response_format: ResponseFormat) -> Dict[str, str]:
        """Headers sent with every query; the agent headers are mandatory."""
        return {
            'User-Agent': self.config.agent_name,
            'Api-User-Agent': self.config.agent_name,
            'Accept': response_format.value,
            'Accept-Encoding': 'gzip, deflate',
            'Content-Type': 'application/x-www-form-urlencoded',
        }

    async def execute(self, query: str,
                      response_format: ResponseFormat = ResponseFormat.SPARQL_JSON) -> str:
        """
        Execute a query and return the raw response body.

        Raises:
            TransportError: When every attempt failed; carries the last failure
        """
        headers = self._prepare_headers(response_format)
        max_attempts = self.config.retry_attempts
        last_error: Optional[TransportError] = None

        for attempt in range(max_attempts):
            await self.rate_limiter.acquire()
            logger.debug(f"Querying {self.config.endpoint} (attempt {attempt + 1}/{max_attempts})")

            try:
                response = await asyncio.wait_for(
                    asyncio.to_thread(
                        self.session.post,
                        self.config.endpoint,
                        data={'query': query},
                        headers=headers,
                        timeout=self.config.request_timeout,
                    ),
                    timeout=self.config.request_timeout,
                )
            except (asyncio.TimeoutError, requests.exceptions.Timeout):
                last_error = TransportError(
                    TransportErrorKind.TIMEOUT,
                    f"Query timeout after {self.config.request_timeout}s",
                    {"attempt": attempt + 1}
                )
            except requests.exceptions.RequestException as e:
                last_error = TransportError(
                    TransportErrorKind.NETWORK_ERROR,
                    f"Network error: {e}",
                    {"attempt": attempt + 1}
                )
            else:
                if 200 <= response.status_code < 300:
                    logger.debug(f"Query succeeded (status={response.status_code}, size={len(response.content)})")
                    return response.text

                last_error = self._error_for_status(response, attempt)

                if response.status_code == 429:
                    retry_after = parse_retry_after(
                        response.headers.get('Retry-After'),
                        default=self.config.default_retry_after
                    )
                    if attempt < max_attempts - 1:
                        logger.warning(f"Rate limited by query service, waiting {retry_after}s")
                        await self._sleep(retry_after)
                    continue

            if attempt < max_attempts - 1:
                delay = self._calculate_retry_delay(attempt)
                logger.warning(
                    f"Query failed, retrying (attempt {attempt + 1}/{max_attempts}, "
                    f"error: {last_error.message}, retry_delay: {delay}s)"
                )
                await self._sleep(delay)

        logger.error(f"Query failed after {max_attempts} attempts: {last_error.message}")
        raise last_error

    def _error_for_status(self, response: requests.Response, attempt: int) -> TransportError:
        details = {"status_code": response.status_code, "attempt": attempt + 1}
        if response.status_code == 429:
            return TransportError(TransportErrorKind.RATE_LIMITED, "Rate limited", details)
        if response.status_code == 503:
            return TransportError(TransportErrorKind.SERVER_ERROR, "Service temporarily unavailable", details)
        details["body"] = (response.text or "")[:500]
        return TransportError(
            TransportErrorKind.SERVER_ERROR,
            f"Query service error {response.status_code}",
            details
        )

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Exponential backoff: base delay doubled per attempt."""
        return self.config.retry_base_delay * (2 ** attempt)

    async def select(self, query: str) -> Dict[str, Any]:
        """Execute a SELECT query and parse the SPARQL JSON results."""
        body = await self.execute(query, ResponseFormat.SPARQL_JSON)
        try:
            return json.loads(body)
        except json.JSONDecodeError as e:
            raise TransportError(
                TransportErrorKind.SERVER_ERROR,
                f"Malformed SPARQL JSON response: {e}"
            )

    async def construct(self, query: str) -> str:
        """Execute a CONSTRUCT query and return N-Triples text."""
        return await self.execute(query, ResponseFormat.NTRIPLES)

    def close(self) -> None:
        """Close the HTTP session."""
        if self.session:
            self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
