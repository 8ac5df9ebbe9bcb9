import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

import aiohttp

DEFAULT_API_BASE = "https://www.simcompanies.com/api/v4"
USER_AGENT = "saturation-recorder/1.0"


class FetchError(Exception):
    """Raised for a non-200 answer from the market endpoint."""


class MalformedPayloadError(ValueError):
    """Raised when the market endpoint answers with something that is not a record list."""


class GateTimeoutError(Exception):
    """Raised when the readiness gate gives up waiting for the sentinel resource."""

    def __init__(self, realm_id, attempts: int, elapsed: float):
        self.realm_id = realm_id
        self.attempts = attempts
        self.elapsed = elapsed
        super().__init__(
            f"realm {realm_id}: sentinel not ready after {attempts} polls ({elapsed:.1f}s)"
        )


class MarketFetcher:
    """
    Market-Fetcher Module
    Purpose: Pull the retail saturation snapshot of one realm.

    Every call is bounded by a client timeout. Failures are retried a fixed
    number of times and then degrade to an empty mapping, which callers must
    read as "no data".
    """

    def __init__(
        self,
        base_url: str = DEFAULT_API_BASE,
        timeout_seconds: float = 5.0,
        retry_delay_seconds: float = 1.0,
        id_field: str = "dbLetter",
        value_field: str = "saturation",
        drop_non_positive: bool = False,
        session=None,
        logger: Optional[logging.Logger] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=float(timeout_seconds))
        self.retry_delay_seconds = float(retry_delay_seconds)
        self.id_field = id_field
        self.value_field = value_field
        self.drop_non_positive = drop_non_positive
        self.session = session
        self.headers = {"User-Agent": USER_AGENT, "Accept": "application/json"}
        self.logger = logger or logging.getLogger("MarketFetcher")

    def url_for(self, realm_id) -> str:
        return f"{self.base_url}/{realm_id}/resources-retail-info"

    async def fetch(self, realm_id, max_retries: int = 10) -> Dict[str, float]:
        """
        Returns {resource_id: saturation} for the realm, or {} once
        max_retries + 1 attempts have failed.
        """
        url = self.url_for(realm_id)
        attempts = max(0, int(max_retries)) + 1

        for attempt in range(1, attempts + 1):
            try:
                self.logger.info(f"Fetching saturation for realm {realm_id} (attempt {attempt}/{attempts})")
                records = await self._get_json(url)
                data = self.parse_records(records)
                self.logger.info(f"Fetched {len(data)} saturation values for realm {realm_id}")
                return data
            except (aiohttp.ClientError, asyncio.TimeoutError, FetchError, ValueError) as e:
                remaining = attempts - attempt
                self.logger.warning(
                    f"Saturation fetch failed for realm {realm_id}. Retries left: {remaining}. Error: {e!r}"
                )
                if remaining > 0 and self.retry_delay_seconds > 0:
                    await asyncio.sleep(self.retry_delay_seconds)

        self.logger.error(f"Giving up on realm {realm_id} after {attempts} attempts")
        return {}

    async def _get_json(self, url: str) -> Any:
        if self.session is not None:
            return await self._request(self.session, url)
        async with aiohttp.ClientSession(timeout=self.timeout, headers=self.headers) as session:
            return await self._request(session, url)

    async def _request(self, session, url: str) -> Any:
        async with session.get(url, timeout=self.timeout) as response:
            if response.status != 200:
                raise FetchError(f"HTTP {response.status} from {url}")
            # The endpoint does not always label its body as JSON.
            return await response.json(content_type=None)

    def parse_records(self, records: List[Dict[str, Any]]) -> Dict[str, float]:
        if not isinstance(records, list):
            raise MalformedPayloadError(f"expected a list of records, got {type(records).__name__}")

        data: Dict[str, float] = {}
        for record in records:
            if not isinstance(record, dict):
                raise MalformedPayloadError(f"record is not an object: {record!r}")
            if self.id_field not in record or self.value_field not in record:
                raise MalformedPayloadError(
                    f"record missing '{self.id_field}' or '{self.value_field}': {record!r}"
                )
            value = record[self.value_field]
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise MalformedPayloadError(f"non-numeric saturation: {record!r}")
            if self.drop_non_positive and value <= 0:
                continue
            data[str(record[self.id_field])] = value
        return data


class SaturationGate:
    """
    Polls the fetcher until the sentinel resource reports a positive
    saturation. Upstream publishes an all-zero snapshot while it refreshes,
    so an unready sentinel is not an error, only a reason to poll again.
    """

    def __init__(
        self,
        fetcher: MarketFetcher,
        sentinel_id: str = "3",
        max_retries: int = 10,
        poll_interval_seconds: float = 30.0,
        max_attempts: Optional[int] = None,
        max_duration_seconds: Optional[float] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.fetcher = fetcher
        self.sentinel_id = str(sentinel_id)
        self.max_retries = max_retries
        self.poll_interval_seconds = float(poll_interval_seconds)
        self.max_attempts = max_attempts
        self.max_duration_seconds = max_duration_seconds
        self.logger = logger or logging.getLogger("SaturationGate")

    def is_ready(self, data: Dict[str, float]) -> bool:
        value = data.get(self.sentinel_id)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return False
        return value > 0

    async def ensure_ready(self, realm_id) -> Dict[str, float]:
        self.logger.info(f"Waiting for sentinel {self.sentinel_id} on realm {realm_id}")
        started = time.monotonic()
        attempt = 0

        while True:
            attempt += 1
            data = await self.fetcher.fetch(realm_id, self.max_retries)
            if self.is_ready(data):
                self.logger.info(
                    f"Realm {realm_id} ready: sentinel {self.sentinel_id}={data[self.sentinel_id]} (poll {attempt})"
                )
                return data

            if not data:
                self.logger.error(f"Empty snapshot for realm {realm_id}, polling again")
            else:
                self.logger.warning(
                    f"Realm {realm_id} not ready: sentinel {self.sentinel_id}={data.get(self.sentinel_id)!r}"
                )

            elapsed = time.monotonic() - started
            if self.max_attempts is not None and attempt >= self.max_attempts:
                raise GateTimeoutError(realm_id, attempt, elapsed)
            if self.max_duration_seconds is not None and elapsed >= self.max_duration_seconds:
                raise GateTimeoutError(realm_id, attempt, elapsed)

            await asyncio.sleep(self.poll_interval_seconds)
