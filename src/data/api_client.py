"""
Transit API Client
==================
Thin requests-based client for the pis-gateway v2/v3 transit API.
"""

import logging
import time
from typing import Any, Dict, Iterable, Optional
from urllib.parse import urlparse

import requests

from ..config import API_KEY, FETCH_BACKOFF, FETCH_RETRIES, REQUEST_TIMEOUT, USER_AGENT
from .sources import Source

logger = logging.getLogger(__name__)


class APIError(RuntimeError):
    """A request failed after every retry, or returned a non-OK status."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


def build_headers(api_base: str, api_key: str = API_KEY) -> Dict[str, str]:
    """Headers the gateway expects, including an Origin matching the API host."""
    parsed = urlparse(api_base)
    origin = f"{parsed.scheme}://{parsed.netloc}"
    return {
        'x-api-key': api_key,
        'User-Agent': USER_AGENT,
        'Origin': origin,
        'Referer': origin + '/',
    }


class TransitAPIClient:
    """
    Client for one source's API.

    Usage:
        client = TransitAPIClient(get_source('rustavi'))
        stops = client.stops('en')
        details = client.route_details('1:R826', 'en')
    """

    def __init__(
        self,
        source: Source,
        api_key: str = API_KEY,
        session: Optional[requests.Session] = None,
        retries: int = FETCH_RETRIES,
        backoff: float = FETCH_BACKOFF,
        timeout: float = REQUEST_TIMEOUT,
    ):
        self.source = source
        self.v2 = source.api_base
        self.v3 = source.api_base_v3
        self.retries = max(1, retries)
        self.backoff = backoff
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update(build_headers(source.api_base, api_key))

    def close(self) -> None:
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # ========================================================================
    # TRANSPORT
    # ========================================================================

    def fetch_with_retry(self, url: str, params: Optional[Dict[str, Any]] = None) -> requests.Response:
        """
        GET url, retrying non-OK responses and connection errors.

        Sleeps backoff * attempt between attempts. The last non-OK response is
        returned to the caller; a connection error on the last attempt raises
        APIError.
        """
        attempt = 1
        while True:
            try:
                response = self.session.get(url, params=params, timeout=self.timeout)
            except requests.RequestException as e:
                logger.warning(f"[Retry {attempt}/{self.retries}] Failed to fetch {url}: {e}")
                if attempt >= self.retries:
                    raise APIError(f"Failed to fetch {url}: {e}") from e
            else:
                if response.ok or attempt >= self.retries:
                    return response
                logger.debug(f"HTTP {response.status_code} for {url}, retrying")

            time.sleep(self.backoff * attempt)
            attempt += 1

    def get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        response = self.fetch_with_retry(url, params)
        if not response.ok:
            raise APIError(f"HTTP {response.status_code} for {url}", status=response.status_code)
        return response.json()

    # ========================================================================
    # ENDPOINTS
    # ========================================================================

    def stops(self, locale: str = 'en') -> list:
        return self.get_json(f"{self.v2}/stops", {'locale': locale})

    def routes(self, locale: str = 'en') -> list:
        return self.get_json(f"{self.v2}/routes", {'locale': locale})

    def route_stops(self, route_id: str) -> list:
        """Ordered stops of a route (v2)."""
        return self.get_json(f"{self.v2}/routes/{route_id}/stops")

    def route_details(self, route_id: str, locale: str = 'en') -> dict:
        return self.get_json(f"{self.v3}/routes/{route_id}", {'locale': locale})

    def stops_of_patterns(self, route_id: str, pattern_suffixes: Iterable[str], locale: str = 'en') -> Any:
        params = {'patternSuffixes': ','.join(pattern_suffixes), 'locale': locale}
        return self.get_json(f"{self.v3}/routes/{route_id}/stops-of-patterns", params)

    def schedule(self, route_id: str, pattern_suffix: str, locale: str = 'en') -> Any:
        params = {'patternSuffix': pattern_suffix, 'locale': locale}
        return self.get_json(f"{self.v3}/routes/{route_id}/schedule", params)

    def polylines(self, route_id: str, pattern_suffixes: Iterable[str]) -> Any:
        params = {'patternSuffixes': ','.join(pattern_suffixes)}
        return self.get_json(f"{self.v3}/routes/{route_id}/polylines", params)
