"""Token metadata lookups from DexScreener with a single-flight cache.

A lookup is served from the in-memory cache, joins a fetch already in
flight for the same address, or starts a new fetch. At most one network
request per address is in flight at any time. Failures resolve to None
and are not cached, so a later lookup retries.
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any

import httpx
from pydantic import ValidationError

from chatgateway.models.schemas import TokenInfo

logger = logging.getLogger(__name__)

DEXSCREENER_URL = "https://api.dexscreener.com/latest/dex"
DEFAULT_TIMEOUT = 10.0


@dataclass(frozen=True)
class CacheEntry:
    value: TokenInfo
    inserted_at: float = field(default_factory=time.monotonic)


def normalize_address(address: str) -> str:
    return address.strip().lower()


class TokenInfoCache:
    """In-memory token metadata cache fronting the market-data API.

    The cache and in-flight tables are guarded by one lock that is never held
    across network I/O, so any thread may call in. Cached entries are shared
    by every caller. In-flight fetches are ``asyncio`` tasks and are only
    joined by callers on the loop that started them; a caller on another
    loop starts its own fetch. The HTTP client this cache creates for itself
    belongs to the first loop that fetches, so callers on several loops
    should pass an ``http_client`` that each of them can use.

    ``network_fetches`` counts fetches started and is for diagnostics only.
    """

    def __init__(
        self,
        base_url: str = DEXSCREENER_URL,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._http_client = http_client
        self._owns_client = http_client is None
        self._lock = threading.Lock()
        self._cache: dict[str, CacheEntry] = {}
        self._in_flight: dict[tuple[asyncio.AbstractEventLoop, str], asyncio.Task] = {}
        self._network_fetches = 0

    @property
    def network_fetches(self) -> int:
        with self._lock:
            return self._network_fetches

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def aclose(self) -> None:
        """Close the HTTP client if this cache created it."""
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    # -----------------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------------

    async def fetch(self, address: str) -> TokenInfo | None:
        """Look up one token. Returns None on a miss or any failure."""
        key = normalize_address(address)
        if not key:
            return None

        flight_key = (asyncio.get_running_loop(), key)
        with self._lock:
            entry = self._cache.get(key)
            if entry is not None:
                return entry.value.model_copy()

            task = self._in_flight.get(flight_key)
            if task is None:
                # Keys are case-folded but base58 addresses are not, so the
                # request keeps the caller's spelling
                task = asyncio.create_task(self._load(flight_key, address.strip()))
                self._in_flight[flight_key] = task
                self._network_fetches += 1

        # shield: one caller giving up must not cancel the shared fetch
        info = await asyncio.shield(task)
        return info.model_copy() if info is not None else None

    async def fetch_many(self, addresses: list[str]) -> dict[str, TokenInfo]:
        """Look up several tokens concurrently.

        Returns only the addresses that resolved, keyed by normalised address;
        failed lookups are left out rather than failing the batch.
        """
        first_spelling: dict[str, str] = {}
        for address in addresses:
            key = normalize_address(address)
            if key:
                first_spelling.setdefault(key, address)

        results = await asyncio.gather(*(self.fetch(a) for a in first_spelling.values()))
        return {
            key: info
            for key, info in zip(first_spelling, results)
            if info is not None
        }

    def clear(self) -> None:
        """Drop every cached entry. In-flight fetches are left running."""
        with self._lock:
            self._cache.clear()

    def cached(self, address: str) -> TokenInfo | None:
        with self._lock:
            entry = self._cache.get(normalize_address(address))
        return entry.value.model_copy() if entry is not None else None

    def in_flight_count(self) -> int:
        with self._lock:
            return len(self._in_flight)

    # -----------------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------------

    async def _load(
        self, flight_key: tuple[asyncio.AbstractEventLoop, str], address: str
    ) -> TokenInfo | None:
        info: TokenInfo | None = None
        try:
            info = await self._request(address)
        finally:
            with self._lock:
                self._in_flight.pop(flight_key, None)
                if info is not None:
                    self._cache[flight_key[1]] = CacheEntry(info)
        return info

    async def _request(self, address: str) -> TokenInfo | None:
        url = f"{self._base_url}/tokens/{address}"

        try:
            resp = await self._get_client().get(
                url, headers={"Accept": "application/json"}, timeout=self._timeout
            )
        except httpx.InvalidURL as exc:
            # Not an HTTPError subclass; raised for control characters or over-long URLs
            logger.warning("DexScreener lookup skipped for %r: %s", address, exc)
            return None
        except httpx.HTTPError as exc:
            logger.warning("DexScreener network error for %s: %s", address, type(exc).__name__)
            return None

        if resp.status_code != 200:
            logger.warning("DexScreener returned %s for %s", resp.status_code, address)
            return None

        try:
            return parse_token_payload(resp.json())
        except (ValueError, ValidationError) as exc:
            logger.warning("DexScreener parse error for %s: %s", address, exc)
            return None


# ---------------------------------------------------------------------------
# Payload parsing
# ---------------------------------------------------------------------------

def _as_float(value: Any) -> float | None:
    """Accept JSON numbers and numeric strings."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _as_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _image_url(pair: dict, base_token: dict) -> str | None:
    """First of pair.info.imageUrl, baseToken.info.imageUrl, pair.info.header."""
    pair_info = _as_dict(pair.get("info"))
    token_info = _as_dict(base_token.get("info"))
    for candidate in (
        pair_info.get("imageUrl"),
        token_info.get("imageUrl"),
        pair_info.get("header"),
    ):
        if isinstance(candidate, str):
            return candidate
    return None


def parse_token_payload(data: Any) -> TokenInfo | None:
    """Build TokenInfo from the first pair of a ``/tokens/{address}`` response."""
    pairs = _as_dict(data).get("pairs")
    if not isinstance(pairs, list) or not pairs or not isinstance(pairs[0], dict):
        return None
    pair = pairs[0]

    base_token = _as_dict(pair.get("baseToken"))
    address = _as_str(base_token.get("address"))
    name = _as_str(base_token.get("name"))
    symbol = _as_str(base_token.get("symbol"))
    if address is None or name is None or symbol is None:
        return None

    return TokenInfo(
        address=address,
        name=name,
        symbol=symbol,
        chain_id=_as_str(pair.get("chainId")) or "unknown",
        price_usd=_as_str(pair.get("priceUsd")),
        price_change_24h=_as_float(_as_dict(pair.get("priceChange")).get("h24")),
        volume_24h=_as_float(_as_dict(pair.get("volume")).get("h24")),
        market_cap=_as_float(pair.get("marketCap")),
        fdv=_as_float(pair.get("fdv")),
        image_url=_image_url(pair, base_token),
        dex_id=_as_str(pair.get("dexId")),
        pair_address=_as_str(pair.get("pairAddress")),
    )
