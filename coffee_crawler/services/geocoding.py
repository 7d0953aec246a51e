"""
Cache-first geocoding for coffee origins and roaster addresses.

Resolution order for (location_name, country, region):
1. LocationCoordinates cache
2. Nominatim, under a process-wide 1 request/second throttle
3. LLM coordinate lookup (CoordinateOracle), range-checked

Successful lookups are cached once per key; the first writer wins.
"""

import logging
import threading
import time
from typing import Callable, Dict, Optional

import httpx
from django.conf import settings
from django.db import IntegrityError, transaction

from coffee_crawler.models import GeocodeSource, LocationCoordinates
from coffee_crawler.services.oracles import CoordinateOracle, OracleError

logger = logging.getLogger(__name__)


class GeocodingError(Exception):
    """Primary geocoding service failed (transport, HTTP or body error)."""

    pass


COUNTRY_CODES: Dict[str, str] = {}

for _code, _names in {
    "gb": ("uk", "united kingdom", "great britain", "britain", "england",
           "scotland", "wales", "northern ireland"),
    "us": ("usa", "united states", "united states of america", "america"),
    "ie": ("ireland", "republic of ireland"),
    "fr": ("france",),
    "de": ("germany", "deutschland"),
    "it": ("italy", "italia"),
    "es": ("spain", "españa"),
    "pt": ("portugal",),
    "nl": ("netherlands", "holland"),
    "be": ("belgium",),
    "ch": ("switzerland",),
    "at": ("austria", "österreich"),
    "dk": ("denmark", "danmark"),
    "se": ("sweden", "sverige"),
    "no": ("norway", "norge"),
    "fi": ("finland", "suomi"),
    "pl": ("poland", "polska"),
    "cz": ("czech republic", "czechia"),
    "au": ("australia",),
    "nz": ("new zealand",),
    "ca": ("canada",),
    "jp": ("japan",),
    "kr": ("south korea", "korea"),
    "cn": ("china",),
    "in": ("india",),
    "br": ("brazil", "brasil"),
    "mx": ("mexico",),
    "co": ("colombia",),
    "cr": ("costa rica",),
    "et": ("ethiopia",),
    "ke": ("kenya",),
    "rw": ("rwanda",),
    "tz": ("tanzania",),
    "ug": ("uganda",),
    "gt": ("guatemala",),
    "hn": ("honduras",),
    "ni": ("nicaragua",),
    "pa": ("panama",),
    "pe": ("peru",),
    "bo": ("bolivia",),
    "ec": ("ecuador",),
    "ye": ("yemen",),
    "id": ("indonesia",),
    "vn": ("vietnam",),
    "th": ("thailand",),
    "mm": ("myanmar", "burma"),
    "pg": ("papua new guinea", "png"),
}.items():
    for _name in _names:
        COUNTRY_CODES[_name] = _code


def country_code_for(country: Optional[str]) -> Optional[str]:
    """ISO 3166-1 alpha-2 code for a country name; None searches globally."""
    if not country:
        return None
    return COUNTRY_CODES.get(country.strip().lower())


def build_search_query(
    location_name: Optional[str],
    country: str,
    region: Optional[str] = None,
) -> str:
    """
    Free-text query for the geocoder.

    Prefers the full location name (with the country appended unless it is
    already there), then "region, country", then the country alone.
    """
    if location_name is not None and location_name != country:
        if country.lower() in location_name.lower():
            return location_name
        return f"{location_name}, {country}"

    if region and region.strip():
        return f"{region}, {country}"

    return country


def region_key(region: Optional[str]) -> str:
    """Cache-key form of a region; absent regions are stored as ""."""
    return (region or "").strip()


class RequestThrottle:
    """
    Serialized minimum-interval gate shared by every caller in the process.

    acquire() holds the lock while it sleeps out the rest of the interval
    and records the call time, so no two callers pass within min_interval.
    """

    def __init__(
        self,
        min_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last_call: Optional[float] = None

    def acquire(self) -> float:
        """
        Wait until the interval since the previous call has elapsed.

        Returns:
            Seconds slept
        """
        with self._lock:
            waited = 0.0
            if self._last_call is not None:
                elapsed = self._clock() - self._last_call
                if elapsed < self.min_interval:
                    waited = self.min_interval - elapsed
                    logger.debug(f"Geocoder throttle: sleeping {waited:.3f}s")
                    self._sleep(waited)
            self._last_call = self._clock()
            return waited


class NominatimClient:
    """Minimal client for the Nominatim /search endpoint."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        user_agent: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.base_url = base_url or getattr(
            settings, "GEOCODER_URL", "https://nominatim.openstreetmap.org/search"
        )
        self.user_agent = user_agent or getattr(
            settings,
            "GEOCODER_USER_AGENT",
            "CoffeeBeansFinderApp/1.0 (contact@example.com)",
        )
        self.timeout = timeout or getattr(settings, "CRAWLER_REQUEST_TIMEOUT", 30)

    def search(self, query: str, country_code: Optional[str] = None) -> Optional[Dict]:
        """
        Best match for a query.

        Returns:
            {"lat", "lon", "bounding_box"} or None if nothing matched

        Raises:
            GeocodingError: On transport, HTTP or body failure
        """
        params = {
            "q": query,
            "format": "json",
            "limit": "1",
            "addressdetails": "1",
        }
        if country_code:
            params["countrycodes"] = country_code

        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.get(
                    self.base_url,
                    params=params,
                    headers={"User-Agent": self.user_agent},
                )
                response.raise_for_status()
                results = response.json()

        except httpx.TimeoutException as e:
            raise GeocodingError(f"Timeout after {self.timeout}s") from e

        except httpx.HTTPStatusError as e:
            raise GeocodingError(f"HTTP error {e.response.status_code}") from e

        except httpx.HTTPError as e:
            raise GeocodingError(f"Request error: {e}") from e

        except ValueError as e:
            raise GeocodingError(f"Invalid JSON: {e}") from e

        if not isinstance(results, list) or not results:
            return None

        first = results[0]
        try:
            match = {
                "lat": float(first["lat"]),
                "lon": float(first["lon"]),
                "bounding_box": None,
            }
        except (KeyError, TypeError, ValueError) as e:
            raise GeocodingError(f"Malformed result: {e}") from e

        bbox = first.get("boundingbox")
        if isinstance(bbox, list) and len(bbox) == 4:
            try:
                match["bounding_box"] = {
                    "minLat": float(bbox[0]),
                    "maxLat": float(bbox[1]),
                    "minLon": float(bbox[2]),
                    "maxLon": float(bbox[3]),
                }
            except (TypeError, ValueError):
                logger.debug(f"Ignoring malformed bounding box: {bbox}")

        return match


# Process-wide throttle for the primary geocoder
_geocoder_throttle: Optional[RequestThrottle] = None
_throttle_lock = threading.Lock()


def get_geocoder_throttle() -> RequestThrottle:
    global _geocoder_throttle

    with _throttle_lock:
        if _geocoder_throttle is None:
            _geocoder_throttle = RequestThrottle(
                min_interval=getattr(settings, "GEOCODER_MIN_INTERVAL_SECONDS", 1.0)
            )
        return _geocoder_throttle


class GeocodeResolver:
    """
    Three-tier resolver: cache -> Nominatim -> LLM.
    """

    def __init__(
        self,
        geocoder: Optional[NominatimClient] = None,
        coordinate_oracle: Optional[CoordinateOracle] = None,
        throttle: Optional[RequestThrottle] = None,
    ):
        self.geocoder = geocoder or NominatimClient()
        self.coordinate_oracle = coordinate_oracle or CoordinateOracle()
        self.throttle = throttle or get_geocoder_throttle()

    def find_cached(
        self,
        location_name: str,
        country: str,
        region: Optional[str] = None,
    ) -> Optional[LocationCoordinates]:
        return (
            LocationCoordinates.objects.filter(
                location_name=location_name,
                country=country,
                region=region_key(region),
            )
            .order_by("id")
            .first()
        )

    def resolve(
        self,
        location_name: Optional[str],
        country: Optional[str],
        region: Optional[str] = None,
    ) -> Optional[LocationCoordinates]:
        """
        Resolve coordinates for a location.

        Args:
            location_name: Display name (city, address, or the country itself)
            country: Country name (required)
            region: Optional region/state

        Returns:
            Cached LocationCoordinates, or None if every tier failed
        """
        if not country or not country.strip():
            logger.warning("Cannot geocode: country is empty")
            return None

        location_name = location_name or country
        region = region_key(region)

        cached = self.find_cached(location_name, country, region)
        if cached is not None:
            logger.info(f"Found cached coordinates for: {location_name} ({country}, {region})")
            return cached

        query = build_search_query(location_name, country, region)

        try:
            self.throttle.acquire()
            logger.info(f"Geocoding via Nominatim: {query}")
            match = self.geocoder.search(query, country_code_for(country))
        except GeocodingError as e:
            logger.error(f"Error geocoding '{query}' with Nominatim: {e}")
            match = None

        if match is not None:
            return self._store(
                location_name,
                country,
                region,
                match["lat"],
                match["lon"],
                match["bounding_box"],
                GeocodeSource.GEOCODE_API,
            )

        logger.info(f"Attempting LLM fallback geocoding for: {query}")
        return self._resolve_with_llm(location_name, country, region, query)

    def resolve_country(self, country: Optional[str]) -> Optional[LocationCoordinates]:
        """Country-only variant; region is left out of key and query."""
        if not country or not country.strip():
            logger.warning("Cannot geocode: country is empty")
            return None
        return self.resolve(country, country, None)

    def _resolve_with_llm(
        self,
        location_name: str,
        country: str,
        region: Optional[str],
        query: str,
    ) -> Optional[LocationCoordinates]:
        try:
            lat, lon = self.coordinate_oracle.locate(query)
        except OracleError as e:
            logger.error(f"LLM geocoding failed for '{query}': {e}")
            return None

        if not LocationCoordinates.coordinates_valid(lat, lon):
            logger.error(f"LLM returned invalid coordinates: lat={lat}, lon={lon}")
            return None

        return self._store(
            location_name, country, region, lat, lon, None, GeocodeSource.LLM_FALLBACK
        )

    def _store(
        self,
        location_name: str,
        country: str,
        region: Optional[str],
        latitude: float,
        longitude: float,
        bounding_box: Optional[Dict],
        source: str,
    ) -> Optional[LocationCoordinates]:
        """Create the cache row unless another worker got there first."""
        if not LocationCoordinates.coordinates_valid(latitude, longitude):
            logger.error(
                f"Refusing to cache out-of-range coordinates for {location_name}: "
                f"lat={latitude}, lon={longitude}"
            )
            return None

        existing = self.find_cached(location_name, country, region)
        if existing is not None:
            return existing

        try:
            with transaction.atomic():
                location = LocationCoordinates.objects.create(
                    location_name=location_name,
                    country=country,
                    region=region_key(region),
                    latitude=latitude,
                    longitude=longitude,
                    bounding_box=bounding_box,
                    source=source,
                )
        except IntegrityError:
            logger.info(f"Location {location_name} cached concurrently, using existing row")
            return self.find_cached(location_name, country, region)

        logger.info(
            f"Geocoded and cached: {location_name} -> ({latitude}, {longitude}) "
            f"[source: {source}]"
        )
        return location

    def seed_location(
        self,
        location_name: str,
        country: str,
        region: Optional[str],
        latitude: float,
        longitude: float,
        bounding_box: Optional[Dict] = None,
    ) -> bool:
        """
        Insert a known coordinate pair.

        Returns:
            True if a new row was created, False if the key already existed
        """
        if self.find_cached(location_name, country, region) is not None:
            logger.debug(f"Location already seeded: {location_name} ({country}, {region})")
            return False

        created = self._store(
            location_name,
            country,
            region,
            latitude,
            longitude,
            bounding_box,
            GeocodeSource.SEEDED,
        )
        return created is not None and created.source == GeocodeSource.SEEDED


def get_geocode_resolver() -> GeocodeResolver:
    return GeocodeResolver()
