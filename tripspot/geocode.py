"""
Geocoding utilities for TripSpot.

This module plugs AMap's web geocoding API into the ``geopy`` library
as a regular geopy geocoder, then uses geopy's ``RateLimiter`` to resolve
a batch of extracted places one by one with a fixed delay between calls.

Example usage:

    from tripspot.geocode import geocode_places
    located = geocode_places(places, settings)

Places AMap cannot match are dropped from the result without raising;
pass a ``GeocodeStats`` instance to find out how many were dropped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache, partial
from typing import Iterable, List, Optional
from urllib.parse import urlencode

from geopy.exc import (
    GeocoderAuthenticationFailure,
    GeocoderInsufficientPrivileges,
    GeocoderParseError,
    GeocoderQueryError,
    GeocoderQuotaExceeded,
    GeocoderRateLimited,
    GeocoderServiceError,
    GeocoderTimedOut,
    GeocoderUnavailable,
    GeopyError,
)
from geopy.extra.rate_limiter import RateLimiter
from geopy.geocoders.base import DEFAULT_SENTINEL, Geocoder
from geopy.location import Location

from tripspot import amap
from tripspot.config import AMAP_BASE_URL, GEOCODE_MIN_DELAY_SEC, HTTP_TIMEOUT_SEC
from tripspot.errors import ConfigurationError, MalformedResponse, ServiceUnavailable
from tripspot.models import Place, Settings

logger = logging.getLogger(__name__)

_AUTH_CODES = {"10001", "10005", "10006", "10007", "10008", "10009", "10013"}
_QUOTA_CODES = {"10003", "10010", "10044", "10045"}
_RATE_CODES = {"10004", "10014", "10015", "10019", "10020", "10021"}
_QUERY_CODES = {"20000", "20001", "20002", "20011", "20012"}


class AMap(Geocoder):
    """AMap (Gaode) web service geocoder.

    Documentation at:
        https://lbs.amap.com/api/webservice/guide/api/georegeo

    Args:
        api_key: AMap web service key.
        security_code: Optional private key used to sign requests.
        api_url: Full geocoding endpoint URL.
    """

    def __init__(
        self,
        api_key: str,
        *,
        security_code: Optional[str] = None,
        api_url: str = AMAP_BASE_URL + amap.GEOCODE_PATH,
        timeout=DEFAULT_SENTINEL,
        proxies=DEFAULT_SENTINEL,
        user_agent=None,
        ssl_context=DEFAULT_SENTINEL,
        adapter_factory=None,
    ):
        super().__init__(
            timeout=timeout,
            proxies=proxies,
            user_agent=user_agent,
            ssl_context=ssl_context,
            adapter_factory=adapter_factory,
        )
        self.api_key = api_key
        self.security_code = security_code
        self.api = api_url

    def geocode(self, query, *, city=None, exactly_one=True, timeout=DEFAULT_SENTINEL):
        """Return a location point by address.

        Args:
            query: The address to geocode, e.g. ``"成都武侯祠"``.
            city: Optional city name, code or adcode restricting the search.
            exactly_one: Return one result or a list of results.
            timeout: Seconds to wait for AMap before raising
                :class:`geopy.exc.GeocoderTimedOut`.

        Returns:
            ``None``, :class:`geopy.location.Location` or a list of them.
        """
        params = {
            "key": self.api_key,
            "address": query,
            "city": city or None,
            "output": "JSON",
        }
        url = "?".join((self.api, urlencode(amap.signed_params(params, self.security_code))))
        logger.debug("%s.geocode: %s (city=%s)", type(self).__name__, query, city)
        callback = partial(self._parse_json, exactly_one=exactly_one)
        return self._call_geocoder(url, callback, timeout=timeout)

    def _parse_json(self, page, exactly_one=True):
        if not isinstance(page, dict):
            raise GeocoderParseError("AMap returned a non-object payload")
        self._check_status(page)
        geocodes = page.get("geocodes") or []
        locations = [loc for loc in map(self._parse_place, geocodes) if loc is not None]
        if not locations:
            return None
        if exactly_one:
            return locations[0]
        return locations

    @staticmethod
    def _parse_place(place):
        value = place.get("location") if isinstance(place, dict) else None
        # AMap sends an empty list instead of a string for fuzzy non-matches
        if not value or not isinstance(value, str):
            return None
        try:
            lat, lon = amap.parse_lnglat(value)
        except ValueError:
            raise GeocoderParseError(f"AMap returned an invalid location: {value!r}")
        return Location(place.get("formatted_address") or "", (lat, lon), place)

    @staticmethod
    def _check_status(page):
        if str(page.get("status")) == "1":
            return
        info = page.get("info") or "unknown error"
        code = str(page.get("infocode") or "")
        message = f"AMap error {code}: {info}"
        if code == "10012":
            raise GeocoderInsufficientPrivileges(message)
        if code in _AUTH_CODES:
            raise GeocoderAuthenticationFailure(message)
        if code in _QUOTA_CODES:
            raise GeocoderQuotaExceeded(message)
        if code in _RATE_CODES:
            raise GeocoderRateLimited(message)
        if code in _QUERY_CODES:
            raise GeocoderQueryError(message)
        raise GeocoderServiceError(message)


@lru_cache(maxsize=8)
def _get_geocoder(api_key: str, security_code: str) -> AMap:
    """Return a shared AMap geocoder for a credential pair."""
    return AMap(api_key, security_code=security_code or None, timeout=HTTP_TIMEOUT_SEC)


class TransientRetryLimiter(RateLimiter):
    """``RateLimiter`` retrying only transport failures and throttling.

    Rejected keys, bad queries and unreadable answers propagate at once.
    """

    _retry_exceptions = (GeocoderUnavailable, GeocoderTimedOut, GeocoderRateLimited)


@dataclass
class GeocodeStats:
    """Aggregate counts for one batch; unmatched items are not listed."""

    requested: int = 0
    matched: int = 0

    @property
    def dropped(self) -> int:
        return self.requested - self.matched


def geocode_place(place: Place, geocode) -> Optional[Place]:
    """Resolve a single place with ``geocode`` (an AMap.geocode-like callable).

    Returns the located place, or ``None`` when AMap has no match.
    Service failures are translated into TripSpot errors.
    """
    address = f"{place.city}{place.name}"
    try:
        location = geocode(address, city=place.city or None)
    except GeocoderParseError as exc:
        raise MalformedResponse(f"Geocoding response for {place.name!r} could not be parsed") from exc
    except GeopyError as exc:
        raise ServiceUnavailable(f"Geocoding service failed for {place.name!r}: {exc}") from exc
    if location is None:
        return None
    return place.with_coordinates(location.latitude, location.longitude)


def geocode_places(
    items: Iterable[Place],
    settings: Settings,
    geolocator: Optional[Geocoder] = None,
    min_delay_seconds: float = GEOCODE_MIN_DELAY_SEC,
    error_wait_seconds: float = 1.0,
    stats: Optional[GeocodeStats] = None,
) -> List[Place]:
    """Geocode a batch of places in source order.

    Args:
        items: Places with at least a name (and ideally a city).
        settings: Current settings; the AMap key must be present.
        geolocator: Geocoder to use instead of the AMap one built from
            ``settings``.
        min_delay_seconds: Pause between consecutive AMap calls.
        error_wait_seconds: Pause before the single retry after an
            unreachable, timed-out or rate-limited call.
        stats: Optional diagnostics object filled with batch counts.

    Returns:
        The subset of ``items`` AMap could match, with coordinates filled
        in and every other field unchanged.

    Raises:
        ConfigurationError: No AMap key is configured.
        ServiceUnavailable: AMap could not be reached or refused the key.
        MalformedResponse: AMap answered with something unreadable.
    """
    if not settings.amap_key:
        raise ConfigurationError("AMap key is not configured")
    if geolocator is None:
        geolocator = _get_geocoder(settings.amap_key, settings.amap_security_code)
    geocode = TransientRetryLimiter(
        geolocator.geocode,
        min_delay_seconds=min_delay_seconds,
        max_retries=1,
        error_wait_seconds=error_wait_seconds,
        swallow_exceptions=False,
    )

    stats = stats if stats is not None else GeocodeStats()
    results: List[Place] = []
    for item in items:
        stats.requested += 1
        if not item.name.strip():
            logger.warning("Skipping place %s without a name", item.id)
            continue
        located = geocode_place(item, geocode)
        if located is None:
            logger.warning("Geocoding found no match for %s (%s)", item.name, item.city)
            continue
        stats.matched += 1
        results.append(located)

    logger.info("Geocoded %d of %d places (%d dropped)", stats.matched, stats.requested, stats.dropped)
    return results
