"""
Travel-time estimation for TripSpot.

This module answers "how long does it take to drive from A to B?" for
two located places. The primary path asks AMap's driving direction
service for the fastest route. If the service is not configured, fails,
or has no route for the pair, the estimate falls back to the Haversine
distance driven at a fixed average speed (30 km/h), so ``estimate``
always returns a finite, non‑negative number of seconds.

Example usage:

    estimator = DurationEstimator(settings)
    seconds = estimator.estimate(place_a, place_b)

The route optimiser calls ``estimate`` O(n²) times per plan, from several
threads at once. Results are memoised per estimator instance, keyed by the
directed coordinate pair.
"""

from __future__ import annotations

import logging
import math
import threading
from typing import Dict, List, Optional, Sequence, Tuple

import requests

from tripspot import amap
from tripspot.config import AMAP_BASE_URL, FALLBACK_SPEED_KMH, HTTP_TIMEOUT_SEC
from tripspot.models import Place, Settings

EARTH_RADIUS_KM = 6371.0

logger = logging.getLogger(__name__)
_session = requests.Session()


def haversine_distance(coord1: Tuple[float, float], coord2: Tuple[float, float]) -> float:
    """Compute the great‑circle distance between two coordinates in kilometers."""
    lat1, lon1 = coord1
    lat2, lon2 = coord2
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def fallback_duration(
    coord1: Tuple[float, float],
    coord2: Tuple[float, float],
    speed_kmh: float = FALLBACK_SPEED_KMH,
) -> float:
    """Straight-line travel time in seconds at ``speed_kmh``."""
    return haversine_distance(coord1, coord2) / speed_kmh * 3600.0


def compute_haversine_matrix(
    coords: Sequence[Tuple[float, float]],
    speed_kmh: float = FALLBACK_SPEED_KMH,
) -> Tuple[List[List[float]], List[List[float]]]:
    """Compute straight-line distance and duration matrices.

    Args:
        coords: List of (lat, lon) tuples.
        speed_kmh: Assumed constant travel speed in km/h.

    Returns:
        Tuple of (distance_matrix_km, duration_matrix_s). The diagonal is 0.
    """
    n = len(coords)
    dist_matrix = [[0.0] * n for _ in range(n)]
    dur_matrix = [[0.0] * n for _ in range(n)]
    for i in range(n):
        for j in range(n):
            if i == j:
                continue
            dist = haversine_distance(coords[i], coords[j])
            dist_matrix[i][j] = dist
            dur_matrix[i][j] = dist / speed_kmh * 3600.0
    return dist_matrix, dur_matrix


def query_driving_duration(
    origin: Tuple[float, float],
    destination: Tuple[float, float],
    settings: Settings,
    session: Optional[requests.Session] = None,
    timeout: float = HTTP_TIMEOUT_SEC,
) -> Optional[float]:
    """Ask AMap for the fastest driving route and return its duration.

    Args:
        origin: (lat, lon) of the start point.
        destination: (lat, lon) of the end point.
        settings: Settings carrying the AMap key and optional security code.
        session: ``requests`` session to use; a module-wide one by default.
        timeout: Per-request timeout in seconds.

    Returns:
        Duration in seconds, or ``None`` if the request failed or AMap
        found no usable route.
    """
    params = amap.signed_params(
        {
            "key": settings.amap_key,
            "origin": amap.format_lnglat(*origin),
            "destination": amap.format_lnglat(*destination),
            "strategy": amap.STRATEGY_FASTEST,
            "extensions": "base",
            "output": "JSON",
        },
        settings.amap_security_code,
    )
    session = session or _session
    try:
        resp = session.get(AMAP_BASE_URL + amap.DRIVING_PATH, params=params, timeout=timeout)
        if resp.status_code != 200:
            logger.warning("AMap driving HTTP %s for %s -> %s", resp.status_code, origin, destination)
            return None
        data = resp.json()
    except (requests.RequestException, ValueError) as exc:
        logger.warning("AMap driving request failed for %s -> %s: %s", origin, destination, exc)
        return None

    if not isinstance(data, dict):
        logger.warning("AMap driving response is not an object for %s -> %s", origin, destination)
        return None
    if str(data.get("status")) != "1":
        logger.warning(
            "AMap driving error for %s -> %s: %s (%s)",
            origin,
            destination,
            data.get("info"),
            data.get("infocode"),
        )
        return None
    route = data.get("route")
    paths = route.get("paths") if isinstance(route, dict) else None
    if not paths or not isinstance(paths, list):
        logger.info("AMap found no driving route for %s -> %s", origin, destination)
        return None
    if not isinstance(paths[0], dict):
        logger.warning("AMap driving response without a usable path: %r", paths[0])
        return None
    try:
        duration = float(paths[0]["duration"])
    except (KeyError, TypeError, ValueError):
        logger.warning("AMap driving response without a usable duration: %r", paths[0])
        return None
    if not math.isfinite(duration) or duration < 0:
        return None
    return duration


class DurationEstimator:
    """Travel-time cost primitive used by the route optimiser."""

    def __init__(
        self,
        settings: Settings,
        session: Optional[requests.Session] = None,
        timeout: float = HTTP_TIMEOUT_SEC,
        speed_kmh: float = FALLBACK_SPEED_KMH,
        cache: bool = True,
    ) -> None:
        self.settings = settings
        self.session = session
        self.timeout = timeout
        self.speed_kmh = speed_kmh
        self._cache: Optional[Dict[tuple, float]] = {} if cache else None
        self._lock = threading.Lock()
        self.fallbacks = 0

    def estimate(self, origin: Place, destination: Place) -> float:
        """Return the estimated driving time in seconds from ``origin`` to ``destination``."""
        key = (origin.coords, destination.coords)
        if self._cache is not None:
            with self._lock:
                if key in self._cache:
                    return self._cache[key]

        seconds = None
        if origin.coords == destination.coords:
            seconds = 0.0
        elif self.settings.amap_key:
            seconds = query_driving_duration(
                origin.coords, destination.coords, self.settings, self.session, self.timeout
            )
        if seconds is None:
            seconds = fallback_duration(origin.coords, destination.coords, self.speed_kmh)
            with self._lock:
                self.fallbacks += 1
            logger.debug(
                "Using straight-line estimate %.0fs for %s -> %s", seconds, origin.name, destination.name
            )

        if self._cache is not None:
            with self._lock:
                self._cache[key] = seconds
        return seconds
