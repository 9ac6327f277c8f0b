"""Helpers shared by the AMap geocoding and driving clients."""

from __future__ import annotations

import hashlib
import math
from typing import Dict, Optional

GEOCODE_PATH = "/v3/geocode/geo"
DRIVING_PATH = "/v3/direction/driving"

# Driving strategy 0 is AMap's "speed first" (fastest) route.
STRATEGY_FASTEST = 0


def format_lnglat(lat: float, lon: float) -> str:
    # AMap wants "lng,lat" with at most six decimals
    return f"{lon:.6f},{lat:.6f}"


def parse_lnglat(value: str) -> tuple:
    """Parse an AMap ``"lng,lat"`` string into a (lat, lon) tuple."""
    lng, lat = value.split(",")
    lat, lng = float(lat), float(lng)
    if not (math.isfinite(lat) and math.isfinite(lng)) or abs(lat) > 90 or abs(lng) > 180:
        raise ValueError(f"coordinates out of range: {value!r}")
    return lat, lng


def signed_params(params: Dict[str, object], security_code: Optional[str]) -> Dict[str, str]:
    """Return ``params`` as strings, with a ``sig`` entry when a secret is set.

    AMap's digital signature is the MD5 of the parameters sorted by name,
    joined as ``k=v&k=v`` (unencoded) with the private key appended.
    """
    out = {k: str(v) for k, v in params.items() if v is not None}
    if security_code:
        raw = "&".join(f"{k}={out[k]}" for k in sorted(out)) + security_code
        out["sig"] = hashlib.md5(raw.encode("utf-8")).hexdigest()
    return out
