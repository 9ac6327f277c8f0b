"""
Shared data structures for TripSpot.

Places, routes and settings are plain dataclasses so that every module
(and the store) can share a single definition. Places and routes are
frozen; edits go through ``dataclasses.replace`` and the store.

The ``to_dict``/``from_dict`` pairs use the keys of the exchange
document (``type``/``context``/``lat``/``lng`` for places and
``totalDurationMinutes`` for routes) so exported data round-trips
without renaming.
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

CATEGORIES = ("spot", "food", "hotel", "other")
DEFAULT_LLM_MODEL = "gpt-3.5-turbo"


def new_place_id() -> str:
    """Return a fresh client-side identifier for a place."""
    return uuid.uuid4().hex


def normalise_category(value: Any) -> str:
    value = str(value or "").strip().lower()
    return value if value in CATEGORIES else "other"


@dataclass(frozen=True)
class Place:
    """A point of interest, optionally located."""

    id: str
    name: str
    city: str = ""
    category: str = "other"
    note: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    def __post_init__(self) -> None:
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError(f"Place {self.id!r} must have both coordinates or neither")
        if self.latitude is not None:
            if not (math.isfinite(self.latitude) and math.isfinite(self.longitude)):
                raise ValueError(f"Place {self.id!r} has non-finite coordinates")
            if not (-90.0 <= self.latitude <= 90.0 and -180.0 <= self.longitude <= 180.0):
                raise ValueError(f"Place {self.id!r} coordinates out of range")
        if self.category not in CATEGORIES:
            object.__setattr__(self, "category", normalise_category(self.category))

    @property
    def located(self) -> bool:
        return self.latitude is not None

    @property
    def coords(self) -> tuple:
        """(lat, lon) tuple; only meaningful when ``located``."""
        return self.latitude, self.longitude

    def with_coordinates(self, latitude: float, longitude: float) -> "Place":
        return replace(self, latitude=float(latitude), longitude=float(longitude))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "city": self.city,
            "type": self.category,
            "context": self.note,
            "lat": self.latitude if self.located else 0,
            "lng": self.longitude if self.located else 0,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Place":
        lat = data.get("lat", data.get("latitude"))
        lng = data.get("lng", data.get("longitude"))
        # (0, 0) is the persisted "not geocoded" sentinel
        if lat is None or lng is None or (float(lat) == 0 and float(lng) == 0):
            lat = lng = None
        else:
            lat, lng = float(lat), float(lng)
        return cls(
            id=str(data.get("id") or new_place_id()),
            name=str(data.get("name", "")),
            city=str(data.get("city", "") or ""),
            category=normalise_category(data.get("type", data.get("category"))),
            note=str(data.get("context", data.get("note", "")) or ""),
            latitude=lat,
            longitude=lng,
        )


@dataclass(frozen=True)
class Route:
    """The last computed visiting plan."""

    sequence: List[str] = field(default_factory=list)
    total_duration_minutes: int = 0
    advice: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sequence": list(self.sequence),
            "totalDurationMinutes": self.total_duration_minutes,
            "advice": self.advice,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Route":
        return cls(
            sequence=[str(i) for i in data.get("sequence", [])],
            total_duration_minutes=data.get("totalDurationMinutes", 0),
            advice=str(data.get("advice", "")),
        )


@dataclass
class Settings:
    """Credentials and endpoints for the mapping and LLM services."""

    amap_key: str = ""
    amap_security_code: str = ""
    llm_api_key: str = ""
    llm_base_url: str = ""
    llm_model: str = DEFAULT_LLM_MODEL

    def to_dict(self) -> Dict[str, Any]:
        return {
            "amapKey": self.amap_key,
            "amapSecurityCode": self.amap_security_code,
            "llmApiKey": self.llm_api_key,
            "llmBaseUrl": self.llm_base_url,
            "llmModel": self.llm_model,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Settings":
        return cls(
            amap_key=data.get("amapKey", ""),
            amap_security_code=data.get("amapSecurityCode", ""),
            llm_api_key=data.get("llmApiKey", ""),
            llm_base_url=data.get("llmBaseUrl", ""),
            llm_model=data.get("llmModel") or DEFAULT_LLM_MODEL,
        )
