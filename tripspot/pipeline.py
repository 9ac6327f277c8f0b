"""
Pipeline orchestration for TripSpot.

``TripPlanner`` runs the user-triggered actions end to end and writes
each successful stage to the store:

    parse_text  – extract places from notes, geocode them, replace the
                  stored place list (and drop the stale route).
    add_place   – manual entry; stored unlocated, then geocoded.
    plan        – order the selected located places and store the route.

Settings are read from the store at the start of every action, so saved
credentials apply to the next action without a restart. Overlapping
``plan`` calls are not serialised; the last one to finish wins.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, List, Optional

from geopy.geocoders.base import Geocoder
from openai import OpenAI

from tripspot.advice import Advisor
from tripspot.errors import ConfigurationError
from tripspot.extract import extract_places
from tripspot.geocode import GeocodeStats, geocode_places
from tripspot.models import Place, Route, Settings, new_place_id, normalise_category
from tripspot.optimisation import plan_route
from tripspot.routing import DurationEstimator
from tripspot.store import Store

logger = logging.getLogger(__name__)


class TripPlanner:
    """Runs extraction, geocoding and planning against a ``Store``.

    Args:
        store: Where places, routes and settings live.
        mapping_available: Tells whether the mapping service can be used
            right now (for example, whether the host has loaded it).
        llm_client: Chat client to use instead of one built from settings.
        geolocator: Geocoder to use instead of the AMap one.
        estimator_factory: Builds the duration estimator for a settings
            snapshot; ``DurationEstimator`` by default.
    """

    def __init__(
        self,
        store: Store,
        mapping_available: Callable[[], bool] = lambda: True,
        llm_client: Optional[OpenAI] = None,
        geolocator: Optional[Geocoder] = None,
        estimator_factory: Callable[[Settings], DurationEstimator] = DurationEstimator,
        geocode_delay: Optional[float] = None,
    ):
        self.store = store
        self.mapping_available = mapping_available
        self.llm_client = llm_client
        self.geolocator = geolocator
        self.estimator_factory = estimator_factory
        self.geocode_delay = geocode_delay
        self.last_geocode_stats = GeocodeStats()

    def _require_mapping(self, settings: Settings) -> None:
        if not settings.amap_key:
            raise ConfigurationError("AMap key is not configured")
        if not self.mapping_available():
            raise ConfigurationError("Mapping service is not available yet")

    def _geocode(self, places: List[Place], settings: Settings) -> List[Place]:
        stats = GeocodeStats()
        kwargs = {"stats": stats}
        if self.geocode_delay is not None:
            kwargs["min_delay_seconds"] = self.geocode_delay
        located = geocode_places(places, settings, geolocator=self.geolocator, **kwargs)
        self.last_geocode_stats = stats
        return located

    def parse_text(self, text: str) -> List[Place]:
        """Extract and geocode places from ``text`` and store them.

        Unmatched places are left out. Errors from extraction or
        geocoding propagate and leave the store untouched.

        Raises:
            ConfigurationError: A credential is missing or the mapping
                service is not available.
            ExtractionFailure: The notes could not be turned into places.
            ServiceUnavailable: Geocoding failed at the transport level.
            MalformedResponse: Geocoding returned an unreadable answer.
        """
        settings = self.store.get_settings()
        self._require_mapping(settings)
        extracted = extract_places(text, settings, client=self.llm_client)
        located = self._geocode(extracted, settings)
        self.store.replace_places(located)
        logger.info("Stored %d located places out of %d extracted", len(located), len(extracted))
        return located

    def add_place(self, name: str, city: str = "", category: str = "other", note: str = "") -> Place:
        """Store a manually entered place and try to locate it."""
        place = Place(
            id=new_place_id(),
            name=name.strip(),
            city=city.strip(),
            category=normalise_category(category),
            note=note,
        )
        self.store.add_place(place)
        settings = self.store.get_settings()
        if not settings.amap_key or not self.mapping_available():
            logger.info("Mapping unavailable; %s stored without coordinates", place.name)
            return place
        located = self._geocode([place], settings)
        if not located:
            logger.warning("Manual place %s stays unlocated", place.name)
            return place
        return self.store.update_place(located[0])

    def plan(self, selected_ids: Optional[Iterable[str]] = None) -> Route:
        """Plan a route over the selected located places.

        With fewer than two such places the trivial route is returned and
        nothing is stored; callers treat that as "select more places".
        """
        places = [p for p in self.store.list_places() if p.located]
        if selected_ids is not None:
            wanted = set(selected_ids)
            places = [p for p in places if p.id in wanted]
        if len(places) < 2:
            return plan_route(places, estimate=lambda a, b: 0.0)

        settings = self.store.get_settings()
        self._require_mapping(settings)
        estimator = self.estimator_factory(settings)
        route = plan_route(places, estimator.estimate, advisor=Advisor(settings, self.llm_client))
        return self.store.save_route(route)
