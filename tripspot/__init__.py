"""
TripSpot package initialization.

This package turns free-form trip notes into an ordered visiting plan.
Components include place extraction, geocoding, travel-time estimation,
route optimisation, route advice and a reactive local store.

Modules:
    extract      – Place extraction from text via an OpenAI-compatible model.
    geocode      – AMap geocoder for geopy and batch geocoding of places.
    routing      – Driving durations via AMap with a Haversine fallback.
    optimisation – Nearest neighbour route planning with concurrent leg queries.
    advice       – Short route summaries with a fixed fallback text.
    store        – SQLite store with change subscriptions.
    pipeline     – ``TripPlanner`` running the stages against the store.

The route is built greedily and is not guaranteed to be the shortest
possible tour.
"""

__all__ = [
    "advice",
    "extract",
    "geocode",
    "optimisation",
    "pipeline",
    "routing",
    "store",
]
