"""
Exception types raised by the TripSpot pipeline.

A geocoding "no match" is not represented here: the geocoder returns
``None`` for it and the batch helper drops the item.
"""

from __future__ import annotations


class TripSpotError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(TripSpotError):
    """A required credential is missing. Not retryable until it is saved."""


class ServiceUnavailable(TripSpotError):
    """Transport, authentication or quota failure of an external service."""


class MalformedResponse(TripSpotError):
    """An external service answered with a payload we cannot interpret."""


class ExtractionFailure(TripSpotError):
    """Place extraction from free text failed."""


class ExtractionUnavailable(ExtractionFailure, ServiceUnavailable):
    pass


class ExtractionMalformed(ExtractionFailure, MalformedResponse):
    pass


class InsufficientLocations(TripSpotError):
    """The route optimiser was given places it cannot sequence."""
