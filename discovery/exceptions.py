"""
Errors raised by the discovery config registry.
"""

from enum import Enum


class DiscoveryErrorCode(str, Enum):
    """Machine-readable error codes for discovery operations."""

    INVALID_SOURCE = "invalid_source"  # Not in the source allow-list
    SOURCE_NOT_FOUND = "source_not_found"  # Not configured for the city
    CITY_NOT_FOUND = "not_found"
    DISCOVERY_NOT_CONFIGURED = "discovery_not_configured"


class DiscoveryError(Exception):
    """Base class for discovery errors."""

    code: DiscoveryErrorCode


class InvalidSource(DiscoveryError):
    code = DiscoveryErrorCode.INVALID_SOURCE

    def __init__(self, name):
        self.name = name
        super().__init__(f"Unknown discovery source: {name!r}")


class SourceNotFound(DiscoveryError):
    code = DiscoveryErrorCode.SOURCE_NOT_FOUND

    def __init__(self, name, city_id=None):
        self.name = name
        self.city_id = city_id
        super().__init__(f"Source {name!r} is not configured for city {city_id}")


class CityNotFound(DiscoveryError):
    code = DiscoveryErrorCode.CITY_NOT_FOUND

    def __init__(self, city_id):
        self.city_id = city_id
        super().__init__(f"City {city_id} not found")


class DiscoveryNotConfigured(DiscoveryError):
    code = DiscoveryErrorCode.DISCOVERY_NOT_CONFIGURED

    def __init__(self, city_id):
        self.city_id = city_id
        super().__init__(f"City {city_id} has no discovery configuration")
