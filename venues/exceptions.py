"""
Errors raised by venue creation and duplicate detection.
"""

from enum import Enum


class VenueErrorCode(str, Enum):
    """Machine-readable error codes for venue operations."""

    DUPLICATE_FOUND = "duplicate_found"  # Candidate matches an existing venue
    INVALID_COORDINATES = "invalid_coordinates"  # Out of range or half-missing
    VENUE_NOT_FOUND = "venue_not_found"


class VenueError(Exception):
    """Base class for venue errors."""

    code: VenueErrorCode


class DuplicateFound(VenueError):
    """
    A candidate venue matches an existing one.

    Carries the existing venue id and the distance in meters so callers can
    reject the insert, offer a merge, or skip silently.
    """

    code = VenueErrorCode.DUPLICATE_FOUND

    def __init__(self, existing_id: int, distance: float):
        self.existing_id = existing_id
        self.distance = distance
        super().__init__(f"Duplicate of venue {existing_id} ({distance:.1f}m away)")


class InvalidCoordinates(VenueError):
    code = VenueErrorCode.INVALID_COORDINATES

    def __init__(self, latitude, longitude, errors=None):
        self.latitude = latitude
        self.longitude = longitude
        self.errors = errors or {}
        super().__init__(f"Invalid coordinates: ({latitude}, {longitude})")


class VenueNotFound(VenueError):
    code = VenueErrorCode.VENUE_NOT_FOUND

    def __init__(self, venue_id):
        self.venue_id = venue_id
        super().__init__(f"Venue {venue_id} not found")
