"""
Errors raised by city validation, resolution and merging.

Each error carries a machine-readable code so admin tooling can branch on
it without matching exception types or messages.
"""

from enum import Enum


class CityErrorCode(str, Enum):
    """Machine-readable error codes for city operations."""

    NO_CITY_FOUND = "no_city_found"  # Address did not yield a city name
    NO_REPLACEMENT_FOUND = "no_replacement_found"  # No venue address yielded a city
    SOURCE_CITY_NOT_FOUND = "source_city_not_found"
    TARGET_CITY_NOT_FOUND = "target_city_not_found"
    DIFFERENT_COUNTRIES = "cities_must_be_in_same_country"


class CityError(Exception):
    """Base class for city errors."""

    code: CityErrorCode

    def __init__(self, message: str = ""):
        super().__init__(message or self.code.value)


class NoCityFound(CityError):
    code = CityErrorCode.NO_CITY_FOUND

    def __init__(self, address=None):
        self.address = address
        super().__init__(f"No city found in address: {address!r}")


class NoReplacementFound(CityError):
    code = CityErrorCode.NO_REPLACEMENT_FOUND

    def __init__(self, city_id=None):
        self.city_id = city_id
        super().__init__(f"No replacement city found for city {city_id}")


class SourceCityNotFound(CityError):
    code = CityErrorCode.SOURCE_CITY_NOT_FOUND

    def __init__(self, city_ids=()):
        self.city_ids = list(city_ids)
        super().__init__(f"Source cities not found: {self.city_ids}")


class TargetCityNotFound(CityError):
    code = CityErrorCode.TARGET_CITY_NOT_FOUND

    def __init__(self, city_id=None):
        self.city_id = city_id
        super().__init__(f"Target city {city_id} not found")


class CitiesInDifferentCountries(CityError):
    code = CityErrorCode.DIFFERENT_COUNTRIES

    def __init__(self, target_id=None, source_ids=()):
        self.target_id = target_id
        self.source_ids = list(source_ids)
        super().__init__(f"Cities {self.source_ids} are not in the same country as city {target_id}")
