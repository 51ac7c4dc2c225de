"""
Geocoding for cities using OpenStreetMap/Nominatim.

Cities created by admin tooling or by replacement suggestion may lack
coordinates; these helpers fill them in.
"""

import logging
from decimal import Decimal
from typing import Optional, Tuple

from geopy.exc import GeocoderServiceError, GeocoderTimedOut
from geopy.geocoders import Nominatim

logger = logging.getLogger(__name__)

# User agent for Nominatim (required by their usage policy)
USER_AGENT = "venuecheck-data-quality"


def geocode_place(query: str, country_code: Optional[str] = None) -> Tuple[Optional[Decimal], Optional[Decimal]]:
    """
    Geocode a place name to latitude/longitude.

    Args:
        query: Place name, e.g. "Carlisle"
        country_code: ISO code restricting the search, e.g. "GB"

    Returns:
        Tuple of (latitude, longitude) as Decimals, or (None, None) if not found
    """
    if not query or not query.strip():
        return (None, None)

    try:
        geocoder = Nominatim(user_agent=USER_AGENT, timeout=10)
        location = geocoder.geocode(
            query,
            country_codes=country_code.lower() if country_code else None,
            featuretype='city',
        )

        if location:
            lat = Decimal(str(location.latitude)).quantize(Decimal('0.000001'))
            lon = Decimal(str(location.longitude)).quantize(Decimal('0.000001'))
            logger.info(f"Geocoded '{query}' to ({lat}, {lon})")
            return (lat, lon)

        logger.warning(f"No geocoding result for: {query}")
        return (None, None)

    except (GeocoderTimedOut, GeocoderServiceError) as e:
        logger.error(f"Geocoding service error for '{query}': {e}")
        return (None, None)


def geocode_city(city_id: int) -> bool:
    """
    Geocode a city by ID and store its coordinates.

    Returns:
        True if coordinates were updated, False otherwise
    """
    from locations.models import City

    try:
        city = City.objects.select_related('country').get(id=city_id)
    except City.DoesNotExist:
        logger.warning(f"City {city_id} not found for geocoding")
        return False

    if city.latitude is not None and city.longitude is not None:
        logger.debug(f"City {city_id} already has coordinates, skipping")
        return False

    lat, lon = geocode_place(city.name, city.country.code)

    if lat is not None and lon is not None:
        city.latitude = lat
        city.longitude = lon
        city.save(update_fields=['latitude', 'longitude', 'updated_at'])
        logger.info(f"Updated city {city_id} coordinates: ({lat}, {lon})")
        return True

    return False
