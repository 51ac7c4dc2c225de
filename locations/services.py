"""
Geo helpers shared by cities and venues.

Provides:
- haversine_distance(): great-circle distance in meters
- calculate_bounding_box(): cheap pre-filter around a point
- filter_by_distance(): bounding-box ORM filter
- filter_by_distance_precise(): bounding box, then exact distance in Python
- validate_coordinates(): per-field coordinate errors
"""

import logging
import math
from decimal import Decimal
from typing import Dict, List, Optional, Tuple, Union

from django.db.models import QuerySet

logger = logging.getLogger(__name__)

# Mean Earth radius in meters (for Haversine)
EARTH_RADIUS_METERS = 6_371_000.0

# 1 degree latitude ≈ 111 km
KM_PER_DEGREE = 111.0

Number = Union[float, int, Decimal]


# =============================================================================
# Distance
# =============================================================================


def haversine_distance(lat1: Number, lng1: Number, lat2: Number, lng2: Number) -> float:
    """
    Calculate great-circle distance between two points in meters.

    Uses the Haversine formula on a spherical Earth of radius 6,371 km.
    """
    lat1, lng1, lat2, lng2 = (math.radians(float(v)) for v in (lat1, lng1, lat2, lng2))

    dlat = lat2 - lat1
    dlng = lng2 - lng1

    a = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_METERS * c


def calculate_bounding_box(lat: Number, lng: Number, radius_km: float) -> Tuple[float, float, float, float]:
    """
    Calculate bounding box for initial filtering.

    Returns (min_lat, max_lat, min_lng, max_lng).

    1 degree latitude ≈ 111 km (constant)
    1 degree longitude ≈ 111 * cos(latitude) km (varies by latitude)
    """
    lat = float(lat)
    lng = float(lng)

    # Guard against division by ~0 at the poles
    cos_lat = max(math.cos(math.radians(lat)), 1e-12)

    lat_delta = radius_km / KM_PER_DEGREE
    lng_delta = radius_km / (KM_PER_DEGREE * cos_lat)

    return (
        lat - lat_delta,  # min_lat
        lat + lat_delta,  # max_lat
        lng - lng_delta,  # min_lng
        lng + lng_delta,  # max_lng
    )


def filter_by_distance(
    queryset: QuerySet,
    lat: Number,
    lng: Number,
    radius_m: float,
    lat_field: str = 'latitude',
    lng_field: str = 'longitude',
) -> QuerySet:
    """
    Restrict a queryset to rows inside the bounding box around (lat, lng).

    The box slightly overestimates the circle; callers needing exact
    distances use filter_by_distance_precise().
    """
    min_lat, max_lat, min_lng, max_lng = calculate_bounding_box(lat, lng, radius_m / 1000.0)

    # Keep bounds inside the DecimalField(9, 6) range
    min_lat, max_lat = max(min_lat, -90.0), min(max_lat, 90.0)
    min_lng, max_lng = max(min_lng, -180.0), min(max_lng, 180.0)

    return queryset.filter(
        **{
            f'{lat_field}__gte': min_lat,
            f'{lat_field}__lte': max_lat,
            f'{lng_field}__gte': min_lng,
            f'{lng_field}__lte': max_lng,
        }
    )


def filter_by_distance_precise(
    queryset: QuerySet,
    lat: Number,
    lng: Number,
    radius_m: float,
) -> list:
    """
    Filter objects by exact distance from (lat, lng).

    Bounding box via ORM, then Haversine in Python on the reduced set.
    Each returned object gets a ``distance`` attribute (meters); the list is
    sorted nearest first, ties broken by primary key.

    Args:
        queryset: Queryset of objects with latitude/longitude fields
        lat: Center latitude
        lng: Center longitude
        radius_m: Maximum distance in meters (inclusive)
    """
    results = []
    for obj in filter_by_distance(queryset, lat, lng, radius_m):
        if obj.latitude is None or obj.longitude is None:
            continue
        distance = haversine_distance(lat, lng, obj.latitude, obj.longitude)
        if distance <= radius_m:
            obj.distance = distance
            results.append(obj)

    results.sort(key=lambda o: (o.distance, o.pk))
    return results


# =============================================================================
# Validation
# =============================================================================


def validate_coordinates(latitude: Optional[Number], longitude: Optional[Number]) -> Dict[str, List[str]]:
    """
    Check a coordinate pair, returning errors keyed by field name.

    Both or neither must be present; latitude must be within -90..90 and
    longitude within -180..180. An empty dict means the pair is valid.
    """
    errors = {}

    if latitude is None and longitude is None:
        return errors

    if latitude is None:
        errors['latitude'] = ["Latitude is required when longitude is set."]
    elif not -90 <= float(latitude) <= 90:
        errors['latitude'] = [f"Latitude {latitude} is outside -90..90."]

    if longitude is None:
        errors['longitude'] = ["Longitude is required when latitude is set."]
    elif not -180 <= float(longitude) <= 180:
        errors['longitude'] = [f"Longitude {longitude} is outside -180..180."]

    return errors
