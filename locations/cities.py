"""
City validation, repair and merging.

Provides:
- create_city(): validated creation with per-field errors
- add_alternate_name() / remove_alternate_name()
- is_valid_city_name(): heuristics plus gazetteer lookup
- find_invalid_cities(): cities whose names look like addresses or postcodes
- suggest_replacement_city(): pick/create the real city from venue addresses
- find_potential_duplicate_cities(): same-name or nearby cities in a country
- merge_cities(): move venues, record alternate names, delete sources
- count_orphaned_cities() / delete_orphaned_cities()
"""

import logging
import unicodedata
from collections import Counter, defaultdict
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Set, Union

from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import Count, Q

from locations.addresses import detect_data_quality_issues, extract_city_from_address
from locations.exceptions import (
    CitiesInDifferentCountries,
    NoCityFound,
    NoReplacementFound,
    SourceCityNotFound,
    TargetCityNotFound,
)
from locations.models import City, Country, GazetteerPlace, normalize_for_matching
from locations.services import filter_by_distance_precise

logger = logging.getLogger(__name__)

COORDINATE_PLACES = Decimal('0.000001')


# =============================================================================
# Creation and alternate names
# =============================================================================


def create_city(
    name: str,
    country: Union[Country, int],
    latitude=None,
    longitude=None,
    alternate_names: Optional[List[str]] = None,
) -> City:
    """
    Create a city after full model validation.

    Raises:
        ValidationError: with per-field messages (blank name, unknown
            country, out-of-range or half-missing coordinates)
    """
    country_id = country.pk if isinstance(country, Country) else country
    city = City(
        name=(name or '').strip(),
        country_id=country_id,
        latitude=latitude,
        longitude=longitude,
        alternate_names=list(alternate_names or []),
    )
    city.full_clean()
    city.save()
    logger.info(f"Created city {city.id}: {city.name} (country {country_id})")
    return city


def add_alternate_name(city: City, alternate_name: str) -> City:
    """Append an alternate name, rejecting blanks and duplicates."""
    alternate_name = (alternate_name or '').strip()
    existing = list(city.alternate_names or [])

    if not alternate_name:
        raise ValidationError({'alternate_names': ["Alternate name cannot be blank."]})
    if alternate_name in existing:
        raise ValidationError({'alternate_names': [f"'{alternate_name}' is already an alternate name."]})

    city.alternate_names = existing + [alternate_name]
    city.save(update_fields=['alternate_names', 'updated_at'])
    return city


def remove_alternate_name(city: City, alternate_name: str) -> City:
    city.alternate_names = [n for n in (city.alternate_names or []) if n != alternate_name]
    city.save(update_fields=['alternate_names', 'updated_at'])
    return city


# =============================================================================
# Validation
# =============================================================================


def _gazetteer_countries() -> Set[str]:
    return set(GazetteerPlace.objects.values_list('country_code', flat=True).distinct())


def _has_gazetteer(country_code: str) -> bool:
    return GazetteerPlace.objects.filter(country_code=country_code).exists()


def _known_names(country_code: str, normalized_names: Iterable[str]) -> Set[str]:
    """Return the subset of normalized names present in the gazetteer for a country."""
    names = set(normalized_names)
    if not names:
        return set()

    rows = GazetteerPlace.objects.filter(country_code=country_code).filter(
        Q(normalized_name__in=names) | Q(normalized_ascii_name__in=names)
    ).values_list('normalized_name', 'normalized_ascii_name')

    known = set()
    for normalized_name, normalized_ascii_name in rows:
        known.add(normalized_name)
        known.add(normalized_ascii_name)
    return known & names


def is_valid_city_name(name: Optional[str], country_code: Optional[str]) -> bool:
    """
    Check whether a string is a plausible city name for a country.

    Names with data quality issues (street addresses, postcodes) are always
    invalid. When the gazetteer holds places for the country the name must
    also match one of them; otherwise the heuristics alone decide.
    """
    if not name or not name.strip():
        return False

    if detect_data_quality_issues(name):
        return False

    country_code = (country_code or '').upper()
    if not _has_gazetteer(country_code):
        return True

    normalized = normalize_for_matching(name)
    return normalized in _known_names(country_code, [normalized])


def find_invalid_cities(country_code: Optional[str] = None) -> List[City]:
    """
    Return cities whose names fail validation, ordered by name.

    Heuristic failures are detected without touching the gazetteer; names
    that pass are then checked in one gazetteer query per country.
    """
    cities = City.objects.select_related('country').order_by('name', 'id')
    if country_code:
        cities = cities.filter(country__code=country_code.upper())

    gazetteer_countries = _gazetteer_countries()
    invalid_ids = set()
    pending: Dict[str, List[City]] = defaultdict(list)

    cities = list(cities)
    for city in cities:
        if detect_data_quality_issues(city.name):
            invalid_ids.add(city.id)
        elif city.country.code in gazetteer_countries:
            pending[city.country.code].append(city)

    for code, candidates in pending.items():
        known = _known_names(code, (normalize_for_matching(c.name) for c in candidates))
        for city in candidates:
            if normalize_for_matching(city.name) not in known:
                invalid_ids.add(city.id)

    invalid = [city for city in cities if city.id in invalid_ids]
    logger.info(f"Found {len(invalid)} invalid cities out of {len(cities)}")
    return invalid


# =============================================================================
# Replacement
# =============================================================================


def suggest_replacement_city(invalid_city: City) -> City:
    """
    Find or create the real city for an invalid city record.

    Extracts a city name from every venue address in the invalid city,
    picks the most frequent valid name, and returns the existing city with
    that name in the same country or creates it (positioned at the centroid
    of the venues that named it).

    Raises:
        NoReplacementFound: no venues, no addresses, or no address yields a
            valid city name
    """
    country_code = invalid_city.country.code
    counts = Counter()
    coordinates = defaultdict(list)
    valid_names: Dict[str, bool] = {}

    for venue in invalid_city.venues.exclude(address='').order_by('id'):
        try:
            name = extract_city_from_address(venue.address, country_code)
        except NoCityFound:
            logger.debug(f"No city in address of venue {venue.id}: {venue.address!r}")
            continue

        if name not in valid_names:
            valid_names[name] = is_valid_city_name(name, country_code)
        if not valid_names[name]:
            continue

        counts[name] += 1
        if venue.latitude is not None and venue.longitude is not None:
            coordinates[name].append((venue.latitude, venue.longitude))

    if not counts:
        raise NoReplacementFound(invalid_city.id)

    name, _ = counts.most_common(1)[0]

    existing = (
        City.objects.filter(country_id=invalid_city.country_id, name__iexact=name)
        .exclude(pk=invalid_city.pk)
        .order_by('id')
        .first()
    )
    if existing:
        logger.info(f"Suggested existing city {existing.id} ({existing.name}) for invalid city {invalid_city.id}")
        return existing

    latitude = longitude = None
    if points := coordinates[name]:
        latitude = (sum(lat for lat, _ in points) / len(points)).quantize(COORDINATE_PLACES)
        longitude = (sum(lng for _, lng in points) / len(points)).quantize(COORDINATE_PLACES)

    city = create_city(name, invalid_city.country_id, latitude=latitude, longitude=longitude)
    logger.info(f"Created replacement city {city.id} ({city.name}) for invalid city {invalid_city.id}")
    return city


# =============================================================================
# Duplicate detection
# =============================================================================

# Cities whose centres are closer than this are merge candidates
DUPLICATE_CITY_RADIUS_M = 10_000

# Letters NFKD doesn't decompose
_UNDECOMPOSED_LETTERS = str.maketrans({'ł': 'l', 'ø': 'o', 'đ': 'd', 'ß': 'ss', 'æ': 'ae', 'œ': 'oe'})


def fold_city_name(name: Optional[str]) -> str:
    """
    Normalize a city name for duplicate matching, dropping diacritics.

    "Kraków" and "Krakow" both fold to "krakow", "Łódź" to "lodz".
    """
    normalized = normalize_for_matching(name or '').translate(_UNDECOMPOSED_LETTERS)
    decomposed = unicodedata.normalize('NFKD', normalized)
    return ''.join(ch for ch in decomposed if not unicodedata.combining(ch))


def find_potential_duplicate_cities(country_code: Optional[str] = None) -> List[List[City]]:
    """
    Group cities that are probably the same place.

    Two cities in the same country are linked when their folded names are
    equal or their centres are within DUPLICATE_CITY_RADIUS_M. Links are
    transitive, so A-B and B-C put all three in one group.

    Returns:
        Groups of two or more cities, each annotated with venue_count and
        ordered by venue count (descending) then id. Groups are ordered by
        their lowest city id.
    """
    from venues.clustering import DisjointSet

    cities = City.objects.select_related('country').annotate(venue_count=Count('venues')).order_by('id')
    if country_code:
        cities = cities.filter(country__code=country_code.upper())
    cities = list(cities)
    by_id = {city.id: city for city in cities}

    links = DisjointSet()

    first_by_name: Dict[tuple, int] = {}
    for city in cities:
        key = (city.country_id, fold_city_name(city.name))
        if not key[1]:
            continue
        if key in first_by_name:
            links.union(first_by_name[key], city.id)
        else:
            first_by_name[key] = city.id

    for city in cities:
        if city.latitude is None or city.longitude is None:
            continue
        later = City.objects.filter(country_id=city.country_id, pk__gt=city.pk)
        for nearby in filter_by_distance_precise(later, city.latitude, city.longitude, DUPLICATE_CITY_RADIUS_M):
            if nearby.pk in by_id:
                links.union(city.id, nearby.pk)

    groups = []
    for ids in links.groups():
        members = sorted((by_id[pk] for pk in ids), key=lambda c: (-c.venue_count, c.id))
        if len(members) >= 2:
            groups.append(members)
    groups.sort(key=lambda members: min(c.id for c in members))

    logger.info(f"Found {len(groups)} potential duplicate city groups")
    return groups


# =============================================================================
# Merging
# =============================================================================


def merge_cities(target_city_id: int, source_city_ids, add_as_alternates: bool = True) -> dict:
    """
    Merge one or more source cities into a target city.

    In a single transaction: moves every venue from the sources to the
    target, appends source names to the target's alternate names
    (deduplicated), and deletes the sources.

    Args:
        target_city_id: City to keep
        source_city_ids: A city id or a list of city ids to merge away
        add_as_alternates: Record source names as alternate names

    Returns:
        {'target_city', 'venues_moved', 'events_moved', 'cities_deleted'}

    Raises:
        TargetCityNotFound: target does not exist
        SourceCityNotFound: any source does not exist
        CitiesInDifferentCountries: a source belongs to another country
    """
    from events.models import Event
    from venues.models import Venue

    if isinstance(source_city_ids, (int, str)):
        source_city_ids = [source_city_ids]
    source_city_ids = list(dict.fromkeys(int(pk) for pk in source_city_ids))
    target_city_id = int(target_city_id)

    if target_city_id in source_city_ids:
        raise ValueError(f"City {target_city_id} cannot be merged into itself")

    with transaction.atomic():
        try:
            target = City.objects.select_for_update().get(pk=target_city_id)
        except City.DoesNotExist:
            raise TargetCityNotFound(target_city_id)

        sources = list(City.objects.select_for_update().filter(pk__in=source_city_ids).order_by('id'))
        if len(sources) != len(source_city_ids):
            found = {city.id for city in sources}
            raise SourceCityNotFound([pk for pk in source_city_ids if pk not in found])

        if any(city.country_id != target.country_id for city in sources):
            raise CitiesInDifferentCountries(target_city_id, source_city_ids)

        events_moved = Event.objects.filter(venue__city_id__in=source_city_ids).count()
        venues_moved = Venue.objects.filter(city_id__in=source_city_ids).update(city=target)

        if add_as_alternates:
            alternates = list(target.alternate_names or [])
            for city in sources:
                if city.name not in alternates and city.name != target.name:
                    alternates.append(city.name)
            if alternates != (target.alternate_names or []):
                target.alternate_names = alternates
                target.save(update_fields=['alternate_names', 'updated_at'])

        _, deleted = City.objects.filter(pk__in=source_city_ids).delete()
        cities_deleted = deleted.get(City._meta.label, 0)

    logger.info(
        f"Merged cities {source_city_ids} into {target.id} ({target.name}): "
        f"{venues_moved} venues, {events_moved} events moved"
    )

    return {
        'target_city': target,
        'venues_moved': venues_moved,
        'events_moved': events_moved,
        'cities_deleted': cities_deleted,
    }


# =============================================================================
# Orphans
# =============================================================================


def _orphaned_cities():
    return City.objects.annotate(venue_count=Count('venues')).filter(venue_count=0)


def count_orphaned_cities() -> int:
    """Count cities with zero venues."""
    return _orphaned_cities().count()


def delete_orphaned_cities() -> int:
    """Delete all cities with zero venues, returning how many were removed."""
    with transaction.atomic():
        orphan_ids = list(_orphaned_cities().values_list('id', flat=True))
        _, deleted = City.objects.filter(pk__in=orphan_ids).delete()

    count = deleted.get(City._meta.label, 0)
    logger.info(f"Deleted {count} orphaned cities")
    return count
