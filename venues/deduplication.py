"""
Duplicate venue detection.

Scraping pipelines call check_duplicate()/create_venue() before inserting a
venue; admin tooling uses find_nearby_venues() and find_duplicates_for_venue()
for audits, and the exclusion/merge helpers to act on findings.

Matching rule: a candidate duplicates an existing venue in the same city
when the name similarity clears a bar that rises with distance. Two venues
a few meters apart are almost certainly the same place whatever they are
called; two venues 300m apart need near-identical names.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List, Optional, Union

from django.conf import settings
from django.db import transaction
from django.db.models import Q

from locations.services import filter_by_distance_precise, haversine_distance, validate_coordinates
from venues.exceptions import DuplicateFound, InvalidCoordinates, VenueNotFound
from venues.matching import similarity
from venues.models import Venue, VenueDuplicateExclusion, VenueMergeAudit

logger = logging.getLogger(__name__)

# (upper distance bound in meters, required similarity) for single-candidate checks
DISTANCE_THRESHOLDS = (
    (50, 0.0),
    (100, 0.3),
    (200, 0.6),
)
FAR_THRESHOLD = 0.8

# Bulk scans compare every venue against every other, so they use a higher
# floor at short range to keep unrelated neighbours out of the report
PAIR_SCAN_THRESHOLDS = (
    (50, 0.30),
    (100, 0.40),
    (200, 0.45),
)

DEFAULT_MAX_DISTANCE_METERS = 500
DEFAULT_MIN_SIMILARITY = 0.4

COORDINATE_PLACES = Decimal('0.000001')


@dataclass
class VenueCandidate:
    """A venue that is about to be created."""
    name: str
    latitude: Optional[Union[float, Decimal]]
    longitude: Optional[Union[float, Decimal]]
    city_id: Optional[int] = None
    pk: Optional[int] = None


def max_distance_meters() -> float:
    return getattr(settings, 'VENUE_DUPLICATE_MAX_DISTANCE_METERS', DEFAULT_MAX_DISTANCE_METERS)


def min_similarity() -> float:
    return getattr(settings, 'VENUE_DUPLICATE_MIN_SIMILARITY', DEFAULT_MIN_SIMILARITY)


def get_similarity_threshold_for_distance(distance_m: float) -> float:
    """
    Name similarity required to call two venues duplicates at a distance.

    [0, 50) -> 0.0, [50, 100) -> 0.3, [100, 200) -> 0.6, [200, inf) -> 0.8
    """
    for upper_bound, threshold in DISTANCE_THRESHOLDS:
        if distance_m < upper_bound:
            return threshold
    return FAR_THRESHOLD


def get_pair_scan_threshold(distance_m: float, floor: Optional[float] = None) -> float:
    """Name similarity required for a pair in bulk scans."""
    for upper_bound, threshold in PAIR_SCAN_THRESHOLDS:
        if distance_m < upper_bound:
            return threshold
    return min_similarity() if floor is None else floor


def _require_valid_coordinates(latitude, longitude):
    errors = validate_coordinates(latitude, longitude)
    if errors:
        raise InvalidCoordinates(latitude, longitude, errors)


# =============================================================================
# Lookup
# =============================================================================


def find_nearby_venues(
    latitude,
    longitude,
    city_id: Optional[int] = None,
    radius_m: Optional[float] = None,
    exclude_ids: Iterable[int] = (),
) -> List[Venue]:
    """
    Venues within radius_m of a point, nearest first.

    Each venue carries a ``distance`` attribute in meters.

    Raises:
        InvalidCoordinates: latitude/longitude missing or out of range
    """
    if latitude is None or longitude is None:
        raise InvalidCoordinates(latitude, longitude)
    _require_valid_coordinates(latitude, longitude)

    if radius_m is None:
        radius_m = max_distance_meters()

    queryset = Venue.objects.filter(latitude__isnull=False, longitude__isnull=False)
    if city_id is not None:
        queryset = queryset.filter(city_id=city_id)
    exclude_ids = [pk for pk in exclude_ids if pk is not None]
    if exclude_ids:
        queryset = queryset.exclude(pk__in=exclude_ids)

    return filter_by_distance_precise(queryset, latitude, longitude, radius_m)


def find_duplicate(candidate) -> Optional[Venue]:
    """
    Return the nearest existing venue the candidate duplicates, if any.

    Scans venues in the candidate's city nearest first and returns the first
    whose name similarity clears the bar for its distance. Nearest wins even
    if a farther venue has a more similar name.

    Args:
        candidate: VenueCandidate or an unsaved Venue (name, latitude,
            longitude, city_id; pk is excluded from the scan when set)

    Returns:
        Matching Venue annotated with ``distance`` and ``similarity``, or None
        when the candidate has no coordinates or nothing matches
    """
    if candidate.latitude is None or candidate.longitude is None:
        return None

    nearby = find_nearby_venues(
        candidate.latitude,
        candidate.longitude,
        city_id=candidate.city_id,
        exclude_ids=[candidate.pk],
    )

    for venue in nearby:
        score = similarity(candidate.name, venue.name)
        if score >= get_similarity_threshold_for_distance(venue.distance):
            venue.similarity = score
            logger.debug(
                f"'{candidate.name}' matches venue {venue.id} '{venue.name}' "
                f"at {venue.distance:.1f}m (similarity {score:.2f})"
            )
            return venue

    return None


def check_duplicate(candidate) -> None:
    """
    Raise DuplicateFound if the candidate duplicates an existing venue.

    Raises:
        DuplicateFound: with existing_id and distance of the match
        InvalidCoordinates: candidate coordinates out of range
    """
    existing = find_duplicate(candidate)
    if existing is not None:
        raise DuplicateFound(existing.id, existing.distance)


def create_venue(**fields) -> Venue:
    """
    Validate, duplicate-check and insert a venue in one transaction.

    The owning city row is locked for the duration, so concurrent creations
    in the same city run their check-then-insert one after another.

    Raises:
        ValidationError: per-field errors (blank name, unknown city,
            missing/out-of-range coordinates)
        DuplicateFound: the venue duplicates an existing one
    """
    from locations.models import City

    for field in ('latitude', 'longitude'):
        # Floats carry more digits than DecimalField(9, 6) accepts
        if isinstance(fields.get(field), float):
            fields[field] = Decimal(str(fields[field])).quantize(COORDINATE_PLACES)

    with transaction.atomic():
        venue = Venue(**fields)
        if venue.city_id is not None:
            list(City.objects.select_for_update().filter(pk=venue.city_id).values_list('pk', flat=True))

        venue.full_clean()
        check_duplicate(venue)
        venue.save()

    logger.info(f"Created venue {venue.id}: {venue.name} (city {venue.city_id})")
    return venue


def find_duplicates_for_venue(
    venue_id: int,
    distance_meters: float = 2000,
    floor: float = 0.3,
    limit: int = 20,
) -> List[dict]:
    """
    Potential duplicates of an existing venue, most similar first.

    Uses the bulk-scan thresholds and skips venues marked as not duplicates.

    Returns:
        List of {'venue', 'similarity_score', 'distance_meters', 'event_count'}
    """
    from events.services import count_events_by_venue

    try:
        venue = Venue.objects.get(pk=venue_id)
    except Venue.DoesNotExist:
        raise VenueNotFound(venue_id)

    if not venue.has_coordinates:
        return []

    excluded = get_excluded_venue_ids(venue.id)
    candidates = find_nearby_venues(
        venue.latitude,
        venue.longitude,
        city_id=venue.city_id,
        radius_m=distance_meters,
        exclude_ids=[venue.id, *excluded],
    )

    matches = []
    for candidate in candidates:
        score = similarity(venue.name, candidate.name)
        if score >= get_pair_scan_threshold(candidate.distance, floor):
            matches.append({
                'venue': candidate,
                'similarity_score': score,
                'distance_meters': candidate.distance,
            })

    matches.sort(key=lambda m: (-m['similarity_score'], m['distance_meters']))
    matches = matches[:limit]

    event_counts = count_events_by_venue(m['venue'].id for m in matches)
    for match in matches:
        match['event_count'] = event_counts.get(match['venue'].id, 0)

    return matches


# =============================================================================
# Exclusions
# =============================================================================


def exclude_pair(venue_id_1: int, venue_id_2: int, reason: str = '') -> VenueDuplicateExclusion:
    """Mark two venues as not duplicates."""
    if venue_id_1 == venue_id_2:
        raise ValueError("A venue cannot be excluded from matching itself")

    id_1, id_2 = VenueDuplicateExclusion.normalize_pair(venue_id_1, venue_id_2)
    exclusion, created = VenueDuplicateExclusion.objects.get_or_create(
        venue_1_id=id_1,
        venue_2_id=id_2,
        defaults={'reason': reason},
    )
    if created:
        logger.info(f"Excluded venue pair ({id_1}, {id_2}) from duplicate matching")
    return exclusion


def is_excluded(venue_id_1: int, venue_id_2: int) -> bool:
    id_1, id_2 = VenueDuplicateExclusion.normalize_pair(venue_id_1, venue_id_2)
    return VenueDuplicateExclusion.objects.filter(venue_1_id=id_1, venue_2_id=id_2).exists()


def get_excluded_venue_ids(venue_id: int) -> List[int]:
    """IDs of venues marked as not duplicates of the given venue."""
    rows = VenueDuplicateExclusion.objects.filter(
        Q(venue_1_id=venue_id) | Q(venue_2_id=venue_id)
    ).values_list('venue_1_id', 'venue_2_id')
    return [id_2 if id_1 == venue_id else id_1 for id_1, id_2 in rows]


def remove_exclusion(venue_id_1: int, venue_id_2: int) -> int:
    id_1, id_2 = VenueDuplicateExclusion.normalize_pair(venue_id_1, venue_id_2)
    deleted, _ = VenueDuplicateExclusion.objects.filter(venue_1_id=id_1, venue_2_id=id_2).delete()
    return deleted


# =============================================================================
# Merging
# =============================================================================


def merge_venues(
    source_venue_id: int,
    target_venue_id: int,
    reason: str = 'manual',
    similarity_score: Optional[float] = None,
    distance_meters: Optional[float] = None,
) -> dict:
    """
    Merge a source venue into a target venue with an audit record.

    Reassigns events, merges provider ids (source wins on conflicts),
    snapshots the source into a VenueMergeAudit and deletes it, all in one
    transaction.

    Returns:
        {'target_venue', 'audit', 'events_reassigned'}

    Raises:
        VenueNotFound: either venue does not exist
    """
    from events.models import Event

    if source_venue_id == target_venue_id:
        raise ValueError(f"Venue {source_venue_id} cannot be merged into itself")

    with transaction.atomic():
        venues = Venue.objects.select_for_update().in_bulk([source_venue_id, target_venue_id])
        source = venues.get(source_venue_id)
        target = venues.get(target_venue_id)
        if source is None:
            raise VenueNotFound(source_venue_id)
        if target is None:
            raise VenueNotFound(target_venue_id)

        if distance_meters is None and source.has_coordinates and target.has_coordinates:
            distance_meters = haversine_distance(source.latitude, source.longitude, target.latitude, target.longitude)
        if similarity_score is None:
            similarity_score = similarity(source.name, target.name)

        events_reassigned = Event.objects.filter(venue=source).update(venue=target)

        target.provider_ids = {**(target.provider_ids or {}), **(source.provider_ids or {})}
        target.save(update_fields=['provider_ids', 'updated_at'])

        audit = VenueMergeAudit.objects.create(
            source_venue_id=source.id,
            target_venue=target,
            merge_reason=reason,
            similarity_score=similarity_score,
            distance_meters=distance_meters,
            events_reassigned=events_reassigned,
            source_venue_snapshot=source.snapshot(),
        )

        source.delete()

    logger.info(
        f"Merged venue {source_venue_id} ({source.name}) into {target.id} ({target.name}): "
        f"{events_reassigned} events, audit {audit.id}"
    )
    return {'target_venue': target, 'audit': audit, 'events_reassigned': events_reassigned}
