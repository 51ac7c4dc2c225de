"""
Bulk duplicate analysis for a city.

find_duplicate_pairs() compares every venue in a city with every other venue
within the cutoff radius and scores each match. find_duplicates_for_city()
groups those pairs into clusters of transitively connected venues, and
calculate_duplicate_metrics() rolls them up into a severity for dashboards
and the periodic audit task.

Everything here is read-only and safe to re-run.
"""

import heapq
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple

from django.conf import settings
from django.db.models import Count, Q

from locations.services import haversine_distance
from venues.deduplication import get_pair_scan_threshold, max_distance_meters, min_similarity
from venues.matching import similarity
from venues.models import Venue, VenueDuplicateExclusion

logger = logging.getLogger(__name__)

SIMILARITY_WEIGHT = 0.7
DISTANCE_WEIGHT = 0.3

HIGH_CONFIDENCE = 0.8
MEDIUM_CONFIDENCE = 0.5

# One degree of latitude, used to prune the sweep
METERS_PER_DEGREE = 111000.0

DEFAULT_ROW_LIMIT = 300

DEFAULT_SEVERITY_THRESHOLDS = {
    'critical_high_confidence': 5,
    'critical_affected_events': 100,
    'warning_high_confidence': 2,
    'warning_unique_venues': 10,
}


class Severity(str, Enum):
    HEALTHY = 'healthy'
    WARNING = 'warning'
    CRITICAL = 'critical'


@dataclass
class CandidatePair:
    """Two venues that look like the same place."""

    venue_a: Venue
    venue_b: Venue
    distance_meters: float
    similarity: float
    confidence: float
    venue_a_event_count: int = 0
    venue_b_event_count: int = 0

    @property
    def venue_ids(self) -> Tuple[int, int]:
        return (self.venue_a.id, self.venue_b.id)

    @property
    def city_id(self) -> int:
        return self.venue_a.city_id

    def as_dict(self) -> dict:
        return {
            'venue_a': {'id': self.venue_a.id, 'name': self.venue_a.name, 'event_count': self.venue_a_event_count},
            'venue_b': {'id': self.venue_b.id, 'name': self.venue_b.name, 'event_count': self.venue_b_event_count},
            'city_id': self.city_id,
            'distance_meters': round(self.distance_meters, 1),
            'similarity': round(self.similarity, 3),
            'confidence': round(self.confidence, 3),
        }


@dataclass
class DuplicateCluster:
    """Venues connected to each other through candidate pairs."""

    venues: List[Venue]
    pairs: List[CandidatePair]
    confidence: float
    event_counts: Dict[int, int] = field(default_factory=dict)

    @property
    def venue_ids(self) -> List[int]:
        return [venue.id for venue in self.venues]

    @property
    def total_events(self) -> int:
        return sum(self.event_counts.values())

    def suggested_target(self) -> Venue:
        """The venue the others would most naturally be merged into."""
        return max(self.venues, key=lambda v: (self.event_counts.get(v.id, 0), -v.id))


@dataclass
class DuplicateMetrics:
    pair_count: int
    unique_venue_count: int
    affected_events: int
    high_confidence_count: int
    medium_confidence_count: int
    low_confidence_count: int
    severity: Severity
    duplicate_pairs: List[CandidatePair]

    def as_dict(self, include_pairs: bool = False) -> dict:
        data = {
            'pair_count': self.pair_count,
            'unique_venue_count': self.unique_venue_count,
            'affected_events': self.affected_events,
            'high_confidence_count': self.high_confidence_count,
            'medium_confidence_count': self.medium_confidence_count,
            'low_confidence_count': self.low_confidence_count,
            'severity': self.severity.value,
        }
        if include_pairs:
            data['duplicate_pairs'] = [pair.as_dict() for pair in self.duplicate_pairs]
        return data


class DisjointSet:
    """Union-find over integer ids with path compression and union by size."""

    def __init__(self):
        self._parent: Dict[int, int] = {}
        self._size: Dict[int, int] = {}

    def add(self, item: int) -> None:
        if item not in self._parent:
            self._parent[item] = item
            self._size[item] = 1

    def find(self, item: int) -> int:
        self.add(item)
        root = item
        while self._parent[root] != root:
            root = self._parent[root]
        while self._parent[item] != root:
            self._parent[item], item = root, self._parent[item]
        return root

    def union(self, a: int, b: int) -> int:
        root_a, root_b = self.find(a), self.find(b)
        if root_a == root_b:
            return root_a
        if self._size[root_a] < self._size[root_b]:
            root_a, root_b = root_b, root_a
        self._parent[root_b] = root_a
        self._size[root_a] += self._size[root_b]
        return root_a

    def groups(self) -> List[List[int]]:
        members: Dict[int, List[int]] = {}
        for item in self._parent:
            members.setdefault(self.find(item), []).append(item)
        return [sorted(group) for group in members.values()]


def _as_id_list(city_ids) -> List[int]:
    if city_ids is None:
        return []
    if isinstance(city_ids, int):
        return [city_ids]
    return list(city_ids)


def calculate_pair_confidence(name_similarity: float, distance_m: float, cutoff_m: Optional[float] = None) -> float:
    """
    Combine name similarity and proximity into a [0, 1] score.

    confidence = similarity * 0.7 + clamp(1 - distance/cutoff, 0, 1) * 0.3
    """
    cutoff = cutoff_m or max_distance_meters()
    distance_score = min(max(1 - distance_m / cutoff, 0.0), 1.0)
    return name_similarity * SIMILARITY_WEIGHT + distance_score * DISTANCE_WEIGHT


def _load_exclusions(venue_ids: List[int]) -> Set[Tuple[int, int]]:
    if not venue_ids:
        return set()
    rows = VenueDuplicateExclusion.objects.filter(
        Q(venue_1_id__in=venue_ids) | Q(venue_2_id__in=venue_ids)
    ).values_list('venue_1_id', 'venue_2_id')
    return set(rows)


def _scan_pairs(venues: List[Venue], max_distance: float, floor: float) -> Iterator[CandidatePair]:
    """
    Yield matching pairs among venues of a single city.

    Venues are swept in latitude order; once the latitude gap alone exceeds
    max_distance no later venue can be in range.
    """
    venues = sorted(venues, key=lambda v: (float(v.latitude), v.id))
    exclusions = _load_exclusions([v.id for v in venues])
    max_lat_gap = max_distance / METERS_PER_DEGREE

    for i, venue_a in enumerate(venues):
        lat_a = float(venue_a.latitude)
        lng_a = float(venue_a.longitude)
        for venue_b in venues[i + 1:]:
            lat_b = float(venue_b.latitude)
            if lat_b - lat_a > max_lat_gap:
                break

            lng_b = float(venue_b.longitude)
            # Same point usually means a city-centre placeholder, not a duplicate
            if lat_a == lat_b and lng_a == lng_b:
                continue

            pair_key = VenueDuplicateExclusion.normalize_pair(venue_a.id, venue_b.id)
            if pair_key in exclusions:
                continue

            distance = haversine_distance(lat_a, lng_a, lat_b, lng_b)
            if distance > max_distance:
                continue

            score = similarity(venue_a.name, venue_b.name)
            if score < get_pair_scan_threshold(distance, floor):
                continue

            first, second = (venue_a, venue_b) if venue_a.id < venue_b.id else (venue_b, venue_a)
            yield CandidatePair(
                venue_a=first,
                venue_b=second,
                distance_meters=distance,
                similarity=score,
                confidence=calculate_pair_confidence(score, distance, max_distance),
            )


def find_duplicate_pairs(
    city_ids,
    limit: Optional[int] = None,
    max_distance: Optional[float] = None,
    min_similarity_floor: Optional[float] = None,
) -> List[CandidatePair]:
    """
    Score every likely-duplicate venue pair in the given cities.

    Pairs are not grouped: A~B and B~C come back as two pairs even when they
    share a venue. Each pair is enriched with the event count of both venues.

    Args:
        city_ids: City id or iterable of city ids
        limit: Maximum pairs returned (default VENUE_DUPLICATE_ROW_LIMIT)
        max_distance: Cutoff radius in meters
        min_similarity_floor: Similarity required beyond 200m

    Returns:
        Pairs ordered by confidence descending
    """
    from events.services import count_events_by_venue

    city_ids = _as_id_list(city_ids)
    if not city_ids:
        return []

    if limit is None:
        limit = getattr(settings, 'VENUE_DUPLICATE_ROW_LIMIT', DEFAULT_ROW_LIMIT)
    if max_distance is None:
        max_distance = max_distance_meters()
    if min_similarity_floor is None:
        min_similarity_floor = min_similarity()

    venues = Venue.objects.filter(
        city_id__in=city_ids,
        latitude__isnull=False,
        longitude__isnull=False,
    ).only('id', 'name', 'city_id', 'latitude', 'longitude')

    by_city: Dict[int, List[Venue]] = {}
    for venue in venues:
        by_city.setdefault(venue.city_id, []).append(venue)

    candidates = (
        pair
        for city_venues in by_city.values()
        for pair in _scan_pairs(city_venues, max_distance, min_similarity_floor)
    )
    pairs = heapq.nsmallest(
        limit,
        candidates,
        key=lambda p: (-p.confidence, p.venue_a.id, p.venue_b.id),
    )

    event_counts = count_events_by_venue(vid for pair in pairs for vid in pair.venue_ids)
    for pair in pairs:
        pair.venue_a_event_count = event_counts.get(pair.venue_a.id, 0)
        pair.venue_b_event_count = event_counts.get(pair.venue_b.id, 0)

    logger.debug(f"Found {len(pairs)} duplicate pairs across cities {city_ids}")
    return pairs


def find_duplicates_for_city(city_ids, limit: int = 50, pair_limit: Optional[int] = None) -> List[DuplicateCluster]:
    """
    Group duplicate pairs into clusters of transitively connected venues.

    A~B and B~C produce a single cluster {A, B, C} even though A and C were
    never close enough to be compared. Cluster confidence is the highest
    confidence of its pairs.
    """
    pairs = find_duplicate_pairs(city_ids, limit=pair_limit)

    forest = DisjointSet()
    venues: Dict[int, Venue] = {}
    event_counts: Dict[int, int] = {}
    for pair in pairs:
        forest.union(pair.venue_a.id, pair.venue_b.id)
        venues[pair.venue_a.id] = pair.venue_a
        venues[pair.venue_b.id] = pair.venue_b
        event_counts[pair.venue_a.id] = pair.venue_a_event_count
        event_counts[pair.venue_b.id] = pair.venue_b_event_count

    pairs_by_root: Dict[int, List[CandidatePair]] = {}
    for pair in pairs:
        pairs_by_root.setdefault(forest.find(pair.venue_a.id), []).append(pair)

    clusters = []
    for group in forest.groups():
        cluster_pairs = pairs_by_root[forest.find(group[0])]
        clusters.append(DuplicateCluster(
            venues=[venues[vid] for vid in group],
            pairs=cluster_pairs,
            confidence=max(pair.confidence for pair in cluster_pairs),
            event_counts={vid: event_counts.get(vid, 0) for vid in group},
        ))

    clusters.sort(key=lambda c: (-c.confidence, c.venue_ids[0]))
    return clusters[:limit]


def _severity(pair_count: int, high: int, unique_venues: int, affected_events: int) -> Severity:
    thresholds = {**DEFAULT_SEVERITY_THRESHOLDS, **getattr(settings, 'VENUE_DUPLICATE_SEVERITY', {})}

    if pair_count == 0:
        return Severity.HEALTHY
    if high >= thresholds['critical_high_confidence'] or affected_events >= thresholds['critical_affected_events']:
        return Severity.CRITICAL
    if high >= thresholds['warning_high_confidence'] or unique_venues >= thresholds['warning_unique_venues']:
        return Severity.WARNING
    return Severity.HEALTHY


def calculate_duplicate_metrics(city_ids, limit: Optional[int] = None) -> DuplicateMetrics:
    """Summarize the duplicate burden of the given cities."""
    pairs = find_duplicate_pairs(city_ids, limit=limit)

    event_counts: Dict[int, int] = {}
    high = medium = low = 0
    for pair in pairs:
        event_counts[pair.venue_a.id] = pair.venue_a_event_count
        event_counts[pair.venue_b.id] = pair.venue_b_event_count
        if pair.confidence >= HIGH_CONFIDENCE:
            high += 1
        elif pair.confidence >= MEDIUM_CONFIDENCE:
            medium += 1
        else:
            low += 1

    affected_events = sum(event_counts.values())
    return DuplicateMetrics(
        pair_count=len(pairs),
        unique_venue_count=len(event_counts),
        affected_events=affected_events,
        high_confidence_count=high,
        medium_confidence_count=medium,
        low_confidence_count=low,
        severity=_severity(len(pairs), high, len(event_counts), affected_events),
        duplicate_pairs=pairs,
    )


def get_cities_with_duplicates(limit: int = 20, country_code: Optional[str] = None) -> List[dict]:
    """
    Cities ordered by number of duplicate pairs, worst first.

    Returns:
        List of {'city', 'pair_count', 'high_confidence_count'} for cities
        with at least one pair
    """
    from locations.models import City

    cities = City.objects.annotate(
        located_venues=Count('venues', filter=Q(venues__latitude__isnull=False, venues__longitude__isnull=False)),
    ).filter(located_venues__gte=2).select_related('country')
    if country_code:
        cities = cities.filter(country__code=country_code.upper())

    results = []
    for city in cities:
        pairs = find_duplicate_pairs(city.id)
        if pairs:
            results.append({
                'city': city,
                'pair_count': len(pairs),
                'high_confidence_count': sum(1 for p in pairs if p.confidence >= HIGH_CONFIDENCE),
            })

    results.sort(key=lambda r: (-r['pair_count'], r['city'].name))
    return results[:limit]


def summarize_clusters(clusters: Iterable[DuplicateCluster]) -> List[dict]:
    """JSON-safe view of clusters for task results and command output."""
    return [
        {
            'venue_ids': cluster.venue_ids,
            'names': [venue.name for venue in cluster.venues],
            'confidence': round(cluster.confidence, 3),
            'total_events': cluster.total_events,
            'suggested_target_id': cluster.suggested_target().id,
        }
        for cluster in clusters
    ]
