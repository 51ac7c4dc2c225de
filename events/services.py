"""
Event counts used to size duplicate-venue findings.
"""

from typing import Dict, Iterable

from django.db.models import Count

from events.models import Event


def count_events_by_venue(venue_ids: Iterable[int]) -> Dict[int, int]:
    """
    Return {venue_id: event_count} for the given venues in one query.

    Venues without events are present with a count of 0.
    """
    venue_ids = list(set(venue_ids))
    if not venue_ids:
        return {}

    counts = dict.fromkeys(venue_ids, 0)
    rows = (
        Event.objects.filter(venue_id__in=venue_ids)
        .values('venue_id')
        .annotate(count=Count('id'))
        .order_by()
    )
    for row in rows:
        counts[row['venue_id']] = row['count']
    return counts
