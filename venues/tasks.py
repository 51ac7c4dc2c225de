"""
Celery tasks for the venues app.

Periodic duplicate audits. The scan itself is read-only, so a failed run is
simply retried.
"""

import logging

from celery import shared_task
from django.db import DatabaseError

logger = logging.getLogger(__name__)


@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def audit_city_duplicates(self, city_id: int = None, limit: int = 20):
    """
    Compute duplicate metrics for one city, or the worst cities when no id is given.

    Args:
        city_id: City to audit; None audits the cities with most duplicates
        limit: Number of cities to report when auditing across cities
    """
    from locations.models import City
    from venues.clustering import Severity, calculate_duplicate_metrics, get_cities_with_duplicates

    try:
        if city_id is not None:
            if not City.objects.filter(pk=city_id).exists():
                logger.warning(f"City {city_id} not found for duplicate audit")
                return {'city_id': city_id, 'status': 'not_found'}

            metrics = calculate_duplicate_metrics(city_id)
            if metrics.severity != Severity.HEALTHY:
                logger.warning(
                    f"City {city_id} duplicate severity {metrics.severity.value}: "
                    f"{metrics.pair_count} pairs, {metrics.high_confidence_count} high confidence"
                )
            return {'city_id': city_id, 'status': 'success', **metrics.as_dict()}

        cities = get_cities_with_duplicates(limit=limit)
        report = []
        for entry in cities:
            metrics = calculate_duplicate_metrics(entry['city'].id)
            report.append({'city_id': entry['city'].id, 'city': entry['city'].name, **metrics.as_dict()})

        logger.info(f"Duplicate audit covered {len(report)} cities")
        return {'status': 'success', 'cities': report}

    except DatabaseError as exc:
        logger.error(f"Duplicate audit failed for city {city_id}: {exc}")
        raise self.retry(exc=exc)
