"""
Celery tasks for the locations app.
"""

import logging

from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task
def geocode_city_task(city_id: int):
    """
    Geocode a single city.

    Rate limiting is handled by Celery worker concurrency settings on the
    geocoding queue.

    Args:
        city_id: ID of the City to geocode
    """
    from locations.geocoding import geocode_city

    updated = geocode_city(city_id)
    logger.debug(f"Geocode task for city {city_id} finished (updated={updated})")
    return {'city_id': city_id, 'status': 'success' if updated else 'skipped'}


@shared_task
def bulk_geocode_cities(limit: int = 100):
    """
    Queue geocoding for cities missing coordinates.

    Args:
        limit: Maximum cities to queue in this batch
    """
    from locations.models import City

    city_ids = list(
        City.objects.filter(latitude__isnull=True).order_by('id').values_list('id', flat=True)[:limit]
    )
    for city_id in city_ids:
        geocode_city_task.delay(city_id)

    logger.info(f"Queued geocoding for {len(city_ids)} cities")
    return {'queued': len(city_ids)}
