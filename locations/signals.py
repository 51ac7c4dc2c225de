"""Django signals for the locations app."""

import logging

from django.conf import settings
from django.db import transaction

logger = logging.getLogger(__name__)


def city_post_save(sender, instance, created, **kwargs):
    """
    Queue geocoding for newly created cities without coordinates.

    Only triggers for new cities (created=True) that don't have lat/long,
    and only when GEOCODE_NEW_CITIES is enabled. The task is queued once the
    surrounding transaction commits so the worker can see the row.
    """
    if not created or not getattr(settings, 'GEOCODE_NEW_CITIES', True):
        return

    if instance.latitude is not None and instance.longitude is not None:
        return

    from locations.tasks import geocode_city_task

    city_id = instance.id
    transaction.on_commit(lambda: geocode_city_task.delay(city_id))
    logger.info(f"Queued geocoding for city {city_id}: {instance.name}")
