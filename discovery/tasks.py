"""
Celery tasks for the discovery app.

dispatch_due_sources runs on a beat schedule and fans out one scraper task
per due source. The scraper tasks themselves live in the scraper workers and
are sent by name.
"""

import logging

from celery import current_app, shared_task
from django.db import DatabaseError

logger = logging.getLogger(__name__)


def build_task_kwargs(city, source) -> dict:
    """Kwargs a source task is sent with; only city-scoped sources get city_id."""
    if source.is_city_scoped:
        return {'city_id': city.id, 'source': source.name}
    return {'source': source.name, 'country_code': city.country.code, 'config_city_id': city.id}


@shared_task
def dispatch_due_sources():
    """
    Queue every due source of every discovery-enabled city.

    Country and regional sources configured on several cities are queued
    once per run.
    """
    from discovery.config import get_due_sources, list_discovery_enabled_cities
    from discovery.exceptions import InvalidSource
    from discovery.sources import get_source

    dispatched = []
    sent_shared = set()

    for city in list_discovery_enabled_cities():
        for entry in get_due_sources(city):
            try:
                source = get_source(entry.get('name'))
            except InvalidSource:
                logger.warning(f"City {city.id} has unknown source {entry.get('name')!r} configured, skipping")
                continue

            kwargs = build_task_kwargs(city, source)
            if not source.is_city_scoped:
                shared_key = (source.name, city.country.code)
                if shared_key in sent_shared:
                    continue
                sent_shared.add(shared_key)

            current_app.send_task(source.task_name, kwargs=kwargs)
            dispatched.append({'city_id': city.id, 'source': source.name})
            logger.info(f"Dispatched {source.task_name} for city {city.id} ({city.name})")

    logger.info(f"Dispatched {len(dispatched)} discovery source runs")
    return {'dispatched': len(dispatched), 'runs': dispatched}


@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def sync_source_stats(self, city_id: int = None):
    """
    Overwrite embedded source stats with values recomputed from the ledger.

    Args:
        city_id: Only sync this city (default: every discovery-enabled city)
    """
    from discovery.config import get_sources, list_discovery_enabled_cities, replace_source_stats
    from discovery.stats import get_all_source_stats
    from locations.models import City

    if city_id is not None:
        cities = list(City.objects.filter(pk=city_id, discovery_config__isnull=False))
    else:
        cities = list_discovery_enabled_cities()

    synced = 0
    try:
        for city in cities:
            names = list(get_sources(city.discovery_config))
            if not names:
                continue

            stats = get_all_source_stats(city.id, names)
            replace_source_stats(city.id, {name: s.as_dict() for name, s in stats.items()})
            synced += 1
    except DatabaseError as exc:
        logger.error(f"Source stats sync failed: {exc}")
        raise self.retry(exc=exc)

    logger.info(f"Synced source stats for {synced} cities")
    return {'synced': synced}
