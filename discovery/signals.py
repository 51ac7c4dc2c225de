"""
Celery signal handlers that keep embedded source stats current.

Handlers run in whichever worker executes a source task. Tasks that aren't
discovery sources, or runs that can't be tied to a configured city, are
ignored.

A country or regional run covers every city in its country that enables
the source, so its outcome is recorded on all of them. Their next_run_at
then moves together and the run isn't dispatched again from a sibling city.
"""

import logging

from discovery.sources import source_for_task

logger = logging.getLogger(__name__)


def _config_city_id(kwargs):
    if not kwargs:
        return None
    return kwargs.get('city_id') or kwargs.get('config_city_id')


def cities_covered_by_run(source, kwargs, city_id):
    """
    Ids of the cities a run's outcome is recorded on.

    City-scoped runs belong to their own city. Shared runs belong to the
    configuring city plus every city in the run's country with the source
    enabled.
    """
    from discovery.config import get_sources
    from locations.models import City

    country_code = (kwargs or {}).get('country_code')
    if source.is_city_scoped or not country_code:
        return [city_id]

    city_ids = [city_id]
    siblings = (
        City.objects.filter(country__code=str(country_code).upper(), discovery_config__isnull=False)
        .exclude(pk=city_id)
        .order_by('id')
    )
    for city in siblings:
        entry = get_sources(city.discovery_config).get(source.name)
        if entry and entry.get('enabled'):
            city_ids.append(city.id)
    return city_ids


def _record_outcome(task_name, kwargs, success, error=None):
    from discovery.config import update_source_stats
    from discovery.exceptions import DiscoveryError

    source = source_for_task(task_name)
    if source is None:
        return

    city_id = _config_city_id(kwargs)
    if city_id is None:
        logger.debug(f"No city in kwargs of {task_name}, not recording stats")
        return

    for covered_city_id in cities_covered_by_run(source, kwargs, city_id):
        try:
            update_source_stats(covered_city_id, source.name, success=success, error=error)
        except DiscoveryError as e:
            logger.warning(f"Could not record {source.name} run for city {covered_city_id}: {e}")


def source_task_success(sender=None, result=None, **kwargs):
    """Handle task_success; sender is the task instance."""
    if sender is None:
        return
    _record_outcome(sender.name, getattr(sender.request, 'kwargs', None), success=True)


def source_task_failure(sender=None, task_id=None, exception=None, args=None, kwargs=None, **extra):
    """Handle task_failure."""
    if sender is None:
        return
    _record_outcome(sender.name, kwargs, success=False, error=str(exception) if exception else None)
