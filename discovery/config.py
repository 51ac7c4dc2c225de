"""
Per-city discovery configuration.

The config lives in City.discovery_config as JSON:

    {
        "schedule": {"cron": "0 0 * * *", "timezone": "UTC", "enabled": true},
        "sources": {
            "bandsintown": {
                "name": "bandsintown",
                "enabled": true,
                "settings": {"limit": 100},
                "stats": {"run_count": 3, "success_count": 2, "error_count": 1, "last_error": null},
                "last_run_at": "2025-01-05T00:00:12+00:00",
                "next_run_at": "2025-01-06T00:00:00+00:00"
            }
        }
    }

Sources are keyed by name. Every write locks the city row and rewrites only
the entry it touches, so concurrent stats updates for different sources on
the same city don't lose each other's changes.
"""

import copy
import logging
from datetime import datetime, timedelta
from datetime import timezone as dt_timezone
from typing import Callable, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from celery.schedules import ParseException, crontab
from django.conf import settings
from django.db import transaction
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from discovery.exceptions import CityNotFound, DiscoveryNotConfigured, SourceNotFound
from discovery.sources import get_source
from locations.models import City

logger = logging.getLogger(__name__)

DEFAULT_SCHEDULE = {'cron': '0 0 * * *', 'timezone': 'UTC', 'enabled': True}

# Used when the schedule's cron expression can't be parsed
FALLBACK_INTERVAL = timedelta(hours=24)


def default_schedule() -> dict:
    return dict(getattr(settings, 'DISCOVERY_DEFAULT_SCHEDULE', DEFAULT_SCHEDULE))


def default_config() -> dict:
    return {'schedule': default_schedule(), 'sources': {}}


def empty_stats() -> dict:
    return {'run_count': 0, 'success_count': 0, 'error_count': 0, 'last_error': None}


def get_sources(config: Optional[dict]) -> Dict[str, dict]:
    """
    Source entries of a config keyed by name.

    Configs written as a list of entries are read as the equivalent map.
    """
    if not config:
        return {}
    sources = config.get('sources') or {}
    if isinstance(sources, list):
        return {entry['name']: entry for entry in sources if isinstance(entry, dict) and entry.get('name')}
    return dict(sources)


def compute_next_run(schedule: Optional[dict], now: Optional[datetime] = None) -> datetime:
    """
    Next time a schedule fires after now, in UTC.

    The schedule's cron expression uses the standard five fields
    (minute hour day-of-month month day-of-week), evaluated in the schedule's
    timezone.
    """
    now = now or timezone.now()
    schedule = schedule or default_schedule()

    try:
        tz = ZoneInfo(schedule.get('timezone') or 'UTC')
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown schedule timezone {schedule.get('timezone')!r}, using UTC")
        tz = ZoneInfo('UTC')

    local_now = now.astimezone(tz)
    try:
        minute, hour, day_of_month, month_of_year, day_of_week = (schedule.get('cron') or '').split()
        cron = crontab(
            minute=minute,
            hour=hour,
            day_of_month=day_of_month,
            month_of_year=month_of_year,
            day_of_week=day_of_week,
            nowfun=lambda: local_now,
        )
        next_run = local_now + cron.remaining_estimate(local_now)
    except (ValueError, ParseException):
        logger.warning(f"Invalid cron expression {schedule.get('cron')!r}, scheduling in {FALLBACK_INTERVAL}")
        next_run = local_now + FALLBACK_INTERVAL

    if next_run <= local_now:
        next_run = local_now + FALLBACK_INTERVAL
    return next_run.astimezone(dt_timezone.utc)


def _update_config(city_id: int, mutate: Callable[[City, dict], None]) -> City:
    """
    Apply mutate(city, config) to a locked copy of the city's config and save it.

    Raises:
        CityNotFound: city does not exist
        DiscoveryNotConfigured: city has no discovery config
    """
    with transaction.atomic():
        try:
            city = City.objects.select_for_update().get(pk=city_id)
        except City.DoesNotExist:
            raise CityNotFound(city_id)

        if city.discovery_config is None:
            raise DiscoveryNotConfigured(city_id)

        config = copy.deepcopy(city.discovery_config)
        config['sources'] = get_sources(config)
        mutate(city, config)

        city.discovery_config = config
        city.save(update_fields=['discovery_config', 'updated_at'])
    return city


# =============================================================================
# City-level switches
# =============================================================================


def enable_locality(city_id: int) -> City:
    """Turn discovery on for a city, creating a default config on first use."""
    with transaction.atomic():
        try:
            city = City.objects.select_for_update().get(pk=city_id)
        except City.DoesNotExist:
            raise CityNotFound(city_id)

        if city.discovery_config is None:
            city.discovery_config = default_config()
        city.discovery_enabled = True
        city.save(update_fields=['discovery_enabled', 'discovery_config', 'updated_at'])

    logger.info(f"Enabled discovery for city {city_id} ({city.name})")
    return city


def disable_locality(city_id: int) -> City:
    """Turn discovery off for a city. The config is kept for re-enabling."""
    with transaction.atomic():
        try:
            city = City.objects.select_for_update().get(pk=city_id)
        except City.DoesNotExist:
            raise CityNotFound(city_id)

        city.discovery_enabled = False
        city.save(update_fields=['discovery_enabled', 'updated_at'])

    logger.info(f"Disabled discovery for city {city_id} ({city.name})")
    return city


def list_discovery_enabled_cities() -> List[City]:
    return list(City.objects.filter(discovery_enabled=True).select_related('country').order_by('name'))


# =============================================================================
# Sources
# =============================================================================


def enable_source(city_id: int, source_name: str, source_settings: Optional[dict] = None) -> City:
    """
    Enable a source for a city, adding it to the config if needed.

    Settings are merged into any existing settings for the source. A city
    without a config gets the default one.

    Raises:
        InvalidSource: source_name is not in the allow-list
        CityNotFound: city does not exist
    """
    get_source(source_name)
    source_settings = dict(source_settings or {})

    with transaction.atomic():
        try:
            city = City.objects.select_for_update().get(pk=city_id)
        except City.DoesNotExist:
            raise CityNotFound(city_id)

        config = copy.deepcopy(city.discovery_config) if city.discovery_config is not None else default_config()
        sources = get_sources(config)

        entry = sources.get(source_name)
        if entry is None:
            entry = {
                'name': source_name,
                'enabled': True,
                'settings': source_settings,
                'stats': empty_stats(),
                'last_run_at': None,
                'next_run_at': None,
            }
        else:
            entry = {**entry, 'enabled': True, 'settings': {**(entry.get('settings') or {}), **source_settings}}

        sources[source_name] = entry
        config['sources'] = sources
        city.discovery_config = config
        city.save(update_fields=['discovery_config', 'updated_at'])

    logger.info(f"Enabled source {source_name} for city {city_id}")
    return city


def _require_source(config: dict, source_name: str, city_id: int) -> dict:
    entry = config['sources'].get(source_name)
    if entry is None:
        raise SourceNotFound(source_name, city_id)
    return entry


def disable_source(city_id: int, source_name: str) -> City:
    """
    Raises:
        SourceNotFound: source is not configured for the city
    """
    def mutate(city, config):
        entry = _require_source(config, source_name, city_id)
        config['sources'][source_name] = {**entry, 'enabled': False}

    city = _update_config(city_id, mutate)
    logger.info(f"Disabled source {source_name} for city {city_id}")
    return city


def delete_source(city_id: int, source_name: str) -> City:
    def mutate(city, config):
        _require_source(config, source_name, city_id)
        del config['sources'][source_name]

    city = _update_config(city_id, mutate)
    logger.info(f"Removed source {source_name} from city {city_id}")
    return city


def update_source_settings(city_id: int, source_name: str, source_settings: dict) -> City:
    """Merge settings into a source's existing settings."""
    def mutate(city, config):
        entry = _require_source(config, source_name, city_id)
        merged = {**(entry.get('settings') or {}), **(source_settings or {})}
        config['sources'][source_name] = {**entry, 'settings': merged}

    return _update_config(city_id, mutate)


def update_source_stats(
    city_id: int,
    source_name: str,
    success: bool,
    error: Optional[str] = None,
    now: Optional[datetime] = None,
) -> City:
    """
    Record the outcome of a source run.

    Increments run_count and either success_count (clearing last_error) or
    error_count (storing error as last_error). Sets last_run_at to now and
    next_run_at to the next time the city's schedule fires.

    Raises:
        CityNotFound, DiscoveryNotConfigured, SourceNotFound
    """
    now = now or timezone.now()

    def mutate(city, config):
        entry = _require_source(config, source_name, city_id)
        stats = {**empty_stats(), **(entry.get('stats') or {})}

        stats['run_count'] += 1
        if success:
            stats['success_count'] += 1
            stats['last_error'] = None
        else:
            stats['error_count'] += 1
            stats['last_error'] = str(error) if error is not None else 'Unknown error'

        config['sources'][source_name] = {
            **entry,
            'stats': stats,
            'last_run_at': now.isoformat(),
            'next_run_at': compute_next_run(config.get('schedule'), now).isoformat(),
        }

    city = _update_config(city_id, mutate)
    logger.info(f"Recorded {'success' if success else 'failure'} for source {source_name} in city {city_id}")
    return city


def replace_source_stats(city_id: int, stats_by_source: Dict[str, dict]) -> City:
    """
    Overwrite embedded stats with values recomputed from the execution ledger.

    Sources missing from the city's config are ignored. last_run_at is only
    moved forward.
    """
    def mutate(city, config):
        for source_name, ledger in stats_by_source.items():
            entry = config['sources'].get(source_name)
            if entry is None:
                continue

            updated = {
                **entry,
                'stats': {
                    'run_count': ledger['run_count'],
                    'success_count': ledger['success_count'],
                    'error_count': ledger['error_count'],
                    'last_error': ledger['last_error'],
                },
            }
            ledger_last_run = ledger.get('last_run_at')
            current_last_run = _parse_timestamp(entry.get('last_run_at'))
            if ledger_last_run and (current_last_run is None or ledger_last_run > current_last_run):
                updated['last_run_at'] = ledger_last_run.isoformat()
            config['sources'][source_name] = updated

    return _update_config(city_id, mutate)


# =============================================================================
# Scheduling
# =============================================================================


def _parse_timestamp(value) -> Optional[datetime]:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = parse_datetime(value)
        except ValueError:
            return None
    else:
        return None

    if parsed is not None and timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed, dt_timezone.utc)
    return parsed


def is_source_due(entry: dict, now: Optional[datetime] = None) -> bool:
    """
    Whether an enabled source should run now.

    Never-run sources are due, as are sources whose next_run_at can't be parsed.
    """
    if not entry.get('enabled'):
        return False

    next_run_at = entry.get('next_run_at')
    if next_run_at is None:
        return True

    parsed = _parse_timestamp(next_run_at)
    if parsed is None:
        return True
    return parsed <= (now or timezone.now())


def get_due_sources(city: City, now: Optional[datetime] = None) -> List[dict]:
    """Enabled sources of a city whose next run time has passed."""
    if city.discovery_config is None:
        return []

    now = now or timezone.now()
    return [entry for entry in get_sources(city.discovery_config).values() if is_source_due(entry, now)]
