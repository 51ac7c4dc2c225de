"""
Source run statistics recomputed from the execution ledger.

Every finished source task leaves a TaskResult row (django-celery-results,
with CELERY_RESULT_EXTENDED so task_name and task_kwargs are recorded). The
counters embedded in City.discovery_config are a cache of what is computed
here; sync_source_stats writes these values back over them.
"""

import ast
import json
import logging
from dataclasses import asdict, dataclass
from typing import Dict, Iterable, Optional

from celery import states
from django_celery_results.models import TaskResult

from discovery.sources import SOURCES, get_source, source_for_task

logger = logging.getLogger(__name__)

TERMINAL_STATES = (states.SUCCESS, states.FAILURE, states.REVOKED)


@dataclass
class SourceStats:
    run_count: int = 0
    success_count: int = 0
    error_count: int = 0
    last_run_at: Optional[object] = None
    last_error: Optional[str] = None

    def as_dict(self) -> dict:
        return asdict(self)


class MalformedRecord(ValueError):
    pass


def parse_task_kwargs(raw) -> dict:
    """
    Decode the kwargs stored on a TaskResult.

    The result backend stores the JSON encoding of the kwargs repr, so the
    decoded value is usually a Python literal string rather than a dict.
    """
    if raw in (None, ''):
        return {}

    value = raw
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            pass

    if isinstance(value, str):
        try:
            value = ast.literal_eval(value)
        except (ValueError, SyntaxError):
            raise MalformedRecord(f"Unreadable task kwargs: {raw!r}")

    if not isinstance(value, dict):
        raise MalformedRecord(f"Task kwargs are not a mapping: {raw!r}")
    return value


def error_message(record: TaskResult) -> str:
    """Best available error text of a failed or revoked task."""
    if record.result:
        try:
            result = json.loads(record.result)
        except ValueError:
            result = record.result

        if isinstance(result, dict) and ('exc_message' in result or 'exc_type' in result):
            message = result.get('exc_message')
            if isinstance(message, (list, tuple)):
                message = ' '.join(str(part) for part in message)
            exc_type = result.get('exc_type')
            if exc_type and message:
                return f"{exc_type}: {message}"
            return str(message or exc_type)
        if isinstance(result, str) and result:
            return result

    if record.traceback:
        return record.traceback.strip().splitlines()[-1]
    return record.status


def _matches_city(kwargs: dict, city_id) -> bool:
    try:
        return int(kwargs.get('city_id')) == int(city_id)
    except (TypeError, ValueError):
        return False


def _aggregate(records: Iterable[TaskResult], city_id=None) -> Dict[str, SourceStats]:
    """
    Fold ledger records into per-source stats.

    Records must be ordered newest first; the first failure seen per source
    supplies last_error. Unreadable records are skipped.
    """
    stats: Dict[str, SourceStats] = {}

    for record in records:
        source = source_for_task(record.task_name)
        if source is None:
            continue

        try:
            if city_id is not None and source.is_city_scoped:
                if not _matches_city(parse_task_kwargs(record.task_kwargs), city_id):
                    continue
        except MalformedRecord as e:
            logger.warning(f"Skipping ledger record {record.task_id}: {e}")
            continue

        entry = stats.setdefault(source.name, SourceStats())
        entry.run_count += 1
        if record.status == states.SUCCESS:
            entry.success_count += 1
        else:
            entry.error_count += 1
            if entry.last_error is None:
                entry.last_error = error_message(record)

        if record.date_done and (entry.last_run_at is None or record.date_done > entry.last_run_at):
            entry.last_run_at = record.date_done

    return stats


def _ledger(task_names):
    return (
        TaskResult.objects.filter(task_name__in=list(task_names), status__in=TERMINAL_STATES)
        .only('task_id', 'task_name', 'task_kwargs', 'status', 'date_done', 'result', 'traceback')
        .order_by('-date_done', '-id')
    )


def get_source_stats(city_id: Optional[int], source_name: str) -> SourceStats:
    """
    Run statistics for one source.

    City-scoped sources only count runs whose kwargs carry the given
    city_id; country and regional sources count every run. Passing None for
    city_id counts every run regardless of scope.

    Raises:
        InvalidSource: source_name is not in the allow-list
    """
    source = get_source(source_name)
    stats = _aggregate(_ledger([source.task_name]).iterator(), city_id)
    return stats.get(source.name, SourceStats())


def get_all_source_stats(city_id: Optional[int], source_names: Optional[Iterable[str]] = None) -> Dict[str, SourceStats]:
    """
    Run statistics for several sources from a single ledger scan.

    Unknown source names are ignored. Every requested source is present in
    the result, with zeroed stats when it has never run.
    """
    if source_names is None:
        names = list(SOURCES)
    else:
        names = [name for name in source_names if name in SOURCES]
    if not names:
        return {}

    task_names = [SOURCES[name].task_name for name in names]
    stats = _aggregate(_ledger(task_names).iterator(), city_id)
    return {name: stats.get(name, SourceStats()) for name in names}
