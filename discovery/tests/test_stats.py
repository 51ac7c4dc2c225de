"""
Tests for source statistics computed from the execution ledger.
"""

import json
import uuid
from datetime import datetime, timedelta
from datetime import timezone as dt_timezone

from celery import states
from django.test import SimpleTestCase, TestCase
from django_celery_results.models import TaskResult

from discovery.exceptions import InvalidSource
from discovery.stats import (
    MalformedRecord,
    SourceStats,
    get_all_source_stats,
    get_source_stats,
    parse_task_kwargs,
)

DAY_1 = datetime(2025, 1, 1, 0, 5, tzinfo=dt_timezone.utc)


def ledger_record(task_name, kwargs, status=states.SUCCESS, date_done=DAY_1, result=None, traceback=None):
    """Store a TaskResult the way the result backend does (kwargs as the JSON encoding of their repr)."""
    record = TaskResult.objects.create(
        task_id=str(uuid.uuid4()),
        task_name=task_name,
        task_kwargs=kwargs if isinstance(kwargs, str) else json.dumps(repr(kwargs)),
        status=status,
        result=result,
        traceback=traceback,
    )
    # date_done is auto_now
    TaskResult.objects.filter(pk=record.pk).update(date_done=date_done)
    return record


def failure_result(exc_type, message):
    return json.dumps({'exc_type': exc_type, 'exc_message': [message], 'exc_module': 'builtins'})


class ParseTaskKwargsTests(SimpleTestCase):

    def test_repr_encoding(self):
        """The backend's JSON-encoded repr is decoded to a dict."""
        raw = json.dumps(repr({'city_id': 1, 'source': 'bandsintown'}))

        self.assertEqual(parse_task_kwargs(raw), {'city_id': 1, 'source': 'bandsintown'})

    def test_plain_json(self):
        self.assertEqual(parse_task_kwargs('{"city_id": 1}'), {'city_id': 1})

    def test_empty(self):
        self.assertEqual(parse_task_kwargs(None), {})
        self.assertEqual(parse_task_kwargs(''), {})

    def test_malformed(self):
        with self.assertRaises(MalformedRecord):
            parse_task_kwargs('{city_id: ')
        with self.assertRaises(MalformedRecord):
            parse_task_kwargs(json.dumps(repr([1, 2])))


class CityScopedStatsTests(TestCase):
    """Test stats for a source that runs once per city."""

    task_name = 'scrapers.bandsintown.sync'

    def setUp(self):
        ledger_record(self.task_name, {'city_id': 1, 'source': 'bandsintown'}, date_done=DAY_1)
        ledger_record(
            self.task_name,
            {'city_id': 1, 'source': 'bandsintown'},
            status=states.FAILURE,
            date_done=DAY_1 + timedelta(days=1),
            result=failure_result('ConnectionError', 'Timeout'),
        )
        ledger_record(self.task_name, {'city_id': 1, 'source': 'bandsintown'}, date_done=DAY_1 + timedelta(days=2))
        ledger_record(
            self.task_name,
            {'city_id': 2, 'source': 'bandsintown'},
            status=states.FAILURE,
            date_done=DAY_1 + timedelta(days=3),
            result=failure_result('HTTPError', '503'),
        )

    def test_counts_only_runs_for_the_city(self):
        stats = get_source_stats(1, 'bandsintown')

        self.assertEqual(stats.run_count, 3)
        self.assertEqual(stats.success_count, 2)
        self.assertEqual(stats.error_count, 1)
        self.assertEqual(stats.last_run_at, DAY_1 + timedelta(days=2))
        self.assertEqual(stats.last_error, 'ConnectionError: Timeout')

    def test_without_city_counts_everything(self):
        stats = get_source_stats(None, 'bandsintown')

        self.assertEqual(stats.run_count, 4)
        self.assertEqual(stats.last_error, 'HTTPError: 503')

    def test_last_error_is_most_recent_failure(self):
        ledger_record(
            self.task_name,
            {'city_id': 1, 'source': 'bandsintown'},
            status=states.FAILURE,
            date_done=DAY_1 + timedelta(days=5),
            result=failure_result('ValueError', 'Bad payload'),
        )

        self.assertEqual(get_source_stats(1, 'bandsintown').last_error, 'ValueError: Bad payload')

    def test_unfinished_runs_ignored(self):
        """Pending and started tasks aren't counted."""
        ledger_record(self.task_name, {'city_id': 1}, status=states.STARTED, date_done=DAY_1 + timedelta(days=9))

        stats = get_source_stats(1, 'bandsintown')

        self.assertEqual(stats.run_count, 3)
        self.assertEqual(stats.last_run_at, DAY_1 + timedelta(days=2))

    def test_malformed_record_skipped(self):
        """One unreadable record doesn't break the report."""
        ledger_record(self.task_name, '{city_id: 1', date_done=DAY_1 + timedelta(days=9))

        self.assertEqual(get_source_stats(1, 'bandsintown').run_count, 3)

    def test_string_city_id(self):
        ledger_record(self.task_name, {'city_id': '1'}, date_done=DAY_1 + timedelta(days=9))

        self.assertEqual(get_source_stats(1, 'bandsintown').run_count, 4)

    def test_traceback_fallback(self):
        """Failures without a structured result use the last traceback line."""
        ledger_record(
            self.task_name,
            {'city_id': 3},
            status=states.FAILURE,
            traceback='Traceback (most recent call last):\n  File "x.py", line 1\nRuntimeError: boom\n',
        )

        self.assertEqual(get_source_stats(3, 'bandsintown').last_error, 'RuntimeError: boom')

    def test_never_run(self):
        self.assertEqual(get_source_stats(99, 'bandsintown'), SourceStats())

    def test_unknown_source(self):
        with self.assertRaises(InvalidSource):
            get_source_stats(1, 'myspace')


class CountryScopedStatsTests(TestCase):
    """Test stats for sources that cover a whole country."""

    def setUp(self):
        ledger_record('scrapers.cinema_city.sync', {'source': 'cinema-city', 'country_code': 'PL', 'config_city_id': 5})
        ledger_record(
            'scrapers.cinema_city.sync',
            {'source': 'cinema-city', 'country_code': 'PL', 'config_city_id': 5},
            status=states.REVOKED,
            date_done=DAY_1 + timedelta(hours=1),
        )
        # Malformed kwargs are irrelevant when no city filter applies
        ledger_record('scrapers.cinema_city.sync', '{broken', date_done=DAY_1 + timedelta(hours=2))
        ledger_record('scrapers.karnet.sync', {'source': 'karnet'}, date_done=DAY_1)
        ledger_record('events.tasks.unrelated', {'city_id': 1})

    def test_city_filter_not_applied(self):
        """Country-wide runs count for every city."""
        stats = get_source_stats(1, 'cinema-city')

        self.assertEqual(stats.run_count, 3)
        self.assertEqual(stats.success_count, 2)
        self.assertEqual(stats.error_count, 1)
        self.assertEqual(stats.last_error, states.REVOKED)

    def test_all_sources(self):
        """Requested sources are all present, zeroed when never run."""
        stats = get_all_source_stats(1, ['cinema-city', 'karnet', 'bandsintown', 'myspace'])

        self.assertEqual(set(stats), {'cinema-city', 'karnet', 'bandsintown'})
        self.assertEqual(stats['karnet'].run_count, 1)
        self.assertEqual(stats['bandsintown'].run_count, 0)

    def test_all_sources_default(self):
        stats = get_all_source_stats(1)

        self.assertIn('speed-quizzing', stats)
        self.assertEqual(stats['cinema-city'].run_count, 3)
