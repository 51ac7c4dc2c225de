"""
Tests for source dispatch, ledger sync and the task outcome signal handlers.
"""

import json
import uuid
from datetime import datetime
from datetime import timezone as dt_timezone
from unittest.mock import MagicMock, call, patch

from celery import states
from celery.signals import task_success
from django.test import TestCase
from django.utils import timezone
from django_celery_results.models import TaskResult

from discovery.config import disable_source, enable_locality, enable_source, update_source_stats
from discovery.signals import source_task_failure, source_task_success
from discovery.sources import get_source
from discovery.tasks import build_task_kwargs, dispatch_due_sources, sync_source_stats
from locations.models import City, Country


def make_sender(task_name, kwargs=None):
    sender = MagicMock()
    sender.name = task_name
    sender.request.kwargs = kwargs
    return sender


class DispatchTests(TestCase):
    """Test dispatch_due_sources."""

    def setUp(self):
        self.pl = Country.objects.create(name="Poland", code="PL")
        gb = Country.objects.create(name="United Kingdom", code="GB")

        self.krakow = City.objects.create(name="Kraków", country=self.pl)
        enable_locality(self.krakow.id)
        enable_source(self.krakow.id, 'bandsintown')
        enable_source(self.krakow.id, 'karnet')
        enable_source(self.krakow.id, 'cinema-city')

        self.warsaw = City.objects.create(name="Warszawa", country=self.pl)
        enable_locality(self.warsaw.id)
        enable_source(self.warsaw.id, 'cinema-city')

        # Configured but switched off
        leeds = City.objects.create(name="Leeds", country=gb)
        enable_source(leeds.id, 'bandsintown')

    def test_task_kwargs(self):
        """Only city-scoped sources carry city_id."""
        self.assertEqual(
            build_task_kwargs(self.krakow, get_source('bandsintown')),
            {'city_id': self.krakow.id, 'source': 'bandsintown'},
        )
        self.assertEqual(
            build_task_kwargs(self.krakow, get_source('cinema-city')),
            {'source': 'cinema-city', 'country_code': 'PL', 'config_city_id': self.krakow.id},
        )

    @patch('discovery.tasks.current_app')
    def test_dispatches_due_sources(self, mock_app):
        """Country-wide sources are sent once even when several cities enable them."""
        result = dispatch_due_sources()

        self.assertEqual(result['dispatched'], 3)
        mock_app.send_task.assert_has_calls([
            call('scrapers.bandsintown.sync', kwargs={'city_id': self.krakow.id, 'source': 'bandsintown'}),
            call('scrapers.karnet.sync', kwargs={
                'source': 'karnet', 'country_code': 'PL', 'config_city_id': self.krakow.id,
            }),
            call('scrapers.cinema_city.sync', kwargs={
                'source': 'cinema-city', 'country_code': 'PL', 'config_city_id': self.krakow.id,
            }),
        ])
        self.assertEqual(mock_app.send_task.call_count, 3)

    @patch('discovery.tasks.current_app')
    def test_recent_runs_not_dispatched(self, mock_app):
        """A finished country-wide run counts for every city that enables the source."""
        for name in ('bandsintown', 'karnet', 'cinema-city'):
            source = get_source(name)
            source_task_success(sender=make_sender(source.task_name, build_task_kwargs(self.krakow, source)))

        result = dispatch_due_sources()

        self.assertEqual(result['runs'], [])
        mock_app.send_task.assert_not_called()

    @patch('discovery.tasks.current_app')
    def test_country_source_sent_once_across_ticks(self, mock_app):
        """Later ticks don't resend a country-wide run from the next city."""
        gdansk = City.objects.create(name="Gdańsk", country=self.pl)
        enable_locality(gdansk.id)
        enable_source(gdansk.id, 'cinema-city')

        sent = []
        for _ in range(3):
            mock_app.send_task.reset_mock()
            dispatch_due_sources()
            for task_call in mock_app.send_task.call_args_list:
                task_name = task_call.args[0]
                task_kwargs = task_call.kwargs['kwargs']
                sent.append(task_name)
                source_task_success(sender=make_sender(task_name, task_kwargs))

        self.assertEqual(sent.count('scrapers.cinema_city.sync'), 1)
        for city in (self.krakow, self.warsaw, gdansk):
            city.refresh_from_db()
            entry = city.discovery_config['sources']['cinema-city']
            self.assertEqual(entry['stats']['run_count'], 1)
            self.assertIsNotNone(entry['next_run_at'])

    @patch('discovery.tasks.current_app')
    def test_city_sources_still_dispatched_per_city(self, mock_app):
        """Recording a city-scoped run leaves other cities' entries due."""
        enable_source(self.warsaw.id, 'bandsintown')
        update_source_stats(self.krakow.id, 'bandsintown', success=True, now=timezone.now())

        result = dispatch_due_sources()

        self.assertIn({'city_id': self.warsaw.id, 'source': 'bandsintown'}, result['runs'])
        self.assertNotIn({'city_id': self.krakow.id, 'source': 'bandsintown'}, result['runs'])

    @patch('discovery.tasks.current_app')
    def test_unknown_configured_source_skipped(self, mock_app):
        self.warsaw.refresh_from_db()
        config = self.warsaw.discovery_config
        config['sources']['myspace'] = {'name': 'myspace', 'enabled': True}
        City.objects.filter(pk=self.warsaw.pk).update(discovery_config=config)

        result = dispatch_due_sources()

        self.assertNotIn('myspace', [run['source'] for run in result['runs']])


class SyncSourceStatsTests(TestCase):
    """Test recomputing embedded stats from the ledger."""

    def setUp(self):
        country = Country.objects.create(name="Poland", code="PL")
        self.city = City.objects.create(name="Kraków", country=country)
        enable_locality(self.city.id)
        enable_source(self.city.id, 'bandsintown')

        self.last_run = datetime(2025, 1, 3, 0, 5, tzinfo=dt_timezone.utc)
        for day, status in ((1, states.SUCCESS), (2, states.FAILURE), (3, states.SUCCESS)):
            record = TaskResult.objects.create(
                task_id=str(uuid.uuid4()),
                task_name='scrapers.bandsintown.sync',
                task_kwargs=json.dumps(repr({'city_id': self.city.id, 'source': 'bandsintown'})),
                status=status,
                result=json.dumps({'exc_type': 'ConnectionError', 'exc_message': ['Timeout']}) if status == states.FAILURE else None,
            )
            TaskResult.objects.filter(pk=record.pk).update(
                date_done=datetime(2025, 1, day, 0, 5, tzinfo=dt_timezone.utc),
            )

    def test_overwrites_embedded_stats(self):
        result = sync_source_stats(city_id=self.city.id)

        self.assertEqual(result, {'synced': 1})
        self.city.refresh_from_db()
        entry = self.city.discovery_config['sources']['bandsintown']
        self.assertEqual(entry['stats'], {
            'run_count': 3, 'success_count': 2, 'error_count': 1, 'last_error': 'ConnectionError: Timeout',
        })
        self.assertEqual(entry['last_run_at'], self.last_run.isoformat())

    def test_all_enabled_cities(self):
        City.objects.create(name="Warszawa", country=self.city.country)

        self.assertEqual(sync_source_stats(), {'synced': 1})


class SignalHandlerTests(TestCase):
    """Test recording source outcomes from Celery task signals."""

    def setUp(self):
        country = Country.objects.create(name="Poland", code="PL")
        self.city = City.objects.create(name="Kraków", country=country)
        enable_locality(self.city.id)
        enable_source(self.city.id, 'bandsintown')
        enable_source(self.city.id, 'cinema-city')

    def stats(self, name):
        self.city.refresh_from_db()
        return self.city.discovery_config['sources'][name]['stats']

    def test_success(self):
        sender = make_sender('scrapers.bandsintown.sync', {'city_id': self.city.id, 'source': 'bandsintown'})

        source_task_success(sender=sender, result={'events': 12})

        self.assertEqual(self.stats('bandsintown')['success_count'], 1)

    def test_failure_of_country_source(self):
        """Country-wide runs are recorded on the city that configured them."""
        kwargs = {'source': 'cinema-city', 'country_code': 'PL', 'config_city_id': self.city.id}
        sender = make_sender('scrapers.cinema_city.sync', kwargs)

        source_task_failure(
            sender=sender, task_id='abc', exception=RuntimeError('Timeout'), args=(), kwargs=kwargs,
        )

        stats = self.stats('cinema-city')
        self.assertEqual(stats['error_count'], 1)
        self.assertEqual(stats['last_error'], 'Timeout')

    def test_country_run_recorded_on_sibling_cities(self):
        """Cities in the run's country with the source enabled share the outcome."""
        warsaw = City.objects.create(name="Warszawa", country=self.city.country)
        enable_source(warsaw.id, 'cinema-city')
        gdansk = City.objects.create(name="Gdańsk", country=self.city.country)
        enable_source(gdansk.id, 'cinema-city')
        disable_source(gdansk.id, 'cinema-city')
        berlin = City.objects.create(name="Berlin", country=Country.objects.create(name="Germany", code="DE"))
        enable_source(berlin.id, 'cinema-city')

        kwargs = {'source': 'cinema-city', 'country_code': 'PL', 'config_city_id': self.city.id}
        source_task_success(sender=make_sender('scrapers.cinema_city.sync', kwargs))

        self.assertEqual(self.stats('cinema-city')['success_count'], 1)
        for city, expected in ((warsaw, 1), (gdansk, 0), (berlin, 0)):
            city.refresh_from_db()
            self.assertEqual(city.discovery_config['sources']['cinema-city']['stats']['run_count'], expected)

    def test_city_run_not_shared(self):
        warsaw = City.objects.create(name="Warszawa", country=self.city.country)
        enable_source(warsaw.id, 'bandsintown')

        source_task_success(sender=make_sender(
            'scrapers.bandsintown.sync', {'city_id': self.city.id, 'source': 'bandsintown'},
        ))

        warsaw.refresh_from_db()
        self.assertEqual(warsaw.discovery_config['sources']['bandsintown']['stats']['run_count'], 0)

    def test_connected_to_celery_signal(self):
        sender = make_sender('scrapers.bandsintown.sync', {'city_id': self.city.id, 'source': 'bandsintown'})

        task_success.send(sender=sender, result=None)

        self.assertEqual(self.stats('bandsintown')['run_count'], 1)

    @patch('discovery.config.update_source_stats')
    def test_other_tasks_ignored(self, mock_update):
        source_task_success(sender=make_sender('venues.tasks.audit_city_duplicates', {'city_id': self.city.id}))

        mock_update.assert_not_called()

    @patch('discovery.config.update_source_stats')
    def test_missing_city_ignored(self, mock_update):
        source_task_success(sender=make_sender('scrapers.bandsintown.sync', {'source': 'bandsintown'}))

        mock_update.assert_not_called()

    def test_unconfigured_source_does_not_raise(self):
        """A run for a source the city doesn't have is logged, not raised."""
        sender = make_sender('scrapers.karnet.sync', {'source': 'karnet', 'config_city_id': self.city.id})

        source_task_success(sender=sender, result=None)

        self.city.refresh_from_db()
        self.assertNotIn('karnet', self.city.discovery_config['sources'])
