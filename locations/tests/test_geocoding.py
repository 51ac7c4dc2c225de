"""Tests for city geocoding, its task and the post_save hook."""

from decimal import Decimal
from unittest.mock import MagicMock, patch

from django.test import TestCase, override_settings
from geopy.exc import GeocoderTimedOut

from locations.geocoding import geocode_city, geocode_place
from locations.models import City, Country
from locations.tasks import bulk_geocode_cities, geocode_city_task


class TestGeocodePlace(TestCase):
    """Tests for the geocode_place function."""

    @patch('locations.geocoding.Nominatim')
    def test_returns_coordinates(self, mock_nominatim_class):
        """Should return lat/long restricted to the country."""
        mock_geocoder = MagicMock()
        mock_location = MagicMock()
        mock_location.latitude = 54.8924
        mock_location.longitude = -2.9329
        mock_geocoder.geocode.return_value = mock_location
        mock_nominatim_class.return_value = mock_geocoder

        result = geocode_place("Carlisle", "GB")

        self.assertEqual(result, (Decimal('54.892400'), Decimal('-2.932900')))
        _, kwargs = mock_geocoder.geocode.call_args
        self.assertEqual(kwargs['country_codes'], 'gb')

    @patch('locations.geocoding.Nominatim')
    def test_not_found(self, mock_nominatim_class):
        """Should return None tuple when the place is not found."""
        mock_geocoder = MagicMock()
        mock_geocoder.geocode.return_value = None
        mock_nominatim_class.return_value = mock_geocoder

        self.assertEqual(geocode_place("Nowhere In Particular", "GB"), (None, None))

    @patch('locations.geocoding.Nominatim')
    def test_timeout(self, mock_nominatim_class):
        """Should return None tuple when the service times out."""
        mock_geocoder = MagicMock()
        mock_geocoder.geocode.side_effect = GeocoderTimedOut("timed out")
        mock_nominatim_class.return_value = mock_geocoder

        self.assertEqual(geocode_place("Carlisle", "GB"), (None, None))

    @patch('locations.geocoding.Nominatim')
    def test_blank_query(self, mock_nominatim_class):
        """Blank queries never reach the service."""
        self.assertEqual(geocode_place("  "), (None, None))
        mock_nominatim_class.assert_not_called()


class TestGeocodeCity(TestCase):
    """Tests for geocode_city and its tasks."""

    def setUp(self):
        self.gb = Country.objects.create(name="United Kingdom", code="GB")
        self.city = City.objects.create(name="Carlisle", country=self.gb)

    @patch('locations.geocoding.geocode_place')
    def test_updates_coordinates(self, mock_geocode):
        """Should store coordinates returned by the geocoder."""
        mock_geocode.return_value = (Decimal('54.892400'), Decimal('-2.932900'))

        self.assertTrue(geocode_city(self.city.id))

        self.city.refresh_from_db()
        self.assertEqual(self.city.latitude, Decimal('54.892400'))
        mock_geocode.assert_called_once_with("Carlisle", "GB")

    @patch('locations.geocoding.geocode_place')
    def test_skips_city_with_coordinates(self, mock_geocode):
        """Should not geocode a city that already has coordinates."""
        self.city.latitude = Decimal('54.892400')
        self.city.longitude = Decimal('-2.932900')
        self.city.save()

        self.assertFalse(geocode_city(self.city.id))
        mock_geocode.assert_not_called()

    def test_missing_city(self):
        """Should return False for an unknown city."""
        self.assertFalse(geocode_city(999999))

    @patch('locations.geocoding.geocode_place')
    def test_task_reports_status(self, mock_geocode):
        """The task returns a status dict."""
        mock_geocode.return_value = (None, None)

        result = geocode_city_task(self.city.id)

        self.assertEqual(result, {'city_id': self.city.id, 'status': 'skipped'})

    @patch('locations.tasks.geocode_city_task.delay')
    def test_bulk_task_queues_missing(self, mock_delay):
        """Bulk geocoding queues only cities without coordinates."""
        City.objects.create(
            name="Leeds", country=self.gb, latitude=Decimal('53.800000'), longitude=Decimal('-1.550000'),
        )

        result = bulk_geocode_cities(limit=10)

        self.assertEqual(result, {'queued': 1})
        mock_delay.assert_called_once_with(self.city.id)


class TestCityPostSave(TestCase):
    """Tests for geocoding queued on city creation."""

    def setUp(self):
        self.gb = Country.objects.create(name="United Kingdom", code="GB")

    @override_settings(GEOCODE_NEW_CITIES=True)
    @patch('locations.tasks.geocode_city_task.delay')
    def test_new_city_without_coordinates_is_queued(self, mock_delay):
        """A new city without coordinates is queued after commit."""
        with self.captureOnCommitCallbacks(execute=True):
            city = City.objects.create(name="Carlisle", country=self.gb)

        mock_delay.assert_called_once_with(city.id)

    @override_settings(GEOCODE_NEW_CITIES=True)
    @patch('locations.tasks.geocode_city_task.delay')
    def test_city_with_coordinates_is_not_queued(self, mock_delay):
        """A city created with coordinates is not geocoded."""
        with self.captureOnCommitCallbacks(execute=True):
            City.objects.create(
                name="Carlisle", country=self.gb, latitude=Decimal('54.892400'), longitude=Decimal('-2.932900'),
            )

        mock_delay.assert_not_called()

    @override_settings(GEOCODE_NEW_CITIES=True)
    @patch('locations.tasks.geocode_city_task.delay')
    def test_updates_are_not_queued(self, mock_delay):
        """Saving an existing city doesn't queue geocoding."""
        with self.captureOnCommitCallbacks(execute=True):
            city = City.objects.create(name="Carlisle", country=self.gb)
        mock_delay.reset_mock()

        with self.captureOnCommitCallbacks(execute=True):
            city.name = "Carlisle, Cumbria"
            city.save()

        mock_delay.assert_not_called()

    @patch('locations.tasks.geocode_city_task.delay')
    def test_disabled_by_setting(self, mock_delay):
        """Nothing is queued when GEOCODE_NEW_CITIES is off."""
        with self.captureOnCommitCallbacks(execute=True):
            City.objects.create(name="Carlisle", country=self.gb)

        mock_delay.assert_not_called()
