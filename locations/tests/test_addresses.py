"""
Tests for address parsing and city-name heuristics.
"""

from django.test import SimpleTestCase

from locations.addresses import (
    ADDRESS_PARSERS,
    detect_data_quality_issues,
    extract_city_from_address,
    looks_like_street_address,
)
from locations.exceptions import CityErrorCode, NoCityFound


class ExtractCityFromAddressTests(SimpleTestCase):
    """Test extract_city_from_address per-country parsing."""

    def test_uk_street_city_postcode(self):
        """UK: 'Street, City, Postcode' yields the city."""
        self.assertEqual(extract_city_from_address("10-16 Botchergate, Carlisle, CA1 1PE", "GB"), "Carlisle")
        self.assertEqual(extract_city_from_address("168 Lower Briggate, Leeds, LS1 3HY", "GB"), "Leeds")
        self.assertEqual(extract_city_from_address("12 Derrys Cross, Plymouth, PL1 2SW", "GB"), "Plymouth")

    def test_uk_street_city(self):
        """UK: 'Street, City' without postcode yields the city."""
        self.assertEqual(extract_city_from_address("123 Oxford Road, Manchester", "GB"), "Manchester")

    def test_uk_postcode_in_city_segment(self):
        """UK: a postcode trailing the city segment is stripped."""
        self.assertEqual(extract_city_from_address("1 High Street, York YO1 7HH", "GB"), "York")

    def test_uk_extra_commas(self):
        """UK: venue name before the street doesn't confuse parsing."""
        self.assertEqual(
            extract_city_from_address("The Rose Crown, 123 Main St, London, SW18 2SS", "GB"),
            "London",
        )

    def test_uk_trailing_country(self):
        """UK: a trailing country name is skipped."""
        self.assertEqual(
            extract_city_from_address("10-16 Botchergate, Carlisle, CA1 1PE, United Kingdom", "GB"),
            "Carlisle",
        )

    def test_uk_alias(self):
        """'UK' uses the same parser as 'GB'."""
        self.assertIs(ADDRESS_PARSERS['UK'], ADDRESS_PARSERS['GB'])

    def test_au_street_city_state_postcode(self):
        """AU: state and postcode are stripped from the city segment."""
        self.assertEqual(
            extract_city_from_address("425 Burwood Hwy, Wantirna South VIC 3152", "AU"),
            "Wantirna South",
        )
        self.assertEqual(extract_city_from_address("46-54 Collie St, Collie WA 6225", "AU"), "Collie")

    def test_us_street_city_state_zip(self):
        """US: 'Street, City, State ZIP' yields the city."""
        self.assertEqual(
            extract_city_from_address("9100 Wilshire Blvd, Beverly Hills, CA 90210", "US"),
            "Beverly Hills",
        )
        self.assertEqual(extract_city_from_address("123 Broadway, New York, NY 10001", "US"), "New York")

    def test_us_state_name_is_not_stripped(self):
        """US: a city named after a state keeps its name."""
        self.assertEqual(extract_city_from_address("1 Main St, Washington, DC 20001", "US"), "Washington")
        self.assertEqual(extract_city_from_address("350 5th Ave, New York, New York 10001", "US"), "New York")
        self.assertEqual(extract_city_from_address("1 Main St, New York 10001", "US"), "New York")

    def test_us_full_state_name_skipped(self):
        """US: a segment holding only a spelled-out state is not the city."""
        self.assertEqual(extract_city_from_address("1100 Congress Ave, Austin, Texas 78701", "US"), "Austin")
        self.assertEqual(extract_city_from_address("400 Broad St, Seattle, Washington", "US"), "Seattle")
        self.assertEqual(
            extract_city_from_address("1 Capitol Sq, Charleston, West Virginia 25305", "US"),
            "Charleston",
        )

    def test_country_code_is_case_insensitive(self):
        """Country codes are matched case-insensitively."""
        self.assertEqual(extract_city_from_address("123 Oxford Road, Manchester", "gb"), "Manchester")

    def test_generic_leading_postcode(self):
        """Other countries: a leading postal code is stripped."""
        self.assertEqual(extract_city_from_address("ul. Floriańska 3, 31-019 Kraków", "PL"), "Kraków")

    def test_single_part_address(self):
        """An address without commas has no city."""
        with self.assertRaises(NoCityFound):
            extract_city_from_address("Just A Street Name", "GB")

    def test_none_address(self):
        """A missing address has no city."""
        with self.assertRaises(NoCityFound) as ctx:
            extract_city_from_address(None, "GB")
        self.assertEqual(ctx.exception.code, CityErrorCode.NO_CITY_FOUND)

    def test_blank_address(self):
        """A whitespace-only address has no city."""
        with self.assertRaises(NoCityFound):
            extract_city_from_address("   ", "US")

    def test_city_part_too_short(self):
        """An extracted name under 3 characters is rejected."""
        with self.assertRaises(NoCityFound):
            extract_city_from_address("123 Street, AB, 12345", "US")

    def test_only_postcodes_after_street(self):
        """Segments that are nothing but postcodes yield no city."""
        with self.assertRaises(NoCityFound):
            extract_city_from_address("10 Downing Street, SW1A 2AA", "GB")


class LooksLikeStreetAddressTests(SimpleTestCase):
    """Test looks_like_street_address."""

    def test_leading_house_number(self):
        """Leading house numbers and ranges are street addresses."""
        self.assertTrue(looks_like_street_address("10-16 Botchergate"))
        self.assertTrue(looks_like_street_address("425 Burwood Hwy"))
        self.assertTrue(looks_like_street_address("12a High Road"))

    def test_trailing_suffix(self):
        """Thoroughfare suffixes mark street addresses."""
        self.assertTrue(looks_like_street_address("Burwood Hwy"))
        self.assertTrue(looks_like_street_address("Oxford Road"))

    def test_city_names(self):
        """Ordinary city names are not street addresses."""
        for name in ["London", "Wantirna South", "New York City", "Kraków", "St Albans"]:
            with self.subTest(name=name):
                self.assertFalse(looks_like_street_address(name))


class DetectDataQualityIssuesTests(SimpleTestCase):
    """Test detect_data_quality_issues codes."""

    def test_clean_names(self):
        """Real city names have no issues."""
        for name in ["London", "Carlisle", "Wantirna South", "Bielsko-Biała", "New York City"]:
            with self.subTest(name=name):
                self.assertEqual(detect_data_quality_issues(name), [])

    def test_street_address(self):
        """Street addresses are flagged."""
        self.assertIn('street_address', detect_data_quality_issues("10-16 Botchergate"))

    def test_bare_postcodes(self):
        """Whole-name postcodes are flagged as postcodes."""
        self.assertIn('postcode', detect_data_quality_issues("SW18 2SS"))
        self.assertIn('postcode', detect_data_quality_issues("90210"))
        self.assertIn('postcode', detect_data_quality_issues("31-019"))

    def test_postcode_in_name(self):
        """Postcodes embedded in a name are flagged."""
        self.assertIn('postcode_in_name', detect_data_quality_issues("Carlisle CA1 1PE"))
        self.assertIn('postcode_in_name', detect_data_quality_issues("Collie 6225"))

    def test_state_abbreviation(self):
        """A leading region code is flagged."""
        self.assertIn('state_abbreviation', detect_data_quality_issues("NSW Sydney"))

    def test_short_with_numbers(self):
        """Short names with digits are flagged."""
        self.assertIn('short_with_numbers', detect_data_quality_issues("A1"))

    def test_empty(self):
        """Empty names have no issue codes."""
        self.assertEqual(detect_data_quality_issues(""), [])
        self.assertEqual(detect_data_quality_issues(None), [])
