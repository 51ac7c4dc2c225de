"""
Import reference places from a GeoNames cities dump.

Usage:
    python manage.py import_gazetteer --file=/path/to/cities15000.zip
    python manage.py import_gazetteer --file=cities15000.txt --country=GB
    python manage.py import_gazetteer --file=cities15000.txt --dry-run --limit=100

Data source:
    https://download.geonames.org/export/dump/cities15000.zip (tab-separated,
    no header row; see the GeoNames readme for column meanings)
"""

import csv
import io
import logging
import sys
import zipfile
from decimal import Decimal, InvalidOperation
from pathlib import Path

from django.core.management.base import BaseCommand, CommandError
from django.db import transaction

from locations.models import GazetteerPlace, normalize_for_matching

logger = logging.getLogger(__name__)

# GeoNames "geoname" table column positions
COL_GEONAMEID = 0
COL_NAME = 1
COL_ASCIINAME = 2
COL_LATITUDE = 4
COL_LONGITUDE = 5
COL_FEATURE_CODE = 7
COL_COUNTRY_CODE = 8
COL_ADMIN1_CODE = 10
COL_POPULATION = 14
MIN_COLUMNS = 15

UPDATE_FIELDS = [
    'name', 'ascii_name', 'normalized_name', 'normalized_ascii_name', 'country_code',
    'admin1_code', 'feature_code', 'latitude', 'longitude', 'population',
]


class Command(BaseCommand):
    help = 'Import gazetteer places from a GeoNames cities dump'

    def add_arguments(self, parser):
        parser.add_argument(
            '--file',
            type=str,
            required=True,
            help='Local path to a GeoNames cities*.txt or cities*.zip file',
        )
        parser.add_argument(
            '--country',
            type=str,
            help='Only import places for this ISO country code (e.g., GB)',
        )
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Parse file without saving to database',
        )
        parser.add_argument(
            '--limit',
            type=int,
            help='Limit number of records to import',
        )

    def handle(self, *args, **options):
        file_path = options['file']
        country_filter = (options.get('country') or '').upper()
        dry_run = options.get('dry_run', False)
        limit = options.get('limit')

        self.stdout.write(f"Reading gazetteer from local file: {file_path}")
        content = self._read_local_file(file_path)

        # Large alternatenames columns exceed the csv default field limit
        csv.field_size_limit(sys.maxsize)
        reader = csv.reader(io.StringIO(content), delimiter='\t', quoting=csv.QUOTE_NONE)

        created = 0
        updated = 0
        skipped = 0
        errors = 0

        parsed = []
        for i, row in enumerate(reader):
            if limit and len(parsed) >= limit:
                break

            if not row or not any(field.strip() for field in row):
                continue

            try:
                place_data = self._parse_row(row)
            except ValueError as e:
                logger.warning(f"Skipping row {i}: {e}")
                errors += 1
                continue

            if country_filter and place_data['country_code'] != country_filter:
                skipped += 1
                continue

            if dry_run:
                self.stdout.write(f"  [DRY RUN] {place_data['name']}, {place_data['country_code']}")

            parsed.append(place_data)

        if not dry_run and parsed:
            existing = {
                place.geonameid: place
                for place in GazetteerPlace.objects.filter(geonameid__in=[p['geonameid'] for p in parsed])
            }

            places_to_create = []
            places_to_update = []
            for place_data in parsed:
                place = existing.get(place_data['geonameid'])
                if place:
                    for key, value in place_data.items():
                        setattr(place, key, value)
                    places_to_update.append(place)
                else:
                    places_to_create.append(GazetteerPlace(**place_data))

            with transaction.atomic():
                GazetteerPlace.objects.bulk_create(places_to_create, batch_size=500)
                GazetteerPlace.objects.bulk_update(places_to_update, UPDATE_FIELDS, batch_size=500)

            created = len(places_to_create)
            updated = len(places_to_update)

        self.stdout.write(
            self.style.SUCCESS(
                f"Import complete: {created} created, {updated} updated, {skipped} skipped, {errors} errors"
            )
        )

    def _parse_row(self, row: list) -> dict:
        """Parse a row from a GeoNames dump."""
        if len(row) < MIN_COLUMNS:
            raise ValueError(f"Expected at least {MIN_COLUMNS} columns, got {len(row)}")

        try:
            geonameid = int(row[COL_GEONAMEID])
        except ValueError:
            raise ValueError(f"Invalid geonameid: {row[COL_GEONAMEID]!r}")

        name = row[COL_NAME].strip()
        if not name:
            raise ValueError("Missing name")

        country_code = row[COL_COUNTRY_CODE].strip().upper()
        if len(country_code) != 2:
            raise ValueError(f"Invalid country code: {country_code!r}")

        try:
            lat = Decimal(row[COL_LATITUDE].strip()).quantize(Decimal('0.000001'))
            lng = Decimal(row[COL_LONGITUDE].strip()).quantize(Decimal('0.000001'))
        except InvalidOperation:
            raise ValueError(f"Invalid coordinates: {row[COL_LATITUDE]!r}, {row[COL_LONGITUDE]!r}")

        population = None
        if pop_str := row[COL_POPULATION].strip():
            try:
                population = int(pop_str)
            except ValueError:
                pass

        ascii_name = row[COL_ASCIINAME].strip()

        return {
            'geonameid': geonameid,
            'name': name,
            'ascii_name': ascii_name,
            'normalized_name': normalize_for_matching(name),
            'normalized_ascii_name': normalize_for_matching(ascii_name),
            'country_code': country_code,
            'admin1_code': row[COL_ADMIN1_CODE].strip(),
            'feature_code': row[COL_FEATURE_CODE].strip(),
            'latitude': lat,
            'longitude': lng,
            'population': population,
        }

    def _read_local_file(self, file_path: str) -> str:
        """Read from local file (zip or txt)."""
        path = Path(file_path)
        if not path.exists():
            raise CommandError(f"File not found: {file_path}")

        if path.suffix == '.zip':
            with zipfile.ZipFile(path) as zf:
                for name in zf.namelist():
                    if name.endswith('.txt'):
                        with zf.open(name) as f:
                            return f.read().decode('utf-8')
            raise CommandError("No text file found in ZIP")

        return path.read_text(encoding='utf-8')
