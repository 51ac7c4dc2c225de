"""Django management command to report duplicate venues in a city."""

import json

from django.core.management.base import BaseCommand, CommandError

from venues.clustering import (
    calculate_duplicate_metrics,
    find_duplicates_for_city,
    get_cities_with_duplicates,
    summarize_clusters,
)


class Command(BaseCommand):
    help = 'Report likely duplicate venues for a city, or list the cities with most duplicates'

    def add_arguments(self, parser):
        parser.add_argument(
            '--city',
            type=int,
            help='City ID to analyse (default: list cities with duplicates)',
        )
        parser.add_argument(
            '--limit',
            type=int,
            default=20,
            help='Maximum clusters or cities to show',
        )
        parser.add_argument(
            '--json',
            action='store_true',
            help='Print the report as JSON',
        )

    def handle(self, *args, **options):
        from locations.models import City

        city_id = options['city']
        limit = options['limit']

        if city_id is None:
            self._list_cities(limit, options['json'])
            return

        try:
            city = City.objects.get(pk=city_id)
        except City.DoesNotExist:
            raise CommandError(f'City {city_id} not found')

        metrics = calculate_duplicate_metrics(city.id)
        clusters = find_duplicates_for_city(city.id, limit=limit)

        if options['json']:
            report = {**metrics.as_dict(), 'clusters': summarize_clusters(clusters)}
            self.stdout.write(json.dumps(report, indent=2, ensure_ascii=False))
            return

        self.stdout.write(f'Duplicate report for {city.name} (id {city.id})')
        self.stdout.write(
            f'  Pairs: {metrics.pair_count} '
            f'(high {metrics.high_confidence_count}, medium {metrics.medium_confidence_count}, '
            f'low {metrics.low_confidence_count})'
        )
        self.stdout.write(f'  Venues involved: {metrics.unique_venue_count}')
        self.stdout.write(f'  Events affected: {metrics.affected_events}')

        style = self.style.SUCCESS if metrics.severity.value == 'healthy' else self.style.WARNING
        self.stdout.write(style(f'  Severity: {metrics.severity.value}'))

        for cluster in clusters:
            target = cluster.suggested_target()
            self.stdout.write(f'\n  Cluster (confidence {cluster.confidence:.2f}, {cluster.total_events} events):')
            for venue in cluster.venues:
                marker = '*' if venue.id == target.id else '-'
                self.stdout.write(f'    {marker} [{venue.id}] {venue.name} ({cluster.event_counts.get(venue.id, 0)} events)')

    def _list_cities(self, limit, as_json):
        cities = get_cities_with_duplicates(limit=limit)

        if as_json:
            data = [
                {'city_id': c['city'].id, 'city': c['city'].name, 'pair_count': c['pair_count'],
                 'high_confidence_count': c['high_confidence_count']}
                for c in cities
            ]
            self.stdout.write(json.dumps(data, indent=2, ensure_ascii=False))
            return

        if not cities:
            self.stdout.write(self.style.SUCCESS('No duplicate venues found'))
            return

        self.stdout.write('Cities with duplicate venues:')
        for entry in cities:
            city = entry['city']
            self.stdout.write(
                f'  [{city.id}] {city.name}, {city.country.code}: '
                f'{entry["pair_count"]} pairs ({entry["high_confidence_count"]} high confidence)'
            )
