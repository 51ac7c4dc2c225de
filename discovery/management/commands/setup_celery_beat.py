"""
Register the periodic tasks that drive discovery and data-quality audits.

Usage:
    python manage.py setup_celery_beat
    python manage.py setup_celery_beat --prune

Run after migrations. Re-running updates existing entries in place.
"""

import json

from django.core.management.base import BaseCommand
from django_celery_beat.models import CrontabSchedule, IntervalSchedule, PeriodicTask

# (name, task, schedule, kwargs)
# A schedule is either a five-field cron string or an (every, period) interval
PERIODIC_TASKS = [
    (
        'Dispatch due discovery sources',
        'discovery.tasks.dispatch_due_sources',
        (15, IntervalSchedule.MINUTES),
        {},
    ),
    (
        'Sync discovery source stats',
        'discovery.tasks.sync_source_stats',
        '0 4 * * *',
        {},
    ),
    (
        'Audit duplicate venues',
        'venues.tasks.audit_city_duplicates',
        '0 5 * * 0',
        {'limit': 20},
    ),
    (
        'Bulk geocode cities',
        'locations.tasks.bulk_geocode_cities',
        (1, IntervalSchedule.HOURS),
        {'limit': 100},
    ),
]

MANAGED_PREFIXES = ('discovery.tasks.', 'venues.tasks.', 'locations.tasks.')


def schedule_fields(schedule) -> dict:
    """PeriodicTask schedule fields for a cron string or (every, period) pair."""
    if isinstance(schedule, str):
        minute, hour, day_of_month, month_of_year, day_of_week = schedule.split()
        crontab, _ = CrontabSchedule.objects.get_or_create(
            minute=minute,
            hour=hour,
            day_of_month=day_of_month,
            month_of_year=month_of_year,
            day_of_week=day_of_week,
        )
        return {'crontab': crontab, 'interval': None}

    every, period = schedule
    interval, _ = IntervalSchedule.objects.get_or_create(every=every, period=period)
    return {'interval': interval, 'crontab': None}


class Command(BaseCommand):
    help = 'Register Celery Beat periodic tasks for discovery and data-quality audits'

    def add_arguments(self, parser):
        parser.add_argument(
            '--prune',
            action='store_true',
            help='Disable periodic tasks of this project that are no longer registered here',
        )

    def handle(self, *args, **options):
        created_count = 0
        updated_count = 0

        for name, task_name, schedule, kwargs in PERIODIC_TASKS:
            _, created = PeriodicTask.objects.update_or_create(
                name=name,
                defaults={
                    'task': task_name,
                    'enabled': True,
                    'kwargs': json.dumps(kwargs),
                    **schedule_fields(schedule),
                },
            )
            if created:
                created_count += 1
            else:
                updated_count += 1
            self.stdout.write(f"  {'Created' if created else 'Updated'}: {name} -> {task_name}")

        if options['prune']:
            registered = {name for name, *_ in PERIODIC_TASKS}
            stale = [
                task for task in PeriodicTask.objects.filter(enabled=True).exclude(name__in=registered)
                if task.task.startswith(MANAGED_PREFIXES)
            ]
            for task in stale:
                task.enabled = False
                task.save(update_fields=['enabled'])
                self.stdout.write(self.style.WARNING(f'  Disabled: {task.name} -> {task.task}'))

        self.stdout.write(self.style.SUCCESS(f'Created {created_count}, updated {updated_count} periodic tasks'))
