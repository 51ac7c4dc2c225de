from pathlib import Path
import os

BASE_DIR = Path(__file__).resolve().parent.parent
SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'change-me')
DEBUG = os.environ.get('DEBUG', 'True') == 'True'

if allowed_hosts_env := os.environ.get('ALLOWED_HOSTS'):
    ALLOWED_HOSTS = [host.strip() for host in allowed_hosts_env.split(',')]
else:
    ALLOWED_HOSTS = []

INSTALLED_APPS = [
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django_celery_beat',
    'django_celery_results',
    'locations',
    'venues',
    'events',
    'discovery',
]

DB_HOST = os.environ.get('DB_HOST', '')
DB_PORT = os.environ.get('DB_PORT', '5432')
DB_NAME = os.environ.get('DB_NAME', 'venuecheck')
DB_USER = os.environ.get('DB_USER', 'venuecheck')
DB_PASSWORD = os.environ.get('DB_PASSWORD', '')

# If no host specified, assume local peer authentication
if not DB_HOST:
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.postgresql',
            'NAME': DB_NAME,
            'USER': DB_USER,
            'PASSWORD': '',  # Empty for peer auth
            'HOST': '',      # Unix socket
            'PORT': '',      # Default socket
        }
    }
else:
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.postgresql',
            'NAME': DB_NAME,
            'USER': DB_USER,
            'PASSWORD': DB_PASSWORD,
            'HOST': DB_HOST,
            'PORT': DB_PORT,
        }
    }

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# Venue deduplication
# Search radius for single-candidate checks and cutoff radius for pair scans
VENUE_DUPLICATE_MAX_DISTANCE_METERS = int(os.environ.get('VENUE_DUPLICATE_MAX_DISTANCE_METERS', 500))
# Name similarity floor for pair scans beyond 200m
VENUE_DUPLICATE_MIN_SIMILARITY = float(os.environ.get('VENUE_DUPLICATE_MIN_SIMILARITY', 0.4))
# Max pairs returned by a single pair scan
VENUE_DUPLICATE_ROW_LIMIT = int(os.environ.get('VENUE_DUPLICATE_ROW_LIMIT', 300))

VENUE_DUPLICATE_SEVERITY = {
    'critical_high_confidence': 5,
    'critical_affected_events': 100,
    'warning_high_confidence': 2,
    'warning_unique_venues': 10,
}

# Discovery
DISCOVERY_DEFAULT_SCHEDULE = {
    'cron': '0 0 * * *',
    'timezone': 'UTC',
    'enabled': True,
}

# Queue Nominatim lookups for cities created without coordinates
GEOCODE_NEW_CITIES = os.environ.get('GEOCODE_NEW_CITIES', 'True') == 'True'

# Logging Configuration
LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{levelname} {asctime} {module} {message}',
            'style': '{',
        },
        'simple': {
            'format': '{levelname} {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': os.environ.get('LOG_LEVEL', 'INFO'),
    },
    'loggers': {
        'django': {
            'handlers': ['console'],
            'level': os.environ.get('LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
        'locations': {
            'handlers': ['console'],
            'level': os.environ.get('LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
        'venues': {
            'handlers': ['console'],
            'level': os.environ.get('LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
        'discovery': {
            'handlers': ['console'],
            'level': os.environ.get('LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
    },
}

# Celery Configuration
if DB_HOST:
    from urllib.parse import quote_plus
    _default_broker = f'sqla+postgresql://{DB_USER}:{quote_plus(DB_PASSWORD)}@{DB_HOST}:{DB_PORT}/{DB_NAME}'
else:
    _default_broker = f'sqla+postgresql://{DB_USER}@/{DB_NAME}'

CELERY_BROKER_URL = os.environ.get('CELERY_BROKER_URL', _default_broker)

# Results stored via django-celery-results; this table is the execution ledger
# that discovery stats are recomputed from
CELERY_RESULT_BACKEND = 'django-db'
CELERY_RESULT_EXTENDED = True

# Celery Beat scheduler uses database
CELERY_BEAT_SCHEDULER = 'django_celery_beat.schedulers:DatabaseScheduler'

# Task serialization
CELERY_ACCEPT_CONTENT = ['json']
CELERY_TASK_SERIALIZER = 'json'
CELERY_RESULT_SERIALIZER = 'json'

CELERY_TIMEZONE = TIME_ZONE

# Task settings
CELERY_TASK_TRACK_STARTED = True
CELERY_TASK_TIME_LIMIT = 30 * 60  # 30 minutes max per task
CELERY_TASK_SOFT_TIME_LIMIT = 25 * 60  # Soft limit at 25 minutes

# Result expiration (30 days, long enough for stats recomputation)
CELERY_RESULT_EXPIRES = 60 * 60 * 24 * 30

CELERY_WORKER_PREFETCH_MULTIPLIER = 1

CELERY_TASK_DEFAULT_QUEUE = 'default'

CELERY_TASK_ROUTES = {
    'locations.tasks.geocode_city_task': {'queue': 'geocoding'},
    'venues.tasks.audit_city_duplicates': {'queue': 'default'},
    'discovery.tasks.*': {'queue': 'default'},
    # Source sync tasks are implemented by the scraper workers
    'scrapers.*': {'queue': 'scraping'},
}
