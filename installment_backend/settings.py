from decouple import config
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = config('SECRET_KEY', default='django-insecure-fallback-key')
DEBUG = config('DEBUG', default=True, cast=bool)
ALLOWED_HOSTS = ['localhost', '127.0.0.1', '0.0.0.0']

INSTALLED_APPS = [
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'rest_framework',
    'apps.installments',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.middleware.common.CommonMiddleware',
]

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': config('DATABASE_NAME', default=str(BASE_DIR / 'db.sqlite3')),
    }
}

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# Django REST Framework Configuration
REST_FRAMEWORK = {
    'COERCE_DECIMAL_TO_STRING': True,
}

# Installment Plan Configuration
DEFAULT_INTEREST_RATE = config('DEFAULT_INTEREST_RATE', default=0.0, cast=float)
MAX_INSTALLMENTS_SINGLE_PRODUCT = config('MAX_INSTALLMENTS_SINGLE_PRODUCT', default=120, cast=int)
MAX_INSTALLMENTS_MULTI_PRODUCT = config('MAX_INSTALLMENTS_MULTI_PRODUCT', default=60, cast=int)
OVERDUE_SWEEP_INTERVAL_HOURS = config('OVERDUE_SWEEP_INTERVAL_HOURS', default=24, cast=int)

# Logging
LOG_LEVEL = config('LOG_LEVEL', default='INFO')

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{asctime} {levelname} {name} {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'loggers': {
        'apps.installments': {
            'handlers': ['console'],
            'level': LOG_LEVEL,
            'propagate': False,
        },
    },
}

# Celery Configuration
CELERY_BROKER_URL = config('CELERY_BROKER_URL', default='redis://localhost:6379/0')
CELERY_RESULT_BACKEND = config('CELERY_RESULT_BACKEND', default='redis://localhost:6379/0')
CELERY_ACCEPT_CONTENT = ['json']
CELERY_TASK_SERIALIZER = 'json'
CELERY_RESULT_SERIALIZER = 'json'
CELERY_TIMEZONE = TIME_ZONE
CELERY_ENABLE_UTC = True

# Celery Beat Schedule for periodic tasks
CELERY_BEAT_SCHEDULE = {
    'sweep-overdue-plans': {
        'task': 'apps.installments.tasks.sweep_overdue_plans',
        'schedule': 60.0 * 60.0 * OVERDUE_SWEEP_INTERVAL_HOURS,
        'options': {'queue': 'urgent'}
    },
}

# Celery Task Routes
CELERY_TASK_ROUTES = {
    'apps.installments.tasks.sweep_overdue_plans': {'queue': 'urgent'},
}

# Celery Task Settings
CELERY_TASK_ALWAYS_EAGER = config('CELERY_TASK_ALWAYS_EAGER', default=False, cast=bool)
CELERY_TASK_EAGER_PROPAGATES = True
CELERY_TASK_IGNORE_RESULT = False
CELERY_TASK_STORE_EAGER_RESULT = False
