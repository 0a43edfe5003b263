"""
Django settings for the kalem project.

Every deployment-specific value is read from the environment. ``SECRET_KEY`` and
``GEMINI_API_KEY`` are required; :mod:`kalem.test_settings` provides dummies for CI.
"""

import os
from pathlib import Path

import logfire
from django.core.exceptions import ImproperlyConfigured

BASE_DIR = Path(__file__).resolve().parent.parent


def _require_env(name: str) -> str:
    """Return the environment variable ``name`` or fail loudly at startup."""
    value = os.getenv(name)
    if not value:
        raise ImproperlyConfigured(f"The {name} environment variable is not set.")
    return value


SECRET_KEY = _require_env('SECRET_KEY')
DEBUG = os.getenv('DEBUG', 'False').lower() in ('1', 'true', 'yes')
ALLOWED_HOSTS = [
    host.strip()
    for host in os.getenv('ALLOWED_HOSTS', 'localhost,127.0.0.1').split(',')
    if host.strip()
]

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'django_ratelimit',
    'writing',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
    'kalem.ratelimit_middleware.RateLimitMiddleware',
]

ROOT_URLCONF = 'kalem.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

ASGI_APPLICATION = 'kalem.asgi.application'

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.postgresql',
        'NAME': os.getenv('POSTGRES_DB', 'kalem'),
        'USER': os.getenv('POSTGRES_USER', 'kalem'),
        'PASSWORD': os.getenv('POSTGRES_PASSWORD', ''),
        'HOST': os.getenv('POSTGRES_HOST', 'localhost'),
        'PORT': os.getenv('POSTGRES_PORT', '5432'),
        'CONN_MAX_AGE': 0,
    }
}

# django-ratelimit needs a shared cache with atomic increments
CACHES = {
    'default': {
        'BACKEND': 'kalem.cache_backends.RateLimitDatabaseCache',
        'LOCATION': 'kalem_cache',
    }
}
RATELIMIT_USE_CACHE = 'default'
SILENCED_SYSTEM_CHECKS = ['django_ratelimit.E003', 'django_ratelimit.W001']

AUTH_PASSWORD_VALIDATORS = [
    {'NAME': 'django.contrib.auth.password_validation.UserAttributeSimilarityValidator'},
    {'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator'},
    {'NAME': 'django.contrib.auth.password_validation.CommonPasswordValidator'},
    {'NAME': 'django.contrib.auth.password_validation.NumericPasswordValidator'},
]

LOGIN_URL = '/admin/login/'

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

STATIC_URL = 'static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# ---------------------------------------------------------------------------
# Writing analysis
# ---------------------------------------------------------------------------

GEMINI_API_KEY = _require_env('GEMINI_API_KEY')
WRITING_ANALYSIS_MODEL = os.getenv('WRITING_ANALYSIS_MODEL', 'gemini-2.5-flash-lite')
WRITING_TARGET_LANGUAGE = os.getenv('WRITING_TARGET_LANGUAGE', 'Turkish')
WRITING_FEEDBACK_LANGUAGE = os.getenv('WRITING_FEEDBACK_LANGUAGE', 'German')
WRITING_LEARNER_LEVEL = os.getenv('WRITING_LEARNER_LEVEL', 'B2')
WRITING_GOAL_LEVEL = os.getenv('WRITING_GOAL_LEVEL', 'C1')
WRITING_INTEREST_AREAS = [
    area.strip()
    for area in os.getenv('WRITING_INTEREST_AREAS', 'business,politics,sports').split(',')
    if area.strip()
]
WRITING_MIN_LENGTH = int(os.getenv('WRITING_MIN_LENGTH', '50'))

# ---------------------------------------------------------------------------
# Logging & Logfire
# ---------------------------------------------------------------------------

logfire.configure(
    token=os.getenv('LOGFIRE_KEY') or None,
    service_name='kalem',
    send_to_logfire='if-token-present',
    console=False,
)
logfire.instrument_pydantic_ai()

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'simple': {'format': '{levelname} {name}: {message}', 'style': '{'},
    },
    'handlers': {
        'console': {'class': 'logging.StreamHandler', 'formatter': 'simple'},
        'logfire': {'class': 'logfire.LogfireLoggingHandler'},
    },
    'loggers': {
        'writing': {
            'handlers': ['console', 'logfire'],
            'level': os.getenv('WRITING_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
    },
}
