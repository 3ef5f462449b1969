"""
Django settings for irshad project.

All secrets and deployment-specific values come from environment variables.
Stripe is configured per program account (Mahad, Dugsi); Youth Events and
General Donation fall back to the Mahad account.
"""

import os
import sys
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

# Apps live under apps/ and import each other as top-level packages
sys.path.insert(0, str(BASE_DIR / 'apps'))


def env_bool(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


# =============================================================================
# CORE SETTINGS
# =============================================================================

SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'django-insecure-irshad-dev-key')

DEBUG = env_bool('DJANGO_DEBUG', True)

ALLOWED_HOSTS = [
    host.strip() for host in os.environ.get('DJANGO_ALLOWED_HOSTS', 'localhost,127.0.0.1').split(',')
    if host.strip()
]

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',

    # Third party
    'formtools',

    # Local apps
    'utils',
    'people',
    'students',
    'dugsi',
    'billing',
    'notifications',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
    'irshad.middleware.ProgramContextMiddleware',
    'utils.middleware.AuditContextMiddleware',
]

ROOT_URLCONF = 'irshad.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [BASE_DIR / 'templates'],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.debug',
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
                'core.context_processors.program_context',
            ],
        },
    },
]

WSGI_APPLICATION = 'irshad.wsgi.application'


# =============================================================================
# DATABASE
# =============================================================================

DATABASES = {
    'default': {
        'ENGINE': os.environ.get('DB_ENGINE', 'django.db.backends.sqlite3'),
        'NAME': os.environ.get('DB_NAME', str(BASE_DIR / 'db.sqlite3')),
        'USER': os.environ.get('DB_USER', ''),
        'PASSWORD': os.environ.get('DB_PASSWORD', ''),
        'HOST': os.environ.get('DB_HOST', ''),
        'PORT': os.environ.get('DB_PORT', ''),
    }
}

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

AUTH_PASSWORD_VALIDATORS = [
    {'NAME': 'django.contrib.auth.password_validation.UserAttributeSimilarityValidator'},
    {'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator'},
    {'NAME': 'django.contrib.auth.password_validation.CommonPasswordValidator'},
    {'NAME': 'django.contrib.auth.password_validation.NumericPasswordValidator'},
]

LOGIN_URL = 'login'
LOGIN_REDIRECT_URL = '/mahad/'


# =============================================================================
# INTERNATIONALIZATION & TIME
# =============================================================================

LANGUAGE_CODE = 'en-us'

# Operational timezone of the center; billing dates are computed in it
CENTER_TIMEZONE = os.environ.get('CENTER_TIMEZONE', 'America/Chicago')
TIME_ZONE = CENTER_TIMEZONE

USE_I18N = True
USE_TZ = True

STATIC_URL = 'static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'
MEDIA_URL = 'media/'
MEDIA_ROOT = BASE_DIR / 'media'


# =============================================================================
# APPLICATION URLS & SECRETS
# =============================================================================

APP_URL = os.environ.get('APP_URL', 'http://localhost:8000')

CRON_SECRET_KEY = os.environ.get('CRON_SECRET_KEY', '')


# =============================================================================
# STRIPE (one account per program)
# =============================================================================

STRIPE_ACCOUNTS = {
    'MAHAD': {
        'secret_key': os.environ.get('STRIPE_MAHAD_SECRET_KEY', ''),
        'webhook_secret': os.environ.get('STRIPE_MAHAD_WEBHOOK_SECRET', ''),
        'publishable_key': os.environ.get('STRIPE_MAHAD_PUBLISHABLE_KEY', ''),
        'product_id': os.environ.get('STRIPE_MAHAD_PRODUCT_ID', ''),
    },
    'DUGSI': {
        'secret_key': os.environ.get('STRIPE_DUGSI_SECRET_KEY', ''),
        'webhook_secret': os.environ.get('STRIPE_DUGSI_WEBHOOK_SECRET', ''),
        'publishable_key': os.environ.get('STRIPE_DUGSI_PUBLISHABLE_KEY', ''),
        'product_id': os.environ.get('STRIPE_DUGSI_PRODUCT_ID', ''),
    },
}


# =============================================================================
# WHATSAPP CLOUD API
# =============================================================================

WHATSAPP = {
    'API_BASE_URL': 'https://graph.facebook.com',
    'API_VERSION': os.environ.get('WHATSAPP_API_VERSION', 'v21.0'),
    'PHONE_NUMBER_ID': os.environ.get('WHATSAPP_PHONE_NUMBER_ID', ''),
    'ACCESS_TOKEN': os.environ.get('WHATSAPP_ACCESS_TOKEN', ''),
    'APP_SECRET': os.environ.get('WHATSAPP_APP_SECRET', ''),
    'VERIFY_TOKEN': os.environ.get('WHATSAPP_VERIFY_TOKEN', ''),
    'TIMEOUT': 15,
}


# =============================================================================
# TEACHER CHECK-IN GEOFENCE
# =============================================================================

IRSHAD_CENTER_LAT = float(os.environ.get('IRSHAD_CENTER_LAT', '0') or 0)
IRSHAD_CENTER_LNG = float(os.environ.get('IRSHAD_CENTER_LNG', '0') or 0)


# =============================================================================
# LOGGING
# =============================================================================

LOG_LEVEL = os.environ.get('DJANGO_LOG_LEVEL', 'INFO')

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{asctime} [{levelname}] {name}: {message}',
            'style': '{',
        },
        'simple': {
            'format': '[{levelname}] {message}',
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
        'level': LOG_LEVEL,
    },
    'loggers': {
        'django': {
            'handlers': ['console'],
            'level': 'WARNING',
            'propagate': False,
        },
        'billing': {
            'handlers': ['console'],
            'level': 'INFO',
            'propagate': False,
        },
        'billing_audit': {
            'handlers': ['console'],
            'level': 'INFO',
            'propagate': False,
        },
        'notifications': {
            'handlers': ['console'],
            'level': 'INFO',
            'propagate': False,
        },
    },
}
