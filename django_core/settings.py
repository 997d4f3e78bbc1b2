"""Django settings for the CTS server.

Every value that differs between deployments is read from a ``CTS_*``
environment variable.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def env_bool(name, default):
    return os.environ.get(name, str(default)).strip().lower() in ('1', 'true', 'yes', 'on')


SECRET_KEY = os.environ.get('CTS_SECRET_KEY', 'django-insecure-cts-development-key')

DEBUG = env_bool('CTS_DEBUG', False)

ALLOWED_HOSTS = [h for h in os.environ.get('CTS_ALLOWED_HOSTS', 'localhost,127.0.0.1,testserver').split(',') if h]

INSTALLED_APPS = [
    'django.contrib.contenttypes',
    'repo_app',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.middleware.common.CommonMiddleware',
]

ROOT_URLCONF = 'django_core.urls'

WSGI_APPLICATION = 'django_core.wsgi.application'

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': os.environ.get('CTS_DB_PATH', str(BASE_DIR / 'db.sqlite3')),
    }
}

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

USE_TZ = True
TIME_ZONE = 'UTC'

# API routes have no trailing slash
APPEND_SLASH = False

# request bodies carry objects hex-encoded
CTS_MAX_OBJECT_SIZE = int(os.environ.get('CTS_MAX_OBJECT_SIZE', 50 * 1024 * 1024))
DATA_UPLOAD_MAX_MEMORY_SIZE = 2 * CTS_MAX_OBJECT_SIZE + 1024 * 1024

CTS_VERIFY_CONNECTIVITY = env_bool('CTS_VERIFY_CONNECTIVITY', True)

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'simple': {'format': '%(asctime)s %(levelname)s %(name)s: %(message)s'},
    },
    'handlers': {
        'console': {'class': 'logging.StreamHandler', 'formatter': 'simple'},
    },
    'loggers': {
        'repo_app': {'handlers': ['console'], 'level': os.environ.get('CTS_LOG_LEVEL', 'INFO')},
        'cts_core': {'handlers': ['console'], 'level': os.environ.get('CTS_LOG_LEVEL', 'INFO')},
    },
}
