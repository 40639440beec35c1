"""Core Django settings shared by every environment."""

from decouple import Csv

from server.settings.components import BASE_DIR, config

SECRET_KEY = config('DJANGO_SECRET_KEY', default='insecure-development-key')

DEBUG = config('DJANGO_DEBUG', cast=bool, default=False)

ALLOWED_HOSTS = config(
    'DJANGO_ALLOWED_HOSTS',
    cast=Csv(),
    default='localhost',
)

INSTALLED_APPS = [
    'django.contrib.auth',
    'django.contrib.contenttypes',

    # Our apps:
    'server.apps.files',
]

DATABASES = {
    'default': {
        'ENGINE': config(
            'DJANGO_DATABASE_ENGINE',
            default='django.db.backends.sqlite3',
        ),
        'NAME': config(
            'DJANGO_DATABASE_NAME',
            default=str(BASE_DIR.joinpath('storage', 'db.sqlite3')),
        ),
        'USER': config('DJANGO_DATABASE_USER', default=''),
        'PASSWORD': config('DJANGO_DATABASE_PASSWORD', default=''),
        'HOST': config('DJANGO_DATABASE_HOST', default=''),
        'PORT': config('DJANGO_DATABASE_PORT', default=''),
    },
}

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

USE_TZ = True
TIME_ZONE = 'UTC'
