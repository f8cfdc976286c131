from environs import Env
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

env = Env()
env.read_env(BASE_DIR / '.env')

APP_ENV = env.str('APP_ENV', 'local')

SECRET_KEY = env.str('APP_SECRET_KEY', 'change-me')

DEBUG = APP_ENV != 'production'

ALLOWED_HOSTS = env.list('ALLOWED_HOSTS', default=['*'])

INSTALLED_APPS = [
    'django.contrib.contenttypes',
    'django.contrib.auth',
    'rest_framework',
    'donate',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'core.urls'

WSGI_APPLICATION = 'core.wsgi.application'

# Donations are settled by the facilitator; nothing is stored locally.
DATABASES = {}


LANGUAGE_CODE = 'en-us'

TIME_ZONE = 'UTC'

USE_I18N = True

USE_TZ = True


DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# Donation endpoints are anonymous.
REST_FRAMEWORK = {
    'DEFAULT_RENDERER_CLASSES': [
        'rest_framework.renderers.JSONRenderer',
    ],
    'DEFAULT_AUTHENTICATION_CLASSES': [],
    'DEFAULT_PERMISSION_CLASSES': [],
    'UNAUTHENTICATED_USER': None,
}

FACILITATOR_URL = env.str(
    'FACILITATOR_URL', 'https://x402.org/facilitator').rstrip('/')
FACILITATOR_API_KEY = env.str('FACILITATOR_API_KEY', '')
FACILITATOR_TIMEOUT_SECONDS = env.float('FACILITATOR_TIMEOUT_SECONDS', 30)

DONATE_DEFAULT_AMOUNT_CENTS = env.int('DONATE_DEFAULT_AMOUNT_CENTS', 100)
DONATE_STRICT_VALIDATION = env.bool('DONATE_STRICT_VALIDATION', False)
