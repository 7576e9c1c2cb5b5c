from .settings import *  # noqa: F401,F403
from .settings import env

if not env.bool('TEST_USE_POSTGRES', default=False):
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.sqlite3',
            'NAME': ':memory:',
        }
    }

PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']

STRIPE_SECRET_KEY = ''
STRIPE_WEBHOOK_SECRET = 'whsec_test'
STRIPE_USE_STUB = True
FRONTEND_URL = 'https://app.slotkeeper.test'
BOOKING_REVIEW_MODE = False
BOOKING_TIME_ZONE = 'UTC'
