from .settings import *  # noqa: F401,F403

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']
EMAIL_BACKEND = 'django.core.mail.backends.locmem.EmailBackend'

STRIPE_SECRET_KEY = ''
STRIPE_USE_STUB = True
STRIPE_WEBHOOK_SECRET = ''
FRONTEND_URL = 'https://app.test'
BOOKING_AMOUNT_POLICY = 'full'
