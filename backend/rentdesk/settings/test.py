import os

os.environ.setdefault("USE_S3", "false")
from .base import *

DEBUG = True
USE_S3 = False  # ensure local storage in tests
CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True
SECRET_KEY = os.environ.get("SECRET_KEY", "test-secret-key")

# SQLite for CI speed/simplicity if DATABASE_URL absent
if not os.environ.get("DATABASE_URL"):
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": BASE_DIR / "test.db",
        }
    }

EMAIL_BACKEND = "django.core.mail.backends.locmem.EmailBackend"
CACHES = {"default": {"BACKEND": "django.core.cache.backends.locmem.LocMemCache"}}
REST_FRAMEWORK = {
    **REST_FRAMEWORK,
    "DEFAULT_THROTTLE_CLASSES": [],
}

STRIPE_SECRET_KEY = "sk_test_dummy"
STRIPE_PUBLISHABLE_KEY = "pk_test_dummy"
STRIPE_WEBHOOK_SECRET = "whsec_test_dummy"

MPESA_CONSUMER_KEY = "test-key"
MPESA_CONSUMER_SECRET = "test-secret"
MPESA_PASSKEY = "test-passkey"
MPESA_CALLBACK_URL = "https://example.com/api/payments/mpesa/callback/"
MPESA_TOKEN_CACHE = "memory"
