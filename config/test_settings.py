import os

os.environ.setdefault("DJANGO_ENV", "test")

from config.settings import *  # noqa: E402,F401,F403
from config.settings import _db_config_from_url  # noqa: E402

if os.getenv("TEST_DATABASE_URL"):
    # Point at a PostgreSQL server to run the concurrent invoice-numbering tests.
    DATABASES = {"default": _db_config_from_url(os.environ["TEST_DATABASE_URL"])}
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": ":memory:",
        }
    }

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

REST_FRAMEWORK = {
    **REST_FRAMEWORK,  # noqa: F405
    "DEFAULT_THROTTLE_CLASSES": [],
}

POS_EXPORT_API_KEY = "test-export-key"

# Pin business defaults so tests do not depend on the developer's .env.
GST_DEFAULT_STATE_CODE = "27"
GST_DEFAULT_STATE_NAME = "Maharashtra"
INVOICE_DEFAULT_PREFIX = "INV"
INVOICE_NUMBER_MAX_ATTEMPTS = 5
INVENTORY_ALLOW_NEGATIVE_STOCK = False
