# src/config/settings/test.py
from .base import *  # noqa: F401,F403

DEBUG = False
SECRET_KEY = "test-only-secret-key"
ALLOWED_HOSTS = ["testserver", "localhost"]

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

# hashing cost is irrelevant for tests
PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

TIME_ZONE = "UTC"

LOGGING["loggers"]["apps"]["level"] = "DEBUG"  # noqa: F405
# let pytest's caplog (a root handler) see service log records
LOGGING["loggers"]["apps"]["propagate"] = True  # noqa: F405
