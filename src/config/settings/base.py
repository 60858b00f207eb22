# src/config/settings/base.py
from pathlib import Path
import os

# parents[0]=settings, [1]=config, [2]=src
# BASE_DIR is src/, the directory that holds manage.py
BASE_DIR = Path(__file__).resolve().parents[2]  # => src/

# --------------------------------------------------------------------
# Security / Env
# --------------------------------------------------------------------
# Settings only read environment variables; loading a .env file is left
# to the process manager (docker compose, systemd, CI).
SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "dev-only-secret-key")
DEBUG = os.getenv("DJANGO_DEBUG", "true").lower() == "true"

# Production passes "example.com,api.example.com"
_raw_hosts = os.getenv("DJANGO_ALLOWED_HOSTS", "")
ALLOWED_HOSTS = [] if DEBUG else [h.strip() for h in _raw_hosts.split(",") if h.strip()]


# --------------------------------------------------------------------
# Application definition
# --------------------------------------------------------------------
INSTALLED_APPS = [
    # Django
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",

    # Project apps (one AppConfig per directory under src/apps/)
    "apps.common.apps.CommonConfig",
    "apps.accounts.apps.AccountsConfig",
    "apps.skills.apps.SkillsConfig",
    "apps.quests.apps.QuestsConfig",
    "apps.rewards.apps.RewardsConfig",
    "apps.store.apps.StoreConfig",
    "apps.notifications.apps.NotificationsConfig",
    "apps.dashboard.apps.DashboardConfig",
]

# --------------------------------------------------------------------
# Auth (Custom User)
# --------------------------------------------------------------------
# Must be set before the first migrate.
AUTH_USER_MODEL = "accounts.User"


MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
]

ROOT_URLCONF = "config.urls"

WSGI_APPLICATION = "config.wsgi.application"

# --------------------------------------------------------------------
# Database
# --------------------------------------------------------------------
# src/db.sqlite3 unless DJANGO_DB_PATH says otherwise
DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": os.getenv("DJANGO_DB_PATH", str(BASE_DIR / "db.sqlite3")),
    }
}

# --------------------------------------------------------------------
# Password validation
# --------------------------------------------------------------------
AUTH_PASSWORD_VALIDATORS = [
    {"NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator"},
    {"NAME": "django.contrib.auth.password_validation.MinimumLengthValidator"},
    {"NAME": "django.contrib.auth.password_validation.CommonPasswordValidator"},
    {"NAME": "django.contrib.auth.password_validation.NumericPasswordValidator"},
]

# --------------------------------------------------------------------
# i18n / timezone
# --------------------------------------------------------------------
# Leaderboard months and collective-goal quarters are cut in this zone.
LANGUAGE_CODE = "en-us"
TIME_ZONE = os.getenv("DJANGO_TIME_ZONE", "UTC")
USE_I18N = True
USE_TZ = True

# --------------------------------------------------------------------
# Logging
# --------------------------------------------------------------------
LOG_LEVEL = os.getenv("DJANGO_LOG_LEVEL", "INFO").upper()

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "%(asctime)s %(levelname)s %(name)s %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "WARNING",
    },
    "loggers": {
        # every service logs under apps.<app>.<module>
        "apps": {
            "handlers": ["console"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
        "django.db.backends": {
            "handlers": ["console"],
            "level": "WARNING",
            "propagate": False,
        },
    },
}

# --------------------------------------------------------------------
# Quest Board
# --------------------------------------------------------------------
# Skill levels (UserSkill.level / QuestRequiredSkill.min_level) are 1..MAX
QUEST_BOARD_SKILL_LEVEL_MAX = int(os.getenv("QUEST_BOARD_SKILL_LEVEL_MAX", "5"))

# Leaderboards are padded with zero-score users up to this size
QUEST_BOARD_LEADERBOARD_SIZE = int(os.getenv("QUEST_BOARD_LEADERBOARD_SIZE", "5"))

QUEST_BOARD_PAGE_SIZE = int(os.getenv("QUEST_BOARD_PAGE_SIZE", "10"))
QUEST_BOARD_MAX_PAGE_SIZE = int(os.getenv("QUEST_BOARD_MAX_PAGE_SIZE", "100"))

QUEST_BOARD_NOTIFICATION_RETENTION_DAYS = int(
    os.getenv("QUEST_BOARD_NOTIFICATION_RETENTION_DAYS", "30")
)

# --------------------------------------------------------------------
# Defaults
# --------------------------------------------------------------------
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"
