import os
from datetime import timedelta

from decouple import Csv, config  # type: ignore
from dj_database_url import parse as db_url


BASE_DIR = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


def base_dir_join(*args):
    return os.path.join(BASE_DIR, *args)


SITE_ID = 1

DEBUG = True

ADMINS = (("Admin", "foo@example.com"),)

AUTH_USER_MODEL = "users.User"

ALLOWED_HOSTS: list[str] = []

DATABASES = {
    "default": config(
        "DATABASE_URL", default=f"sqlite:///{base_dir_join('db.sqlite3')}", cast=db_url
    ),
}
INTERNAL_INSTALLED_APPS = [
    "di_core",
    "common",
    "users",
    "notifications",
    "calendar_integration",
]
INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "django.contrib.sites",
    "corsheaders",
    "rest_framework",
    "drf_spectacular",
    "django_guid",
    "django_filters",
    "vintasend_django",
    *INTERNAL_INSTALLED_APPS,
]

MIDDLEWARE = [
    "django.middleware.gzip.GZipMiddleware",
    "django.middleware.security.SecurityMiddleware",
    "whitenoise.middleware.WhiteNoiseMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "corsheaders.middleware.CorsMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
    "django_guid.middleware.guid_middleware",
]

ROOT_URLCONF = "calendar_sync_api.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [base_dir_join("templates")],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

WSGI_APPLICATION = "calendar_sync_api.wsgi.application"

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

AUTH_PASSWORD_VALIDATORS = [
    {
        "NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator",
    },
    {
        "NAME": "django.contrib.auth.password_validation.MinimumLengthValidator",
    },
    {
        "NAME": "django.contrib.auth.password_validation.CommonPasswordValidator",
    },
    {
        "NAME": "django.contrib.auth.password_validation.NumericPasswordValidator",
    },
]

REST_FRAMEWORK = {
    "DEFAULT_PAGINATION_CLASS": "rest_framework.pagination.LimitOffsetPagination",
    "PAGE_SIZE": 10,
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "rest_framework_simplejwt.authentication.JWTAuthentication",
        "rest_framework.authentication.SessionAuthentication",
    ],
    "DEFAULT_PERMISSION_CLASSES": [
        "rest_framework.permissions.IsAuthenticated",
    ],
    "DEFAULT_FILTER_BACKENDS": ("django_filters.rest_framework.DjangoFilterBackend",),
    "DEFAULT_SCHEMA_CLASS": "drf_spectacular.openapi.AutoSchema",
}

LANGUAGE_CODE = "en-us"

TIME_ZONE = "UTC"

USE_I18N = True


USE_TZ = True

REDIS_URL = config("REDIS_URL", default="")

# Celery
# Recommended settings for reliability: https://gist.github.com/fjsj/da41321ac96cf28a96235cb20e7236f6
CELERY_ACCEPT_CONTENT = ["json"]
CELERY_TASK_SERIALIZER = "json"
CELERY_RESULT_SERIALIZER = "json"
CELERY_TASK_ACKS_LATE = True
CELERY_TIMEZONE = TIME_ZONE
CELERY_BROKER_TRANSPORT_OPTIONS = {"confirm_publish": True, "confirm_timeout": 5.0}
CELERY_BROKER_POOL_LIMIT = config("CELERY_BROKER_POOL_LIMIT", cast=int, default=1)
CELERY_BROKER_CONNECTION_TIMEOUT = config(
    "CELERY_BROKER_CONNECTION_TIMEOUT", cast=float, default=30.0
)
CELERY_TASK_ACKS_ON_FAILURE_OR_TIMEOUT = config(
    "CELERY_TASK_ACKS_ON_FAILURE_OR_TIMEOUT", cast=bool, default=True
)
CELERY_TASK_REJECT_ON_WORKER_LOST = config(
    "CELERY_TASK_REJECT_ON_WORKER_LOST", cast=bool, default=False
)
CELERY_WORKER_PREFETCH_MULTIPLIER = config("CELERY_WORKER_PREFETCH_MULTIPLIER", cast=int, default=1)
CELERY_WORKER_MAX_TASKS_PER_CHILD = config(
    "CELERY_WORKER_MAX_TASKS_PER_CHILD", cast=int, default=1000
)
CELERY_WORKER_SEND_TASK_EVENTS = config("CELERY_WORKER_SEND_TASK_EVENTS", cast=bool, default=True)
CELERY_BEAT_SCHEDULE_FILENAME = config("CELERY_BEAT_SCHEDULE_FILENAME", default="celerybeat-schedule")

# Sentry
SENTRY_DSN = config("SENTRY_DSN", default="")
COMMIT_SHA = config("RENDER_GIT_COMMIT", default="")

CSRF_COOKIE_SAMESITE = "Lax"
SESSION_COOKIE_SAMESITE = "Lax"

SIMPLE_JWT = {
    "ACCESS_TOKEN_LIFETIME": timedelta(minutes=5),
    "REFRESH_TOKEN_LIFETIME": timedelta(days=7),
    "UPDATE_LAST_LOGIN": True,
}

CORS_ORIGIN_ALLOW_ALL = True
CORS_ALLOW_CREDENTIALS = True

SPECTACULAR_SETTINGS = {
    "TITLE": "Calendar Sync API",
    "DESCRIPTION": "Unified calendar view and Google Calendar synchronization API",
    "VERSION": "1.0.0",
    "SERVE_INCLUDE_SCHEMA": False,
    "ENUM_ADD_EXPLICIT_BLANK_NULL_CHOICE": False,
}

# Logging
LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "filters": {
        "correlation_id": {"()": "django_guid.log_filters.CorrelationId"},
    },
    "formatters": {
        "standard": {
            "format": "%(levelname)-8s [%(asctime)s] [%(correlation_id)s] %(name)s: %(message)s"
        },
    },
    "handlers": {
        "console": {
            "level": "DEBUG",
            "class": "logging.StreamHandler",
            "formatter": "standard",
            "filters": ["correlation_id"],
        },
    },
    "loggers": {
        "": {"handlers": ["console"], "level": "INFO"},
        "celery": {"handlers": ["console"], "level": "INFO"},
        "django_guid": {
            "handlers": ["console"],
            "level": "WARNING",
            "propagate": False,
        },
    },
}

SITE_DOMAIN = config("SITE_DOMAIN", default="localhost:8000")
DEFAULT_FROM_EMAIL = config("DEFAULT_FROM_EMAIL", default="no-reply@example.com")

BASE_URL_DOMAIN = config("BASE_URL_DOMAIN", "localhost:8000")
BASE_URL_PROTOCOL = config("BASE_URL_PROTOCOL", "http")
NOTIFICATION_DEFAULT_BASE_URL_DOMAIN = BASE_URL_DOMAIN
NOTIFICATION_DEFAULT_BASE_URL_PROTOCOL = BASE_URL_PROTOCOL
BASE_URL = f"{BASE_URL_PROTOCOL}://{BASE_URL_DOMAIN}"

SALT_KEY = config("SALT_KEY", default="")

# Google Calendar
GOOGLE_CLIENT_ID = config("GOOGLE_CLIENT_ID", default="")
GOOGLE_CLIENT_SECRET = config("GOOGLE_CLIENT_SECRET", default="")
GOOGLE_REDIRECT_URI = config("GOOGLE_REDIRECT_URI", default="")
GOOGLE_TOKEN_URI = config("GOOGLE_TOKEN_URI", default="https://oauth2.googleapis.com/token")
GOOGLE_REVOKE_URI = config("GOOGLE_REVOKE_URI", default="https://oauth2.googleapis.com/revoke")
GOOGLE_CALENDAR_REQUIRED_SCOPES: list[str] = config(
    "GOOGLE_CALENDAR_REQUIRED_SCOPES",
    default=(
        "https://www.googleapis.com/auth/calendar,"
        "https://www.googleapis.com/auth/calendar.events"
    ),
    cast=Csv(),
)
GOOGLE_MANAGED_CALENDAR_NAME = config(
    "GOOGLE_MANAGED_CALENDAR_NAME", default="Unified Calendar – Events"
)
GOOGLE_WEBHOOK_URL = config("GOOGLE_WEBHOOK_URL", default="")
GOOGLE_CHANNEL_TOKEN = config("GOOGLE_CHANNEL_TOKEN", default="")
GOOGLE_CHANNEL_TTL_SECONDS = config("GOOGLE_CHANNEL_TTL_SECONDS", cast=int, default=7 * 24 * 3600)
GOOGLE_API_TIMEOUT_SECONDS = config("GOOGLE_API_TIMEOUT_SECONDS", cast=float, default=20.0)
GOOGLE_TOKEN_EXPIRING_WINDOW_SECONDS = config(
    "GOOGLE_TOKEN_EXPIRING_WINDOW_SECONDS", cast=int, default=300
)
GOOGLE_CALENDAR_READ_RATE_PER_MINUTE = config(
    "GOOGLE_CALENDAR_READ_RATE_PER_MINUTE", cast=int, default=240
)
GOOGLE_CALENDAR_WRITE_RATE_PER_MINUTE = config(
    "GOOGLE_CALENDAR_WRITE_RATE_PER_MINUTE", cast=int, default=120
)
CALENDAR_SYNC_DEFAULT_WINDOW_PAST_DAYS = config(
    "CALENDAR_SYNC_DEFAULT_WINDOW_PAST_DAYS", cast=int, default=30
)
CALENDAR_SYNC_DEFAULT_WINDOW_FUTURE_DAYS = config(
    "CALENDAR_SYNC_DEFAULT_WINDOW_FUTURE_DAYS", cast=int, default=365
)

# Notifications
NOTIFICATION_MAX_RETRIES = config("NOTIFICATION_MAX_RETRIES", cast=int, default=5)

# Celery beat
from calendar_sync_api.celerybeat_schedule import CELERYBEAT_SCHEDULE  # noqa: E402


CELERY_BEAT_SCHEDULE = CELERYBEAT_SCHEDULE
