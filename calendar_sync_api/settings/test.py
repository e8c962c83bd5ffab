from .base import *


SECRET_KEY = "test"  # nosec

DATABASES = {
    "default": config("DATABASE_URL", default="sqlite://:memory:", cast=db_url),
}

STATIC_ROOT = base_dir_join("staticfiles")
STATIC_URL = "/static/"

MEDIA_ROOT = base_dir_join("mediafiles")

STORAGES = {
    "default": {"BACKEND": "django.core.files.storage.FileSystemStorage"},
    "staticfiles": {"BACKEND": "django.contrib.staticfiles.storage.StaticFilesStorage"},
}

EMAIL_BACKEND = "django.core.mail.backends.locmem.EmailBackend"

# Speed up password hashing
PASSWORD_HASHERS = [
    "django.contrib.auth.hashers.MD5PasswordHasher",
]

# Celery
CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True

SITE_DOMAIN = "test-calendar-sync.example.com"
SALT_KEY = "123467890asdfghjkl"

# Rate limiter falls back to in-memory buckets
REDIS_URL = ""

GOOGLE_CLIENT_ID = "test-client-id"
GOOGLE_CLIENT_SECRET = "test-client-secret"  # nosec
GOOGLE_WEBHOOK_URL = "https://test-calendar-sync.example.com/webhooks/google-calendar/"
GOOGLE_CHANNEL_TOKEN = ""
