from django.db.models import TextChoices


DEFAULT_CALENDAR_COLOR = "#4285F4"


class TokenState(TextChoices):
    VALID = "valid", "Valid"
    EXPIRING = "expiring", "Expiring"
    REFRESHING = "refreshing", "Refreshing"
    UNRECOVERABLE = "unrecoverable", "Unrecoverable"


class EventSource(TextChoices):
    LOCAL = "local", "Local"
    EXTERNAL = "external", "External"


class ProviderEventStatus(TextChoices):
    CONFIRMED = "confirmed", "Confirmed"
    TENTATIVE = "tentative", "Tentative"
    CANCELLED = "cancelled", "Cancelled"


class WriteThroughOperation(TextChoices):
    CREATE = "create", "Create"
    UPDATE = "update", "Update"
    DELETE = "delete", "Delete"


DEGRADED_REAUTH_REQUIRED = "reauth_required"
DEGRADED_PROVIDER_UNAVAILABLE = "provider_unavailable"

GOOGLE_WEBHOOK_SYNC_STATE = "sync"

GOOGLE_RATE_LIMIT_REASONS = frozenset({"rateLimitExceeded", "userRateLimitExceeded"})
