from django.core.exceptions import ImproperlyConfigured


# API Validation Errors
class CalendarServiceNotInjectedError(ImproperlyConfigured):
    pass


# Service Layer/Internal Errors
class CalendarIntegrationError(Exception):
    """Base exception for calendar integration errors"""

    default_message = ""

    def __init__(self, message: str | None = None):
        if message is None:
            message = self.default_message
        super().__init__(message)


class CalendarAuthenticationError(CalendarIntegrationError):
    """Raised when the linked account cannot be used to talk to the provider"""

    pass


class AuthExchangeError(CalendarAuthenticationError):
    """The authorization code could not be exchanged for tokens."""

    def __init__(self, error_code: str = "invalid_grant", message: str | None = None):
        self.error_code = error_code
        super().__init__(message or f"Authorization code exchange failed: {error_code}")


class InsufficientScopeError(CalendarAuthenticationError):
    def __init__(self, missing_scopes: list[str]):
        self.missing_scopes = list(missing_scopes)
        super().__init__(f"Granted scope is missing: {', '.join(self.missing_scopes)}")


class ReauthRequiredError(CalendarAuthenticationError):
    default_message = "The provider rejected the stored refresh token. Please link your account again."


class AccountNotLinkedError(CalendarAuthenticationError):
    default_message = "User doesn't have a linked Google account."


# Calendar Adapters - External API Errors
class CalendarAdapterError(CalendarIntegrationError):
    """Base class for calendar adapter errors"""

    pass


class CalendarAPIError(CalendarAdapterError):
    """Base class for external calendar API operation errors"""

    pass


class ProviderError(CalendarAPIError):
    """A call to the provider did not succeed."""

    pass


class TransientProviderError(ProviderError):
    """Timeouts, 5xx responses and rate limiting. Safe to retry with backoff."""

    default_message = "Google Calendar is temporarily unavailable."


class CursorInvalidError(ProviderError):
    default_message = "The stored sync token is no longer valid."


class ProviderRequestError(ProviderError):
    def __init__(self, status: int | None = None, message: str | None = None):
        self.status = status
        super().__init__(message or f"Google Calendar request failed with status {status}")


# Webhook Errors
class WebhookError(CalendarIntegrationError):
    """Base class for inbound push notification errors"""

    pass


class WebhookIgnoredError(WebhookError):
    default_message = "Notification ignored"


class WebhookProcessingFailedError(WebhookError):
    default_message = "Notification could not be processed"
