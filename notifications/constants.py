from django.db.models import TextChoices


class NotificationKind(TextChoices):
    REAUTH_REQUIRED = "reauth_required", "Re-authentication Required"
    SYNC_FAILURE = "sync_failure", "Sync Failure"


class NotificationStatus(TextChoices):
    PENDING = "pending", "Pending"
    DELIVERED = "delivered", "Delivered"
    FAILED = "failed", "Failed"


NOTIFICATION_EMAIL_TEMPLATE = "notifications/emails/notification_message"
