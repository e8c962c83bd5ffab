import datetime

from django.conf import settings
from django.db import models
from django.db.models.query import QuerySet

from common.models import BaseModel
from notifications.constants import NotificationKind, NotificationStatus


class NotificationQuerySet(QuerySet):
    def due(self, now: datetime.datetime):
        """
        Pending notifications whose next delivery attempt is not in the future.
        """
        return self.filter(status=NotificationStatus.PENDING, next_retry_at__lte=now)


class Notification(BaseModel):
    """
    A message for a user waiting in the delivery queue, with its retry state.
    """

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="app_notifications",
    )
    kind = models.CharField(max_length=50, choices=NotificationKind)
    title = models.CharField(max_length=255)
    body = models.TextField(blank=True)
    status = models.CharField(
        max_length=50,
        choices=NotificationStatus,
        default=NotificationStatus.PENDING,
    )
    attempt_count = models.PositiveIntegerField(default=0)
    next_retry_at = models.DateTimeField(null=True, blank=True, db_index=True)
    last_error = models.TextField(blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)

    objects = NotificationQuerySet.as_manager()

    def __str__(self):
        return f"Notification(id={self.id}, kind={self.kind}, status={self.status})"
