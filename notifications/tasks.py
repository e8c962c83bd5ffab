from typing import TYPE_CHECKING, Annotated

from django.db import transaction
from django.utils import timezone

from dependency_injector.wiring import Provide, inject

from calendar_sync_api.celery import app
from notifications.constants import NotificationStatus
from notifications.models import Notification


if TYPE_CHECKING:
    from notifications.services import UserNotificationService


@app.task
@inject
def deliver_notification_task(
    notification_id: int,
    user_notification_service: Annotated[
        "UserNotificationService | None", Provide["user_notification_service"]
    ] = None,
):
    if not user_notification_service:
        return

    with transaction.atomic():
        notification = (
            Notification.objects.select_for_update()
            .filter(id=notification_id, status=NotificationStatus.PENDING)
            .first()
        )
        if not notification:
            return

        if notification.next_retry_at and notification.next_retry_at > timezone.now():
            return

        user_notification_service.deliver(notification)


@app.task
def periodic_deliver_due_notifications_task():
    """
    Re-enqueues pending notifications whose retry time has passed, covering deliveries
    lost by a worker restart.
    """
    due_ids = list(Notification.objects.due(timezone.now()).values_list("id", flat=True))
    for notification_id in due_ids:
        deliver_notification_task.delay(notification_id=notification_id)
    return len(due_ids)
