import datetime
import logging
from typing import TYPE_CHECKING, Annotated

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from dependency_injector.wiring import Provide, inject
from vintasend.constants import NotificationTypes
from vintasend.services.dataclasses import NotificationContextDict

from notifications.constants import NOTIFICATION_EMAIL_TEMPLATE, NotificationStatus
from notifications.dataclasses import NotificationPayload
from notifications.models import Notification
from notifications.tasks import deliver_notification_task


if TYPE_CHECKING:
    from vintasend.services.notification_service import NotificationService


logger = logging.getLogger(__name__)


class UserNotificationService:
    """
    Queue of user-facing notifications.

    ``notify`` persists the message and hands it to a worker; delivery goes through vintasend
    and failed attempts are rescheduled with exponential backoff until
    ``NOTIFICATION_MAX_RETRIES`` is reached.
    """

    @inject
    def __init__(
        self,
        notification_service: Annotated[
            "NotificationService | None", Provide["notification_service"]
        ] = None,
    ):
        self.notification_service = notification_service

    def notify(self, user_id: int, payload: NotificationPayload) -> Notification:
        notification = Notification.objects.create(
            user_id=user_id,
            kind=payload.kind,
            title=payload.title,
            body=payload.body,
            next_retry_at=timezone.now(),
        )
        transaction.on_commit(
            lambda: deliver_notification_task.delay(notification_id=notification.pk)
        )
        return notification

    def deliver(self, notification: Notification) -> Notification:
        """
        Makes one delivery attempt. On failure the notification is either rescheduled or,
        once out of attempts, marked as failed.
        """
        if not self.notification_service:
            raise RuntimeError("vintasend notification service is not configured")

        notification.attempt_count += 1
        try:
            self.notification_service.create_notification(
                user_id=notification.user_id,
                notification_type=NotificationTypes.EMAIL.value,
                title=notification.title,
                body_template=f"{NOTIFICATION_EMAIL_TEMPLATE}.body.html",
                subject_template=f"{NOTIFICATION_EMAIL_TEMPLATE}.subject.txt",
                preheader_template=f"{NOTIFICATION_EMAIL_TEMPLATE}.pre_header.txt",
                context_name="notification_message_context",
                context_kwargs=NotificationContextDict({"notification_id": notification.pk}),
            )
        except Exception as e:  # noqa: BLE001
            notification.last_error = str(e)
            logger.warning(
                "Notification delivery attempt %s failed",
                notification.attempt_count,
                extra={"notification_id": notification.pk, "user_id": notification.user_id},
            )
            self.schedule_retry(notification)
            return notification

        notification.status = NotificationStatus.DELIVERED
        notification.delivered_at = timezone.now()
        notification.next_retry_at = None
        notification.last_error = ""
        notification.save()
        return notification

    def schedule_retry(self, notification: Notification) -> Notification:
        if notification.attempt_count >= settings.NOTIFICATION_MAX_RETRIES:
            notification.status = NotificationStatus.FAILED
            notification.next_retry_at = None
            notification.save()
            logger.error(
                "Giving up on notification after %s attempts",
                notification.attempt_count,
                extra={"notification_id": notification.pk, "user_id": notification.user_id},
            )
            return notification

        exponential_backoff = 2 ** (notification.attempt_count - 1)
        notification.next_retry_at = timezone.now() + datetime.timedelta(
            seconds=exponential_backoff
        )
        notification.save()
        deliver_notification_task.apply_async(
            kwargs={"notification_id": notification.pk},
            countdown=exponential_backoff,
        )
        return notification
