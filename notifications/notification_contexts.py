from typing import Any

from vintasend.services.notification_service import register_context

from notifications.models import Notification


@register_context("notification_message_context")
def notification_message_context(notification_id: int) -> dict[str, Any]:
    """
    Provides the context for queued user notifications.
    """
    notification = Notification.objects.select_related("user").get(id=notification_id)
    user = notification.user

    return {
        "user": {
            "id": user.id,
            "email": user.email,
            "first_name": user.first_name,
        },
        "notification": {
            "kind": notification.kind,
            "title": notification.title,
            "body": notification.body,
        },
    }
