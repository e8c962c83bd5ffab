import logging
from typing import TYPE_CHECKING, Annotated

from dependency_injector.wiring import Provide, inject

from calendar_integration.exceptions import TransientProviderError
from calendar_integration.models import GoogleAccountLink
from calendar_sync_api.celery import app
from users.models import User


if TYPE_CHECKING:
    from calendar_integration.services.calendar_sync_service import CalendarSyncService
    from calendar_integration.services.google_credential_service import GoogleCredentialService
    from calendar_integration.services.write_through_service import CalendarWriteThroughService


logger = logging.getLogger(__name__)


@app.task(autoretry_for=(TransientProviderError,), retry_backoff=True, max_retries=5)
@inject
def incremental_sync_calendar_task(
    link_id: int,
    calendar_id: str,
    calendar_sync_service: Annotated[
        "CalendarSyncService | None", Provide["calendar_sync_service"]
    ] = None,
):
    """
    Celery task pulling the pending changes of one provider calendar, enqueued by push
    notifications. Transient provider failures are retried with exponential backoff.
    """
    if not calendar_sync_service:
        return None

    link = GoogleAccountLink.objects.select_related("user").filter(id=link_id).first()
    if not link or not link.is_established:
        return None

    update = calendar_sync_service.sync_calendar(link, calendar_id)
    logger.info(
        "Calendar %s synced from push notification",
        calendar_id,
        extra={
            "user_id": link.user_id,
            "items": len(update.items),
            "full_resync": update.full_resync,
        },
    )
    return len(update.items)


@app.task
@inject
def mirror_existing_events_task(
    user_id: int,
    write_through_service: Annotated[
        "CalendarWriteThroughService | None", Provide["write_through_service"]
    ] = None,
):
    """
    Celery task mirroring the user's future local events after a Google account is linked.
    """
    if not write_through_service:
        return None

    user = User.objects.filter(id=user_id).first()
    if not user:
        return None

    result = write_through_service.mirror_existing_events(user)
    return {"synced": result.synced, "failed": result.failed}


@app.task(autoretry_for=(TransientProviderError,), retry_backoff=True, max_retries=3)
@inject
def revoke_google_token_task(
    token: str,
    google_credential_service: Annotated[
        "GoogleCredentialService | None", Provide["google_credential_service"]
    ] = None,
):
    if not google_credential_service:
        return False
    return google_credential_service.revoke_token(token)
