import logging
import secrets
import uuid
from collections.abc import Mapping
from typing import TYPE_CHECKING, Annotated

from django.conf import settings
from django.db import transaction
from django.urls import reverse

from dependency_injector.wiring import Provide, inject

from calendar_integration.constants import GOOGLE_WEBHOOK_SYNC_STATE
from calendar_integration.exceptions import (
    CalendarServiceNotInjectedError,
    WebhookIgnoredError,
    WebhookProcessingFailedError,
)
from calendar_integration.models import CalendarSyncState
from calendar_integration.services.calendar_adapters.google_calendar_adapter import (
    GoogleCalendarAdapter,
)
from calendar_integration.services.dataclasses import WatchChannelData, WebhookNotificationData
from users.models import User


if TYPE_CHECKING:
    from calendar_integration.services.google_credential_service import GoogleCredentialService


logger = logging.getLogger(__name__)


class WatchChannelService:
    """
    Registers, renews and cancels Google push notification channels, one per provider
    calendar, and turns inbound notifications into sync runs.

    Renewal is not self-driven: calling ``start_watch`` again before the channel expires
    replaces it.
    """

    @inject
    def __init__(
        self,
        google_credential_service: Annotated[
            "GoogleCredentialService | None", Provide["google_credential_service"]
        ] = None,
    ):
        self.google_credential_service = google_credential_service

    def _get_credential_service(self) -> "GoogleCredentialService":
        if not self.google_credential_service:
            raise CalendarServiceNotInjectedError("Google credential service is not configured")
        return self.google_credential_service

    @staticmethod
    def get_webhook_address() -> str:
        if settings.GOOGLE_WEBHOOK_URL:
            return settings.GOOGLE_WEBHOOK_URL
        return f"{settings.BASE_URL}{reverse('google_calendar_webhook')}"

    @staticmethod
    def _stop_quietly(adapter: GoogleCalendarAdapter, channel_id: str, resource_id: str, user_id):
        try:
            adapter.stop_channel(channel_id, resource_id)
        except Exception:  # noqa: BLE001
            logger.warning(
                "Could not stop previous watch channel %s",
                channel_id,
                extra={"user_id": user_id},
                exc_info=True,
            )

    def start_watch(
        self, user: User, calendar_id: str, channel_id: str | None = None
    ) -> WatchChannelData:
        """
        Registers a channel for ``calendar_id`` and stores it on the calendar's sync state.
        A channel already stored for that calendar is stopped once the new one is active.
        """
        credential_service = self._get_credential_service()
        link = credential_service.get_link(user)
        adapter = credential_service.get_adapter_for_link(link)
        channel_id = channel_id or str(uuid.uuid4())

        channel = adapter.watch_calendar(
            calendar_id,
            channel_id=channel_id,
            address=self.get_webhook_address(),
            token=settings.GOOGLE_CHANNEL_TOKEN,
            ttl_seconds=settings.GOOGLE_CHANNEL_TTL_SECONDS,
        )

        with transaction.atomic():
            state, _ = CalendarSyncState.objects.select_for_update().get_or_create(
                link=link, calendar_id=calendar_id
            )
            previous = (state.channel_id, state.resource_id) if state.has_active_channel else None
            state.channel_id = channel.channel_id
            state.resource_id = channel.resource_id
            state.channel_expires_at = channel.expires_at
            state.save()

        if previous and previous[0] != channel.channel_id:
            self._stop_quietly(adapter, previous[0], previous[1], user.pk)

        logger.info(
            "Watch channel started for calendar %s",
            calendar_id,
            extra={"user_id": user.pk, "channel_id": channel.channel_id},
        )
        return channel

    def stop_watch(self, user: User, calendar_id: str) -> bool:
        """
        Cancels the calendar's channel and clears it. Returns False if none was active.
        Channels already expired, or unknown to Google, are only cleared locally.
        """
        credential_service = self._get_credential_service()
        link = credential_service.get_link(user)
        state = CalendarSyncState.objects.filter(link=link, calendar_id=calendar_id).first()
        if state is None or not state.has_active_channel:
            return False

        if state.is_channel_expired():
            stopped_at_provider = False
        else:
            adapter = credential_service.get_adapter_for_link(link)
            stopped_at_provider = adapter.stop_channel(state.channel_id, state.resource_id)
        if not stopped_at_provider:
            logger.info(
                "Watch channel %s had already expired, clearing it",
                state.channel_id,
                extra={"user_id": user.pk},
            )

        with transaction.atomic():
            state = CalendarSyncState.objects.select_for_update().get(pk=state.pk)
            state.clear_channel()
            state.save()
        return True

    @staticmethod
    def validate_notification(notification: WebhookNotificationData) -> CalendarSyncState:
        """
        Returns the sync state targeted by a push notification.

        Raises WebhookIgnoredError for handshakes and unknown or stale channels, and
        WebhookProcessingFailedError when the notification fails verification.
        """
        if notification.resource_state == GOOGLE_WEBHOOK_SYNC_STATE:
            raise WebhookIgnoredError("Skip sync notification")
        if not notification.channel_id:
            raise WebhookProcessingFailedError("Missing required Google webhook headers")

        state = CalendarSyncState.objects.get_by_channel_id(notification.channel_id)
        if state is None:
            raise WebhookIgnoredError("Unknown channel")
        if state.resource_id and notification.resource_id != state.resource_id:
            raise WebhookIgnoredError("Stale channel resource")

        expected_token = settings.GOOGLE_CHANNEL_TOKEN
        if expected_token and not secrets.compare_digest(
            notification.channel_token or "", expected_token
        ):
            raise WebhookProcessingFailedError("Channel token mismatch")
        return state

    def handle_notification(self, headers: Mapping[str, str]) -> CalendarSyncState | None:
        """
        Enqueues exactly one incremental sync for the calendar of a known channel.
        Anything else is dropped and logged, never raised.
        """
        from calendar_integration.tasks import incremental_sync_calendar_task

        notification = GoogleCalendarAdapter.parse_webhook_headers(headers)
        try:
            state = self.validate_notification(notification)
        except WebhookIgnoredError as e:
            logger.debug(
                "Ignoring Google Calendar notification: %s",
                e,
                extra={"channel_id": notification.channel_id},
            )
            return None
        except WebhookProcessingFailedError as e:
            logger.warning(
                "Discarding Google Calendar notification: %s",
                e,
                extra={"channel_id": notification.channel_id},
            )
            return None

        incremental_sync_calendar_task.delay(link_id=state.link_id, calendar_id=state.calendar_id)
        return state
