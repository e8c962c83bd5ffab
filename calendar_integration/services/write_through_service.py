import logging
from typing import TYPE_CHECKING, Annotated

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from dependency_injector.wiring import Provide, inject

from calendar_integration.constants import TokenState, WriteThroughOperation
from calendar_integration.exceptions import CalendarServiceNotInjectedError
from calendar_integration.models import CalendarEvent, GoogleAccountLink
from calendar_integration.services.calendar_adapters.google_calendar_adapter import (
    GoogleCalendarAdapter,
)
from calendar_integration.services.dataclasses import (
    ExternalEventRef,
    MirroringResult,
    ProviderEventInputData,
)
from users.models import User


if TYPE_CHECKING:
    from calendar_integration.services.google_credential_service import GoogleCredentialService


logger = logging.getLogger(__name__)


class CalendarWriteThroughService:
    """
    Mirrors local event mutations to the managed calendar of the owner's Google account.

    Local state is the source of truth: none of the ``propagate_*`` methods raise. A failed
    propagation is logged and the local event simply stays local-only.
    """

    @inject
    def __init__(
        self,
        google_credential_service: Annotated[
            "GoogleCredentialService | None", Provide["google_credential_service"]
        ] = None,
    ):
        self.google_credential_service = google_credential_service

    def _get_active_link(self, user: User) -> GoogleAccountLink | None:
        link = GoogleAccountLink.objects.filter(user=user).first()
        if link is None or not link.is_established:
            return None
        if link.token_state == TokenState.UNRECOVERABLE:
            return None
        return link

    def _get_adapter(self, link: GoogleAccountLink) -> GoogleCalendarAdapter:
        if not self.google_credential_service:
            raise CalendarServiceNotInjectedError("Google credential service is not configured")
        return self.google_credential_service.get_adapter_for_link(link)

    @staticmethod
    def _build_provider_event(event: CalendarEvent) -> ProviderEventInputData:
        return ProviderEventInputData(
            title=event.title,
            description=event.description,
            location=event.location,
            start_time=event.start_time,
            end_time=event.end_time,
        )

    @staticmethod
    def _log_failure(operation: WriteThroughOperation, user_id: int, event_id: int | None):
        logger.warning(
            "Failed to propagate event %s to Google Calendar",
            operation.value,
            extra={"user_id": user_id, "event_id": event_id, "operation": operation.value},
            exc_info=True,
        )

    def ensure_managed_calendar(
        self, link: GoogleAccountLink, adapter: GoogleCalendarAdapter | None = None
    ) -> str:
        """
        Returns the id of the provider calendar holding mirrored events, looking it up by
        display name before creating it.
        """
        if link.managed_calendar_id:
            return link.managed_calendar_id

        adapter = adapter or self._get_adapter(link)
        name = settings.GOOGLE_MANAGED_CALENDAR_NAME
        provider_calendar = adapter.find_calendar_by_name(name) or adapter.create_calendar(name)

        with transaction.atomic():
            locked = GoogleAccountLink.objects.select_for_update().get(pk=link.pk)
            if not locked.managed_calendar_id:
                locked.managed_calendar_id = provider_calendar.id
                locked.save(update_fields=["managed_calendar_id", "modified"])
        link.managed_calendar_id = locked.managed_calendar_id
        return link.managed_calendar_id

    def try_ensure_managed_calendar(self, link: GoogleAccountLink) -> str:
        try:
            return self.ensure_managed_calendar(link)
        except Exception:  # noqa: BLE001
            logger.warning(
                "Could not set up the managed Google calendar",
                extra={"user_id": link.user_id},
                exc_info=True,
            )
            return ""

    def _insert(
        self, link: GoogleAccountLink, adapter: GoogleCalendarAdapter, event: CalendarEvent
    ) -> ExternalEventRef:
        calendar_id = self.ensure_managed_calendar(link, adapter=adapter)
        ref = adapter.insert_event(calendar_id, self._build_provider_event(event))
        event.set_external_ref(ref)
        event.save(
            update_fields=["external_calendar_id", "external_event_id", "external_etag", "modified"]
        )
        return ref

    def _unmirror(
        self, link: GoogleAccountLink, event: CalendarEvent, ref: ExternalEventRef
    ) -> ExternalEventRef | None:
        try:
            adapter = self._get_adapter(link)
            adapter.delete_event(ref)
        except Exception:  # noqa: BLE001
            self._log_failure(WriteThroughOperation.UPDATE, link.user_id, event.pk)
            return ref

        event.set_external_ref(None)
        event.save(
            update_fields=["external_calendar_id", "external_event_id", "external_etag", "modified"]
        )
        return None

    def propagate_create(self, event: CalendarEvent) -> ExternalEventRef | None:
        user = event.calendar.owner
        if not event.calendar.mirror_to_provider or event.is_mirrored:
            return event.external_ref
        link = self._get_active_link(user)
        if link is None:
            return None

        try:
            adapter = self._get_adapter(link)
            return self._insert(link, adapter, event)
        except Exception:  # noqa: BLE001
            self._log_failure(WriteThroughOperation.CREATE, user.pk, event.pk)
            return None

    def propagate_update(self, event: CalendarEvent) -> ExternalEventRef | None:
        """
        Patches the provider copy. When the event now lives in a calendar that is not
        mirrored, the provider copy is deleted and the local ref cleared instead.
        """
        ref = event.external_ref
        if ref is None:
            return None
        user = event.calendar.owner
        link = self._get_active_link(user)
        if link is None:
            return ref

        if not event.calendar.mirror_to_provider:
            return self._unmirror(link, event, ref)

        try:
            adapter = self._get_adapter(link)
            new_ref = adapter.patch_event(ref, self._build_provider_event(event))
        except Exception:  # noqa: BLE001
            self._log_failure(WriteThroughOperation.UPDATE, user.pk, event.pk)
            return ref

        event.set_external_ref(new_ref)
        event.save(update_fields=["external_event_id", "external_etag", "modified"])
        return new_ref

    def propagate_delete(self, ref: ExternalEventRef | None, user: User, event_id: int) -> bool:
        """
        Deletes the provider copy of an already deleted local event.
        Returns True when the provider no longer holds the event.
        """
        if ref is None:
            return False
        link = self._get_active_link(user)
        if link is None:
            return False

        try:
            adapter = self._get_adapter(link)
            adapter.delete_event(ref)
        except Exception:  # noqa: BLE001
            self._log_failure(WriteThroughOperation.DELETE, user.pk, event_id)
            return False
        return True

    def mirror_existing_events(self, user: User) -> MirroringResult:
        """
        Propagates every future local event that was never mirrored, e.g. events created
        before the account was linked.
        """
        result = MirroringResult()
        link = self._get_active_link(user)
        if link is None:
            return result

        events = CalendarEvent.objects.pending_mirroring_for(user, now=timezone.now()).select_related(
            "calendar"
        )
        try:
            adapter = self._get_adapter(link)
            self.ensure_managed_calendar(link, adapter=adapter)
        except Exception:  # noqa: BLE001
            logger.warning(
                "Could not mirror existing events to Google Calendar",
                extra={"user_id": user.pk},
                exc_info=True,
            )
            result.failed = events.count()
            return result

        for event in events:
            try:
                self._insert(link, adapter, event)
            except Exception:  # noqa: BLE001
                self._log_failure(WriteThroughOperation.CREATE, user.pk, event.pk)
                result.failed += 1
            else:
                result.synced += 1

        logger.info(
            "Mirrored existing events to Google Calendar",
            extra={"user_id": user.pk, "synced": result.synced, "failed": result.failed},
        )
        return result
