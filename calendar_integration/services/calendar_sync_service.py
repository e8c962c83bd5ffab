import datetime
import logging
from typing import TYPE_CHECKING, Annotated

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from dependency_injector.wiring import Provide, inject

from calendar_integration.exceptions import (
    CalendarServiceNotInjectedError,
    CursorInvalidError,
    ProviderError,
)
from calendar_integration.models import CalendarEvent, CalendarSyncState, GoogleAccountLink
from calendar_integration.services.calendar_adapters.google_calendar_adapter import (
    GoogleCalendarAdapter,
)
from calendar_integration.services.dataclasses import (
    CalendarSyncUpdate,
    EventChangesPage,
    ProviderEventData,
)
from users.models import User


if TYPE_CHECKING:
    from calendar_integration.services.google_credential_service import GoogleCredentialService


logger = logging.getLogger(__name__)


class CalendarSyncService:
    """
    Pulls provider-side changes of the selected calendars using resumable sync tokens.

    Each (link, calendar) pair has one ``CalendarSyncState`` row. A sync run holds a row
    lock on it for its whole duration, so concurrent runs for the same pair are serialized
    and the stored token always comes from the last successful fetch.
    """

    @inject
    def __init__(
        self,
        google_credential_service: Annotated[
            "GoogleCredentialService | None", Provide["google_credential_service"]
        ] = None,
    ):
        self.google_credential_service = google_credential_service

    def _get_adapter(self, link: GoogleAccountLink) -> GoogleCalendarAdapter:
        if not self.google_credential_service:
            raise CalendarServiceNotInjectedError("Google credential service is not configured")
        return self.google_credential_service.get_adapter_for_link(link)

    def _get_link(self, user: User) -> GoogleAccountLink:
        if not self.google_credential_service:
            raise CalendarServiceNotInjectedError("Google credential service is not configured")
        return self.google_credential_service.get_link(user)

    @staticmethod
    def get_default_window(
        now: datetime.datetime | None = None,
    ) -> tuple[datetime.datetime, datetime.datetime]:
        now = now or timezone.now()
        return (
            now - datetime.timedelta(days=settings.CALENDAR_SYNC_DEFAULT_WINDOW_PAST_DAYS),
            now + datetime.timedelta(days=settings.CALENDAR_SYNC_DEFAULT_WINDOW_FUTURE_DAYS),
        )

    def sync_calendar(
        self,
        link: GoogleAccountLink,
        calendar_id: str,
        adapter: GoogleCalendarAdapter | None = None,
        time_min: datetime.datetime | None = None,
        time_max: datetime.datetime | None = None,
        force_full: bool = False,
    ) -> CalendarSyncUpdate:
        """
        Fetches the changes of one provider calendar and stores the next sync token.

        Without a stored token (or with ``force_full``) the calendar is listed in full over
        ``[time_min, time_max)``, defaulting to the configured window. A token rejected by
        the provider is cleared and replaced by exactly one full listing of the default
        window. The token is only written after a fetch succeeded.
        """
        adapter = adapter or self._get_adapter(link)
        retry_error: ProviderError | None = None

        with transaction.atomic():
            state, _ = CalendarSyncState.objects.select_for_update().get_or_create(
                link=link, calendar_id=calendar_id
            )
            cursor = None if force_full else (state.sync_token or None)
            page: EventChangesPage | None = None

            if cursor:
                try:
                    page = adapter.list_event_changes(calendar_id, sync_token=cursor)
                except CursorInvalidError:
                    logger.info(
                        "Sync token of calendar %s is no longer valid, running a full sync",
                        calendar_id,
                        extra={"user_id": link.user_id},
                    )
                    state.sync_token = ""
                    state.save(update_fields=["sync_token", "modified"])
                    time_min, time_max = self.get_default_window()

            full_resync = page is None
            if full_resync:
                if time_min is None or time_max is None:
                    default_min, default_max = self.get_default_window()
                    time_min = time_min or default_min
                    time_max = time_max or default_max
                try:
                    page = adapter.list_event_changes(
                        calendar_id, time_min=time_min, time_max=time_max
                    )
                except ProviderError as e:
                    if cursor is None:
                        raise
                    # keep the cleared token, the next run starts from a full listing
                    retry_error = e

            if page is not None:
                now = timezone.now()
                state.sync_token = page.next_sync_token or state.sync_token
                state.last_synced_at = now
                if full_resync:
                    state.last_full_sync_at = now
                state.save()

                if calendar_id == link.managed_calendar_id:
                    self.reconcile_managed_calendar(link, page.events)

        if retry_error is not None:
            raise retry_error

        return CalendarSyncUpdate(
            calendar_id=calendar_id,
            items=page.events if page else [],
            full_resync=full_resync,
        )

    def reconcile_managed_calendar(
        self, link: GoogleAccountLink, items: list[ProviderEventData]
    ) -> int:
        """
        Applies managed calendar changes back to the mirrored local events: refreshes
        their etag, and turns them local-only when their provider copy was cancelled.
        Returns the number of local events touched.
        """
        items_by_id = {item.id: item for item in items}
        if not items_by_id:
            return 0

        events = CalendarEvent.objects.owned_by(link.user).filter(
            external_calendar_id=link.managed_calendar_id,
            external_event_id__in=list(items_by_id.keys()),
        )
        touched = 0
        for event in events:
            item = items_by_id[event.external_event_id]
            if item.is_cancelled:
                event.set_external_ref(None)
            elif item.etag and item.etag != event.external_etag:
                event.external_etag = item.etag
            else:
                continue
            event.save(
                update_fields=[
                    "external_calendar_id",
                    "external_event_id",
                    "external_etag",
                    "modified",
                ]
            )
            touched += 1
        return touched

    def _sync_selected_calendars(
        self,
        user: User,
        time_min: datetime.datetime | None = None,
        time_max: datetime.datetime | None = None,
        force_full: bool = False,
    ) -> list[CalendarSyncUpdate]:
        link = self._get_link(user)
        calendar_ids = list(link.selected_calendar_ids or [])
        if not calendar_ids:
            return []

        try:
            adapter = self._get_adapter(link)
        except ProviderError as e:
            logger.warning(
                "Could not reach Google Calendar for sync", extra={"user_id": user.pk}
            )
            return [CalendarSyncUpdate(calendar_id=c, error=str(e)) for c in calendar_ids]

        updates = []
        for calendar_id in calendar_ids:
            try:
                updates.append(
                    self.sync_calendar(
                        link,
                        calendar_id,
                        adapter=adapter,
                        time_min=time_min,
                        time_max=time_max,
                        force_full=force_full,
                    )
                )
            except ProviderError as e:
                logger.warning(
                    "Sync of calendar %s failed",
                    calendar_id,
                    extra={"user_id": user.pk, "error": e.__class__.__name__},
                )
                updates.append(CalendarSyncUpdate(calendar_id=calendar_id, error=str(e)))
        return updates

    def incremental_sync(self, user: User) -> list[CalendarSyncUpdate]:
        """
        Syncs every selected calendar from its stored token. Provider failures are reported
        per calendar in ``error``; ReauthRequiredError is raised.
        """
        return self._sync_selected_calendars(user)

    def backfill(
        self, user: User, time_min: datetime.datetime, time_max: datetime.datetime
    ) -> list[CalendarSyncUpdate]:
        """
        Full listing of every selected calendar over an explicit window, discarding the
        stored tokens.
        """
        return self._sync_selected_calendars(
            user, time_min=time_min, time_max=time_max, force_full=True
        )
