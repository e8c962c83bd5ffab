import datetime
import logging
from typing import TYPE_CHECKING, Annotated

from django.utils import timezone

from dependency_injector.wiring import Provide, inject

from calendar_integration.constants import (
    DEFAULT_CALENDAR_COLOR,
    DEGRADED_PROVIDER_UNAVAILABLE,
    DEGRADED_REAUTH_REQUIRED,
    EventSource,
)
from calendar_integration.event_merge_utils import merge_events
from calendar_integration.exceptions import (
    AccountNotLinkedError,
    ProviderError,
    ReauthRequiredError,
)
from calendar_integration.models import Calendar, CalendarEvent
from calendar_integration.services.dataclasses import (
    CalendarBreakdown,
    CalendarDescriptor,
    CalendarSummary,
    MergedEvent,
    UnifiedView,
)
from users.models import User


if TYPE_CHECKING:
    from calendar_integration.services.google_credential_service import GoogleCredentialService


logger = logging.getLogger(__name__)

DEFAULT_SEARCH_WINDOW = datetime.timedelta(days=30)


class UnifiedCalendarService:
    """
    Read path combining the user's local events with a live read of the selected Google
    calendars. Provider trouble never fails the read: the view falls back to local events
    and reports ``include_external=False``.
    """

    @inject
    def __init__(
        self,
        google_credential_service: Annotated[
            "GoogleCredentialService | None", Provide["google_credential_service"]
        ] = None,
    ):
        self.google_credential_service = google_credential_service

    @staticmethod
    def _local_to_merged(event: CalendarEvent) -> MergedEvent:
        calendar: Calendar = event.calendar
        return MergedEvent(
            id=str(event.pk),
            source=EventSource.LOCAL,
            title=event.title,
            description=event.description,
            location=event.location,
            start_time=event.start_time,
            end_time=event.end_time,
            calendar=CalendarDescriptor(
                id=str(calendar.pk), name=calendar.name, color=calendar.color
            ),
            external_event_id=event.external_event_id,
        )

    def get_local_events(
        self, user: User, time_min: datetime.datetime, time_max: datetime.datetime
    ) -> list[MergedEvent]:
        calendar_ids = Calendar.objects.owned_by(user).values_list("id", flat=True)
        events = CalendarEvent.objects.find_by_time_range(calendar_ids, time_min, time_max)
        return [self._local_to_merged(event) for event in events]

    def get_external_events(
        self, user: User, time_min: datetime.datetime, time_max: datetime.datetime
    ) -> list[MergedEvent]:
        """
        Live listing of the selected provider calendars, ``primary`` when none is selected.
        Raises AccountNotLinkedError, ReauthRequiredError or ProviderError.
        """
        if not self.google_credential_service:
            raise AccountNotLinkedError()
        link = self.google_credential_service.get_link(user)
        adapter = self.google_credential_service.get_adapter_for_link(link)
        calendar_ids = list(link.selected_calendar_ids or []) or ["primary"]

        descriptors = {}
        for calendar in adapter.list_calendars():
            descriptor = CalendarDescriptor(
                id=calendar.id, name=calendar.name, color=calendar.color or DEFAULT_CALENDAR_COLOR
            )
            descriptors[calendar.id] = descriptor
            if calendar.primary:
                descriptors.setdefault("primary", descriptor)

        merged = []
        for calendar_id in calendar_ids:
            descriptor = descriptors.get(
                calendar_id,
                CalendarDescriptor(id=calendar_id, name="Google Calendar", color=DEFAULT_CALENDAR_COLOR),
            )
            for event in adapter.list_events(calendar_id, time_min, time_max):
                if event.start_time is None or event.end_time is None:
                    continue
                merged.append(
                    MergedEvent(
                        id=event.id,
                        source=EventSource.EXTERNAL,
                        title=event.title,
                        description=event.description,
                        location=event.location,
                        start_time=event.start_time,
                        end_time=event.end_time,
                        is_all_day=event.is_all_day,
                        calendar=descriptor,
                        external_event_id=event.id,
                        html_link=event.html_link,
                    )
                )
        return merged

    def get_unified_view(
        self,
        user: User,
        time_min: datetime.datetime,
        time_max: datetime.datetime,
        include_local: bool = True,
        include_external: bool = True,
    ) -> UnifiedView:
        local_events = self.get_local_events(user, time_min, time_max) if include_local else []

        external_events: list[MergedEvent] = []
        degraded_reason = ""
        if include_external:
            try:
                external_events = self.get_external_events(user, time_min, time_max)
            except AccountNotLinkedError:
                include_external = False
            except ReauthRequiredError:
                include_external = False
                degraded_reason = DEGRADED_REAUTH_REQUIRED
                logger.warning(
                    "Unified view served without Google events: re-authentication required",
                    extra={"user_id": user.pk},
                )
            except ProviderError as e:
                include_external = False
                degraded_reason = DEGRADED_PROVIDER_UNAVAILABLE
                logger.warning(
                    "Unified view served without Google events: %s",
                    e.__class__.__name__,
                    extra={"user_id": user.pk},
                )

        return UnifiedView(
            events=merge_events(local_events, external_events),
            time_min=time_min,
            time_max=time_max,
            include_local=include_local,
            include_external=include_external,
            degraded_reason=degraded_reason,
        )

    def get_summary(
        self, user: User, time_min: datetime.datetime, time_max: datetime.datetime
    ) -> CalendarSummary:
        view = self.get_unified_view(user, time_min, time_max)
        summary = CalendarSummary(
            time_min=time_min,
            time_max=time_max,
            include_external=view.include_external,
            degraded_reason=view.degraded_reason,
        )
        breakdown: dict[tuple[str, str], CalendarBreakdown] = {}
        for event in view.events:
            if event.source == EventSource.LOCAL:
                summary.local_count += 1
            else:
                summary.external_count += 1
            key = (event.source, event.calendar.id)
            if key not in breakdown:
                breakdown[key] = CalendarBreakdown(calendar=event.calendar, source=event.source)
            breakdown[key].event_count += 1
        summary.calendars = list(breakdown.values())
        return summary

    def search_events(
        self,
        user: User,
        query: str,
        time_min: datetime.datetime | None = None,
        time_max: datetime.datetime | None = None,
    ) -> UnifiedView:
        """
        Case-insensitive substring search over title, description and location of the
        unified view. Without a window the last 30 days are searched.
        """
        time_max = time_max or timezone.now()
        time_min = time_min or time_max - DEFAULT_SEARCH_WINDOW
        view = self.get_unified_view(user, time_min, time_max)

        needle = query.strip().lower()
        view.events = [
            event
            for event in view.events
            if needle in event.title.lower()
            or needle in (event.description or "").lower()
            or needle in (event.location or "").lower()
        ]
        return view
