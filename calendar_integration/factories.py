import datetime

from django.utils import timezone

from model_bakery import baker

from .constants import TokenState
from .models import Calendar, CalendarEvent, CalendarSyncState, GoogleAccountLink


DEFAULT_GOOGLE_SCOPES = [
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/calendar.events",
]


class CalendarIntegrationFactory:
    @staticmethod
    def create_google_account_link(user, **kwargs) -> GoogleAccountLink:
        """
        Create an established link whose access token is valid for one more hour.
        """
        defaults = {
            "access_token": "access-token",
            "refresh_token": "refresh-token",
            "expiry": timezone.now() + datetime.timedelta(hours=1),
            "scope": list(DEFAULT_GOOGLE_SCOPES),
            "token_state": TokenState.VALID,
            "managed_calendar_id": "",
            "selected_calendar_ids": [],
        }
        defaults.update(kwargs)
        return baker.make(GoogleAccountLink, user=user, **defaults)

    @staticmethod
    def create_sync_state(link: GoogleAccountLink, calendar_id: str, **kwargs) -> CalendarSyncState:
        return baker.make(CalendarSyncState, link=link, calendar_id=calendar_id, **kwargs)

    @staticmethod
    def create_calendar(owner, **kwargs) -> Calendar:
        kwargs.setdefault("name", "Personal")
        kwargs.setdefault("mirror_to_provider", True)
        return baker.make(Calendar, owner=owner, **kwargs)

    @staticmethod
    def create_event(
        calendar: Calendar,
        start_time: datetime.datetime | None = None,
        duration: datetime.timedelta = datetime.timedelta(hours=1),
        **kwargs,
    ) -> CalendarEvent:
        start_time = start_time or timezone.now() + datetime.timedelta(days=1)
        kwargs.setdefault("title", "Event")
        kwargs.setdefault("description", "")
        kwargs.setdefault("location", "")
        kwargs.setdefault("external_calendar_id", "")
        kwargs.setdefault("external_event_id", "")
        kwargs.setdefault("external_etag", "")
        return baker.make(
            CalendarEvent,
            calendar=calendar,
            start_time=start_time,
            end_time=start_time + duration,
            **kwargs,
        )
