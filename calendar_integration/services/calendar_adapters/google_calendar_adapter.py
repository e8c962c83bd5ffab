import datetime
import logging
from collections.abc import Iterable, Mapping
from functools import lru_cache
from typing import Any, TypedDict

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

import httplib2
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from pyrate_limiter import Duration, InMemoryBucket, Limiter, Rate, RedisBucket

from calendar_integration.constants import (
    DEFAULT_CALENDAR_COLOR,
    GOOGLE_RATE_LIMIT_REASONS,
    ProviderEventStatus,
)
from calendar_integration.exceptions import (
    CursorInvalidError,
    ProviderRequestError,
    TransientProviderError,
)
from calendar_integration.services.dataclasses import (
    BusyInterval,
    EventChangesPage,
    ExternalEventRef,
    ProviderCalendarData,
    ProviderEventData,
    ProviderEventInputData,
    WatchChannelData,
    WebhookNotificationData,
)
from common.redis import get_redis_connection


logger = logging.getLogger(__name__)


def _build_limiter(rate_per_minute: int, bucket_key: str, max_delay: int) -> Limiter:
    rates = [Rate(rate_per_minute, Duration.MINUTE)]
    redis_connection = get_redis_connection()
    if redis_connection is not None:
        bucket = RedisBucket.init(rates, redis_connection, bucket_key)
    else:
        bucket = InMemoryBucket(rates)
    return Limiter(bucket, raise_when_fail=False, max_delay=max_delay)


@lru_cache(maxsize=1)
def get_read_limiter() -> Limiter:
    # Allow a maximum delay of 1 second for read operations
    return _build_limiter(
        settings.GOOGLE_CALENDAR_READ_RATE_PER_MINUTE, "google_calendar_read_limiter", 1000
    )


@lru_cache(maxsize=1)
def get_write_limiter() -> Limiter:
    # Allow a maximum delay of 2 seconds for write operations
    return _build_limiter(
        settings.GOOGLE_CALENDAR_WRITE_RATE_PER_MINUTE, "google_calendar_write_limiter", 2000
    )


def parse_google_datetime(value: Mapping[str, str] | None) -> tuple[datetime.datetime | None, bool]:
    """
    Parses a Google ``start``/``end`` object into an aware UTC datetime.
    Returns the datetime and whether it was an all-day ``date`` value.
    """
    if not value:
        return None, False
    if value.get("dateTime"):
        parsed = datetime.datetime.fromisoformat(value["dateTime"].replace("Z", "+00:00"))
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=datetime.UTC)
        return parsed.astimezone(datetime.UTC), False
    if value.get("date"):
        day = datetime.date.fromisoformat(value["date"])
        return datetime.datetime.combine(day, datetime.time.min, tzinfo=datetime.UTC), True
    return None, False


def format_google_datetime(value: datetime.datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=datetime.UTC)
    return value.astimezone(datetime.UTC).isoformat().replace("+00:00", "Z")


class GoogleCredentialTypedDict(TypedDict):
    token: str
    account_id: str


class GoogleCalendarAdapter:
    """
    Thin wrapper over the Google Calendar v3 API.

    Receives an already fresh access token: refreshing is the job of
    ``GoogleCredentialService``. Every call carries the configured transport timeout and
    every failure is translated into the ``ProviderError`` hierarchy.
    """

    provider = "google"

    def __init__(self, credentials_dict: GoogleCredentialTypedDict):
        self.account_id = credentials_dict["account_id"]
        GOOGLE_CLIENT_ID = getattr(settings, "GOOGLE_CLIENT_ID", None)  # noqa: N806
        GOOGLE_CLIENT_SECRET = getattr(settings, "GOOGLE_CLIENT_SECRET", None)  # noqa: N806
        if not GOOGLE_CLIENT_ID or not GOOGLE_CLIENT_SECRET:
            raise ImproperlyConfigured(
                "Google Calendar integration requires GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET settings."
            )

        credentials = Credentials(
            token=credentials_dict["token"],
            client_id=GOOGLE_CLIENT_ID,
            client_secret=GOOGLE_CLIENT_SECRET,
        )
        http = AuthorizedHttp(
            credentials, http=httplib2.Http(timeout=settings.GOOGLE_API_TIMEOUT_SECONDS)
        )
        self.client = build("calendar", "v3", http=http, cache_discovery=False)

    def _acquire_read(self):
        get_read_limiter().try_acquire(f"google_calendar_read_{self.account_id}")

    def _acquire_write(self):
        get_write_limiter().try_acquire(f"google_calendar_write_{self.account_id}")

    @staticmethod
    def _error_reason(error: HttpError) -> str:
        details = getattr(error, "error_details", None) or []
        for detail in details:
            if isinstance(detail, dict) and detail.get("reason"):
                return detail["reason"]
        return getattr(error, "reason", "") or ""

    def _execute(self, request, cursor_request: bool = False) -> dict[str, Any]:
        try:
            return request.execute()
        except HttpError as e:
            status = e.resp.status if e.resp is not None else None
            if status == 410 and cursor_request:
                raise CursorInvalidError() from e
            if status == 429 or (status is not None and status >= 500):
                raise TransientProviderError() from e
            if status == 403 and self._error_reason(e) in GOOGLE_RATE_LIMIT_REASONS:
                raise TransientProviderError() from e
            raise ProviderRequestError(status=status) from e
        except (TimeoutError, OSError, httplib2.HttpLib2Error) as e:
            raise TransientProviderError(f"Google Calendar request failed: {e!s}") from e

    def _convert_event(self, event: dict[str, Any], calendar_id: str) -> ProviderEventData:
        start_time, is_all_day = parse_google_datetime(event.get("start"))
        end_time, _ = parse_google_datetime(event.get("end"))
        return ProviderEventData(
            id=event["id"],
            calendar_id=calendar_id,
            title=event.get("summary") or "No Title",
            description=event.get("description", ""),
            location=event.get("location", ""),
            start_time=start_time,
            end_time=end_time,
            is_all_day=is_all_day,
            status=event.get("status", ProviderEventStatus.CONFIRMED),
            etag=event.get("etag", ""),
            html_link=event.get("htmlLink", ""),
            updated=event.get("updated", ""),
            original_payload=event,
        )

    @staticmethod
    def _build_event_body(event_data: ProviderEventInputData) -> dict[str, Any]:
        return {
            "summary": event_data.title,
            "description": event_data.description,
            "location": event_data.location,
            "start": {"dateTime": format_google_datetime(event_data.start_time), "timeZone": "UTC"},
            "end": {"dateTime": format_google_datetime(event_data.end_time), "timeZone": "UTC"},
        }

    def list_calendars(self) -> list[ProviderCalendarData]:
        calendars: list[ProviderCalendarData] = []
        page_token = None
        while True:
            self._acquire_read()
            kwargs: dict[str, Any] = {"maxResults": 250}
            if page_token:
                kwargs["pageToken"] = page_token
            result = self._execute(self.client.calendarList().list(**kwargs))
            calendars.extend(
                ProviderCalendarData(
                    id=c["id"],
                    name=c.get("summaryOverride") or c.get("summary", ""),
                    primary=bool(c.get("primary", False)),
                    color=c.get("backgroundColor") or DEFAULT_CALENDAR_COLOR,
                    access_role=c.get("accessRole", ""),
                )
                for c in result.get("items", [])
            )
            page_token = result.get("nextPageToken")
            if not page_token:
                return calendars

    def find_calendar_by_name(self, name: str) -> ProviderCalendarData | None:
        return next((c for c in self.list_calendars() if c.name == name), None)

    def create_calendar(self, name: str) -> ProviderCalendarData:
        """
        Creates a new secondary calendar owned by the linked account.
        """
        self._acquire_write()
        result = self._execute(
            self.client.calendars().insert(
                body={
                    "summary": name,
                    "description": "Events mirrored from your unified calendar.",
                    "timeZone": "UTC",
                }
            )
        )
        return ProviderCalendarData(id=result["id"], name=result.get("summary", name))

    def insert_event(self, calendar_id: str, event_data: ProviderEventInputData) -> ExternalEventRef:
        self._acquire_write()
        result = self._execute(
            self.client.events().insert(
                calendarId=calendar_id, body=self._build_event_body(event_data)
            )
        )
        return ExternalEventRef(
            calendar_id=calendar_id, event_id=result["id"], etag=result.get("etag", "")
        )

    def patch_event(
        self, ref: ExternalEventRef, event_data: ProviderEventInputData
    ) -> ExternalEventRef:
        self._acquire_write()
        result = self._execute(
            self.client.events().patch(
                calendarId=ref.calendar_id,
                eventId=ref.event_id,
                body=self._build_event_body(event_data),
            )
        )
        return ExternalEventRef(
            calendar_id=ref.calendar_id,
            event_id=result.get("id", ref.event_id),
            etag=result.get("etag", ""),
        )

    def delete_event(self, ref: ExternalEventRef) -> bool:
        """
        Deletes the provider copy of an event. Returns False when it was already gone.
        """
        self._acquire_write()
        try:
            self._execute(
                self.client.events().delete(calendarId=ref.calendar_id, eventId=ref.event_id)
            )
        except ProviderRequestError as e:
            if e.status in (404, 410):
                return False
            raise
        return True

    def list_events(
        self,
        calendar_id: str,
        time_min: datetime.datetime,
        time_max: datetime.datetime,
        max_results_per_page: int = 250,
    ) -> list[ProviderEventData]:
        """
        Live read of the expanded, non-cancelled events of one calendar inside the window.
        """
        events: list[ProviderEventData] = []
        page_token = None
        while True:
            kwargs: dict[str, Any] = {
                "calendarId": calendar_id,
                "timeMin": format_google_datetime(time_min),
                "timeMax": format_google_datetime(time_max),
                "singleEvents": True,
                "orderBy": "startTime",
                "maxResults": max_results_per_page,
            }
            if page_token:
                kwargs["pageToken"] = page_token
            self._acquire_read()
            result = self._execute(self.client.events().list(**kwargs))
            events.extend(
                self._convert_event(event, calendar_id)
                for event in result.get("items", [])
                if event.get("status") != ProviderEventStatus.CANCELLED
            )
            page_token = result.get("nextPageToken")
            if not page_token:
                return events

    def list_event_changes(
        self,
        calendar_id: str,
        sync_token: str | None = None,
        time_min: datetime.datetime | None = None,
        time_max: datetime.datetime | None = None,
        max_results_per_page: int = 250,
    ) -> EventChangesPage:
        """
        Lists the changes of one calendar since ``sync_token``, or a full listing of the
        window when no token is given. Cancelled events are included so the caller can
        reconcile deletions. All pages are fetched before returning, since the provider
        only hands out the next sync token on the last one.

        Raises CursorInvalidError when the provider no longer accepts ``sync_token``.
        """
        base_kwargs: dict[str, Any] = {
            "calendarId": calendar_id,
            "singleEvents": True,
            "showDeleted": True,
            "maxResults": max_results_per_page,
        }
        if sync_token:
            base_kwargs["syncToken"] = sync_token
        else:
            if time_min is not None:
                base_kwargs["timeMin"] = format_google_datetime(time_min)
            if time_max is not None:
                base_kwargs["timeMax"] = format_google_datetime(time_max)

        events: list[ProviderEventData] = []
        page_token = None
        while True:
            kwargs = base_kwargs.copy()
            if page_token:
                kwargs["pageToken"] = page_token
            self._acquire_read()
            result = self._execute(
                self.client.events().list(**kwargs), cursor_request=bool(sync_token)
            )
            events.extend(self._convert_event(event, calendar_id) for event in result.get("items", []))
            page_token = result.get("nextPageToken")
            if not page_token:
                return EventChangesPage(events=events, next_sync_token=result.get("nextSyncToken"))

    def query_free_busy(
        self,
        calendar_ids: Iterable[str],
        time_min: datetime.datetime,
        time_max: datetime.datetime,
    ) -> dict[str, list[BusyInterval]]:
        ids = list(calendar_ids)
        self._acquire_read()
        result = self._execute(
            self.client.freebusy().query(
                body={
                    "timeMin": format_google_datetime(time_min),
                    "timeMax": format_google_datetime(time_max),
                    "items": [{"id": calendar_id} for calendar_id in ids],
                }
            )
        )
        busy_by_calendar: dict[str, list[BusyInterval]] = {}
        for calendar_id, calendar_data in result.get("calendars", {}).items():
            if calendar_data.get("errors"):
                logger.warning(
                    "Free/busy query returned errors for calendar %s",
                    calendar_id,
                    extra={"account_id": self.account_id, "errors": calendar_data["errors"]},
                )
            intervals = []
            for busy in calendar_data.get("busy", []):
                start, _ = parse_google_datetime({"dateTime": busy["start"]})
                end, _ = parse_google_datetime({"dateTime": busy["end"]})
                if start is not None and end is not None:
                    intervals.append(BusyInterval(start=start, end=end, calendar_id=calendar_id))
            busy_by_calendar[calendar_id] = intervals
        return busy_by_calendar

    def watch_calendar(
        self,
        calendar_id: str,
        channel_id: str,
        address: str,
        token: str = "",
        ttl_seconds: int | None = None,
    ) -> WatchChannelData:
        """
        Registers a push notification channel for the events of a calendar.
        """
        body: dict[str, Any] = {
            "id": channel_id,
            "type": "web_hook",
            "address": address,
        }
        if token:
            body["token"] = token
        if ttl_seconds:
            body["params"] = {"ttl": str(ttl_seconds)}

        self._acquire_write()
        response = self._execute(self.client.events().watch(calendarId=calendar_id, body=body))

        expiration = response.get("expiration")
        expires_at = (
            datetime.datetime.fromtimestamp(int(expiration) / 1000, tz=datetime.UTC)
            if expiration
            else None
        )
        return WatchChannelData(
            channel_id=response.get("id", channel_id),
            resource_id=response.get("resourceId", ""),
            expires_at=expires_at,
        )

    def stop_channel(self, channel_id: str, resource_id: str) -> bool:
        """
        Stops a push notification channel. Returns False when Google no longer knows it,
        e.g. once it expired.
        """
        self._acquire_write()
        try:
            self._execute(
                self.client.channels().stop(body={"id": channel_id, "resourceId": resource_id})
            )
        except ProviderRequestError as e:
            if e.status in (404, 410):
                return False
            raise
        return True

    @staticmethod
    def parse_webhook_headers(headers: Mapping[str, str]) -> WebhookNotificationData:
        return WebhookNotificationData(
            channel_id=headers.get("X-Goog-Channel-ID", ""),
            resource_id=headers.get("X-Goog-Resource-ID", ""),
            resource_state=headers.get("X-Goog-Resource-State", ""),
            channel_token=headers.get("X-Goog-Channel-Token", ""),
            resource_uri=headers.get("X-Goog-Resource-URI", ""),
        )
