import datetime
from dataclasses import dataclass
from dataclasses import field as dataclass_field
from typing import Literal

from calendar_integration.constants import (
    DEFAULT_CALENDAR_COLOR,
    DEGRADED_REAUTH_REQUIRED,
    ProviderEventStatus,
)


@dataclass(frozen=True)
class ExternalEventRef:
    calendar_id: str
    event_id: str
    etag: str = ""


@dataclass
class GoogleTokenSet:
    access_token: str
    refresh_token: str | None
    expiry: datetime.datetime
    scope: list[str]


@dataclass
class ProviderCalendarData:
    id: str  # noqa: A003
    name: str
    primary: bool = False
    color: str = DEFAULT_CALENDAR_COLOR
    access_role: str = ""


@dataclass
class ProviderEventInputData:
    title: str
    start_time: datetime.datetime
    end_time: datetime.datetime
    description: str = ""
    location: str = ""


@dataclass
class ProviderEventData:
    id: str  # noqa: A003
    calendar_id: str
    title: str
    start_time: datetime.datetime | None
    end_time: datetime.datetime | None
    description: str = ""
    location: str = ""
    is_all_day: bool = False
    status: str = ProviderEventStatus.CONFIRMED
    etag: str = ""
    html_link: str = ""
    updated: str = ""
    original_payload: dict = dataclass_field(default_factory=dict, repr=False)

    @property
    def is_cancelled(self) -> bool:
        return self.status == ProviderEventStatus.CANCELLED


@dataclass
class EventChangesPage:
    events: list[ProviderEventData]
    next_sync_token: str | None


@dataclass
class WatchChannelData:
    channel_id: str
    resource_id: str
    expires_at: datetime.datetime | None


@dataclass
class WebhookNotificationData:
    channel_id: str
    resource_id: str
    resource_state: str
    channel_token: str = ""
    resource_uri: str = ""


@dataclass
class BusyInterval:
    start: datetime.datetime
    end: datetime.datetime
    calendar_id: str = ""


@dataclass
class TimeSlot:
    start: datetime.datetime
    end: datetime.datetime


@dataclass
class CalendarDescriptor:
    id: str  # noqa: A003
    name: str
    color: str = DEFAULT_CALENDAR_COLOR


@dataclass
class MergedEvent:
    id: str  # noqa: A003
    source: Literal["local", "external"]
    title: str
    start_time: datetime.datetime
    end_time: datetime.datetime
    calendar: CalendarDescriptor
    description: str = ""
    location: str = ""
    is_all_day: bool = False
    external_event_id: str = ""
    html_link: str = ""

    @property
    def dedup_key(self) -> tuple[str, datetime.datetime, str]:
        return (self.title, self.start_time, self.calendar.id)


@dataclass
class UnifiedView:
    events: list[MergedEvent]
    time_min: datetime.datetime
    time_max: datetime.datetime
    include_local: bool
    include_external: bool
    degraded_reason: str = ""

    @property
    def total(self) -> int:
        return len(self.events)

    @property
    def requires_reauth(self) -> bool:
        return self.degraded_reason == DEGRADED_REAUTH_REQUIRED


@dataclass
class CalendarSyncUpdate:
    calendar_id: str
    items: list[ProviderEventData] = dataclass_field(default_factory=list)
    full_resync: bool = False
    error: str = ""


@dataclass
class MirroringResult:
    synced: int = 0
    failed: int = 0


@dataclass
class CalendarEventInputData:
    title: str
    start_time: datetime.datetime
    end_time: datetime.datetime
    description: str = ""
    location: str = ""


@dataclass
class CalendarBreakdown:
    calendar: CalendarDescriptor
    source: Literal["local", "external"]
    event_count: int = 0


@dataclass
class CalendarSummary:
    time_min: datetime.datetime
    time_max: datetime.datetime
    local_count: int = 0
    external_count: int = 0
    calendars: list[CalendarBreakdown] = dataclass_field(default_factory=list)
    include_external: bool = True
    degraded_reason: str = ""

    @property
    def total_events(self) -> int:
        return self.local_count + self.external_count

    @property
    def requires_reauth(self) -> bool:
        return self.degraded_reason == DEGRADED_REAUTH_REQUIRED
