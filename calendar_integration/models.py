import datetime

from django.conf import settings
from django.db import models
from django.utils import timezone

from encrypted_fields.fields import EncryptedTextField  # type:ignore

from calendar_integration.constants import DEFAULT_CALENDAR_COLOR, TokenState
from calendar_integration.managers import (
    CalendarEventManager,
    CalendarManager,
    CalendarSyncStateManager,
)
from calendar_integration.services.dataclasses import ExternalEventRef
from common.models import BaseModel


class GoogleAccountLink(BaseModel):
    """
    Delegated access to one user's Google Calendar account.

    A link without a refresh token is considered unestablished. The list of provider
    calendars the user opted into for merging and free/busy lives in
    ``selected_calendar_ids``.
    """

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="google_account_link",
    )
    access_token = EncryptedTextField(blank=True)
    refresh_token = EncryptedTextField(blank=True)
    expiry = models.DateTimeField(null=True, blank=True)
    scope = models.JSONField(default=list, blank=True)
    managed_calendar_id = models.CharField(max_length=255, blank=True)
    selected_calendar_ids = models.JSONField(default=list, blank=True)
    token_state = models.CharField(
        max_length=20,
        choices=TokenState,
        default=TokenState.VALID,
    )
    last_refreshed_at = models.DateTimeField(null=True, blank=True)

    def __str__(self):
        return f"Google account link for {self.user}"

    @property
    def is_established(self) -> bool:
        return bool(self.refresh_token)

    def is_expired(self, now: datetime.datetime | None = None) -> bool:
        if self.expiry is None:
            return True
        return (now or timezone.now()) >= self.expiry


class CalendarSyncState(BaseModel):
    """
    Resumption cursor and watch channel of one provider calendar of a linked account.
    """

    link = models.ForeignKey(
        GoogleAccountLink,
        on_delete=models.CASCADE,
        related_name="sync_states",
    )
    calendar_id = models.CharField(max_length=255)
    sync_token = models.TextField(blank=True)
    last_synced_at = models.DateTimeField(null=True, blank=True)
    last_full_sync_at = models.DateTimeField(null=True, blank=True)

    channel_id = models.CharField(max_length=255, null=True, blank=True, unique=True)
    resource_id = models.CharField(max_length=255, blank=True)
    channel_expires_at = models.DateTimeField(null=True, blank=True)

    objects: CalendarSyncStateManager = CalendarSyncStateManager()

    class Meta:
        unique_together = (("link", "calendar_id"),)

    def __str__(self):
        return f"Sync state of {self.calendar_id} for {self.link.user}"

    @property
    def has_active_channel(self) -> bool:
        return bool(self.channel_id)

    def is_channel_expired(self, now: datetime.datetime | None = None) -> bool:
        if self.channel_expires_at is None:
            return False
        return (now or timezone.now()) >= self.channel_expires_at

    def clear_channel(self):
        self.channel_id = None
        self.resource_id = ""
        self.channel_expires_at = None


class Calendar(BaseModel):
    """
    A local calendar owned by a user.
    """

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="calendars",
    )
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    color = models.CharField(max_length=7, default=DEFAULT_CALENDAR_COLOR)
    mirror_to_provider = models.BooleanField(
        default=True,
        help_text=(
            "If true, events of this calendar are propagated to the managed calendar "
            "on the user's linked Google account."
        ),
    )
    is_default = models.BooleanField(default=False)

    objects: CalendarManager = CalendarManager()

    def __str__(self):
        return self.name


class CalendarEvent(BaseModel):
    """
    Represents an event in a local calendar.

    When the event has been mirrored to the provider it carries the provider calendar id,
    event id and etag.
    """

    calendar = models.ForeignKey(
        Calendar,
        on_delete=models.CASCADE,
        related_name="events",
    )
    title = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    location = models.CharField(max_length=512, blank=True)
    start_time = models.DateTimeField(db_index=True)
    end_time = models.DateTimeField(db_index=True)

    external_calendar_id = models.CharField(max_length=255, blank=True)
    external_event_id = models.CharField(max_length=255, blank=True, db_index=True)
    external_etag = models.CharField(max_length=255, blank=True)

    objects: CalendarEventManager = CalendarEventManager()

    def __str__(self):
        return f"{self.title} ({self.start_time} - {self.end_time})"

    @property
    def external_ref(self) -> ExternalEventRef | None:
        if not self.external_event_id or not self.external_calendar_id:
            return None
        return ExternalEventRef(
            calendar_id=self.external_calendar_id,
            event_id=self.external_event_id,
            etag=self.external_etag,
        )

    @property
    def is_mirrored(self) -> bool:
        return self.external_ref is not None

    def set_external_ref(self, ref: ExternalEventRef | None):
        self.external_calendar_id = ref.calendar_id if ref else ""
        self.external_event_id = ref.event_id if ref else ""
        self.external_etag = ref.etag if ref else ""
