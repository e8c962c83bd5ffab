"""Django admin interface for Google Calendar links, sync states and local calendars."""

from django.contrib import admin
from django.utils import timezone
from django.utils.html import format_html

from calendar_integration.models import (
    Calendar,
    CalendarEvent,
    CalendarSyncState,
    GoogleAccountLink,
)


class CalendarSyncStateInline(admin.TabularInline):
    model = CalendarSyncState
    fields = ("calendar_id", "last_synced_at", "last_full_sync_at", "channel_id", "channel_expires_at")
    readonly_fields = fields
    extra = 0
    can_delete = False


@admin.register(GoogleAccountLink)
class GoogleAccountLinkAdmin(admin.ModelAdmin):
    """Tokens are never displayed nor editable."""

    list_display = ("id", "user", "token_state", "expiry", "managed_calendar_id", "created")
    list_filter = ("token_state",)
    search_fields = ("user__email", "managed_calendar_id")
    exclude = ("access_token", "refresh_token")
    readonly_fields = (
        "token_state",
        "expiry",
        "scope",
        "last_refreshed_at",
        "created",
        "modified",
    )
    raw_id_fields = ("user",)
    inlines = (CalendarSyncStateInline,)


@admin.register(CalendarSyncState)
class CalendarSyncStateAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "link",
        "calendar_id",
        "last_synced_at",
        "has_sync_token",
        "channel_status",
    )
    search_fields = ("calendar_id", "channel_id", "link__user__email")
    readonly_fields = ("sync_token", "channel_id", "resource_id", "channel_expires_at")
    raw_id_fields = ("link",)

    @admin.display(boolean=True, description="Sync token")
    def has_sync_token(self, obj: CalendarSyncState) -> bool:
        return bool(obj.sync_token)

    @admin.display(description="Channel")
    def channel_status(self, obj: CalendarSyncState) -> str:
        if not obj.has_active_channel:
            return "-"
        if obj.channel_expires_at and obj.channel_expires_at <= timezone.now():
            return format_html('<span style="color: red;">Expired</span>')
        return format_html('<span style="color: green;">Active</span>')


@admin.register(Calendar)
class CalendarAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "owner", "mirror_to_provider", "is_default", "created")
    list_filter = ("mirror_to_provider", "is_default")
    search_fields = ("name", "owner__email")
    raw_id_fields = ("owner",)


@admin.register(CalendarEvent)
class CalendarEventAdmin(admin.ModelAdmin):
    list_display = ("id", "title", "calendar", "start_time", "end_time", "is_mirrored")
    list_filter = ("calendar__mirror_to_provider",)
    search_fields = ("title", "external_event_id")
    readonly_fields = ("external_calendar_id", "external_event_id", "external_etag")
    raw_id_fields = ("calendar",)
    date_hierarchy = "start_time"

    @admin.display(boolean=True, description="Mirrored")
    def is_mirrored(self, obj: CalendarEvent) -> bool:
        return obj.is_mirrored
