from django.contrib import admin

from notifications.models import Notification


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ("id", "user", "kind", "status", "attempt_count", "next_retry_at", "created")
    list_filter = ("kind", "status")
    search_fields = ("user__email", "title")
    readonly_fields = ("attempt_count", "last_error", "delivered_at", "created", "modified")
    raw_id_fields = ("user",)
