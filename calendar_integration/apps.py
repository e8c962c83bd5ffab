from django.apps import AppConfig


class CalendarIntegrationConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "calendar_integration"
    verbose_name = "Calendar Integration"
