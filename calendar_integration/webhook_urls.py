"""
URL patterns for webhook endpoints.
"""

from django.urls import path

from calendar_integration.webhook_views import GoogleCalendarWebhookView


urlpatterns = [
    path(
        "webhooks/google-calendar/",
        GoogleCalendarWebhookView.as_view(),
        name="google_calendar_webhook",
    ),
]
