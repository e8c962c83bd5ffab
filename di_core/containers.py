from dependency_injector import containers, providers
from vintasend.services.notification_service import NotificationService
from vintasend_django.services.notification_adapters.django_email import (
    DjangoEmailNotificationAdapter,
)
from vintasend_django.services.notification_backends.django_db_notification_backend import (
    DjangoDbNotificationBackend,
)
from vintasend_django.services.notification_template_renderers.django_templated_email_renderer import (
    DjangoTemplatedEmailRenderer,
)

from calendar_integration.services.calendar_event_service import CalendarEventService
from calendar_integration.services.calendar_sync_service import CalendarSyncService
from calendar_integration.services.google_credential_service import GoogleCredentialService
from calendar_integration.services.slot_finder_service import SlotFinderService
from calendar_integration.services.unified_calendar_service import UnifiedCalendarService
from calendar_integration.services.watch_channel_service import WatchChannelService
from calendar_integration.services.write_through_service import CalendarWriteThroughService
from notifications.services import UserNotificationService


class AppContainer(containers.DeclarativeContainer):
    config = providers.Configuration()

    notification_service = providers.Singleton(
        NotificationService[
            DjangoEmailNotificationAdapter[
                DjangoDbNotificationBackend, DjangoTemplatedEmailRenderer
            ],
            DjangoDbNotificationBackend,
        ],
        notification_adapters=[
            DjangoEmailNotificationAdapter(
                DjangoTemplatedEmailRenderer(),
                DjangoDbNotificationBackend(),
            ),
        ],
        notification_backend=DjangoDbNotificationBackend(),
    )

    user_notification_service = providers.Factory(
        UserNotificationService,
        notification_service=notification_service,
    )

    google_credential_service = providers.Factory(
        GoogleCredentialService,
        user_notification_service=user_notification_service,
    )

    write_through_service = providers.Factory(
        CalendarWriteThroughService,
        google_credential_service=google_credential_service,
    )

    calendar_event_service = providers.Factory(
        CalendarEventService,
        write_through_service=write_through_service,
    )

    calendar_sync_service = providers.Factory(
        CalendarSyncService,
        google_credential_service=google_credential_service,
    )

    watch_channel_service = providers.Factory(
        WatchChannelService,
        google_credential_service=google_credential_service,
    )

    unified_calendar_service = providers.Factory(
        UnifiedCalendarService,
        google_credential_service=google_credential_service,
    )

    slot_finder_service = providers.Factory(
        SlotFinderService,
        google_credential_service=google_credential_service,
    )


container: AppContainer | None = None  # set during app startup
