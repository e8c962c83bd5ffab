from .calendar_sync_tasks import (
    incremental_sync_calendar_task,
    mirror_existing_events_task,
    revoke_google_token_task,
)


__all__ = [
    "incremental_sync_calendar_task",
    "mirror_existing_events_task",
    "revoke_google_token_task",
]
