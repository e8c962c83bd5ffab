from celery.schedules import crontab  # type: ignore


CELERYBEAT_SCHEDULE = {
    # Internal tasks
    "clearsessions": {
        "schedule": crontab(hour=3, minute=0),
        "task": "users.tasks.clearsessions",
    },
    "deliver_due_notifications": {
        "schedule": crontab(minute="*/5"),
        "task": "notifications.tasks.periodic_deliver_due_notifications_task",
    },
}
