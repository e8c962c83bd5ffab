import datetime
from collections.abc import Iterable
from typing import TYPE_CHECKING

from django.db.models import Manager

from calendar_integration.querysets import (
    CalendarEventQuerySet,
    CalendarQuerySet,
    CalendarSyncStateQuerySet,
)


if TYPE_CHECKING:
    from users.models import User


class CalendarManager(Manager):
    """
    Custom manager for Calendar model to handle specific queries.
    """

    def get_queryset(self) -> CalendarQuerySet:
        return CalendarQuerySet(self.model, using=self._db)

    def owned_by(self, user: "User"):
        return self.get_queryset().owned_by(user)


class CalendarEventManager(Manager):
    """Custom manager for CalendarEvent model to handle specific queries."""

    def get_queryset(self) -> CalendarEventQuerySet:
        return CalendarEventQuerySet(self.model, using=self._db)

    def owned_by(self, user: "User"):
        return self.get_queryset().owned_by(user)

    def find_by_time_range(
        self,
        calendar_ids: Iterable[int],
        start: datetime.datetime,
        end: datetime.datetime,
    ):
        """
        Local events of the given calendars overlapping [start, end), ordered by start time.
        :param calendar_ids: IDs of the local calendars to look into.
        :param start: Start of the window.
        :param end: End of the window (exclusive).
        :return: QuerySet of CalendarEvent.
        """
        return (
            self.get_queryset()
            .in_calendars(calendar_ids)
            .overlapping(start, end)
            .select_related("calendar")
            .order_by("start_time", "id")
        )

    def pending_mirroring_for(self, user: "User", now: datetime.datetime | None = None):
        return self.get_queryset().pending_mirroring_for(user, now=now)


class CalendarSyncStateManager(Manager):
    """Custom manager for CalendarSyncState model to handle specific queries."""

    def get_queryset(self) -> CalendarSyncStateQuerySet:
        return CalendarSyncStateQuerySet(self.model, using=self._db)

    def with_active_channel(self):
        return self.get_queryset().with_active_channel()

    def get_by_channel_id(self, channel_id: str):
        """
        Returns the sync state owning the given watch channel, or None for unknown channels.
        """
        if not channel_id:
            return None
        return self.get_queryset().select_related("link").filter(channel_id=channel_id).first()
