import datetime
from collections.abc import Iterable
from typing import TYPE_CHECKING

from django.db.models import Q
from django.db.models.query import QuerySet
from django.utils import timezone


if TYPE_CHECKING:
    from users.models import User


class CalendarQuerySet(QuerySet):
    """
    Custom QuerySet for the local Calendar model.
    """

    def owned_by(self, user: "User"):
        return self.filter(owner=user)


class CalendarEventQuerySet(QuerySet):
    """Custom QuerySet for local CalendarEvent records."""

    def owned_by(self, user: "User"):
        return self.filter(calendar__owner=user)

    def in_calendars(self, calendar_ids: Iterable[int]):
        return self.filter(calendar_id__in=list(calendar_ids))

    def overlapping(self, start: datetime.datetime, end: datetime.datetime):
        """
        Returns events intersecting the half-open window [start, end).
        """
        return self.filter(start_time__lt=end, end_time__gt=start)

    def without_external_ref(self):
        return self.filter(Q(external_event_id="") | Q(external_calendar_id=""))

    def pending_mirroring_for(self, user: "User", now: datetime.datetime | None = None):
        """
        Future events of mirroring calendars that were never propagated to the provider.
        """
        now = now or timezone.now()
        return (
            self.owned_by(user)
            .filter(calendar__mirror_to_provider=True, start_time__gte=now)
            .without_external_ref()
            .order_by("start_time")
        )


class CalendarSyncStateQuerySet(QuerySet):
    def with_active_channel(self):
        return self.exclude(channel_id__isnull=True).exclude(channel_id="")
