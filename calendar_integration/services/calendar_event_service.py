import datetime
from collections.abc import Iterable
from typing import TYPE_CHECKING, Annotated

from dependency_injector.wiring import Provide, inject

from calendar_integration.models import Calendar, CalendarEvent
from calendar_integration.services.dataclasses import CalendarEventInputData


if TYPE_CHECKING:
    from django.db.models import QuerySet

    from calendar_integration.services.write_through_service import CalendarWriteThroughService


class CalendarEventService:
    """
    Local event store. Every mutation is committed locally first and then handed to the
    write-through service, whose outcome never changes the result of the local operation.
    """

    @inject
    def __init__(
        self,
        write_through_service: Annotated[
            "CalendarWriteThroughService | None", Provide["write_through_service"]
        ] = None,
    ):
        self.write_through_service = write_through_service

    def find_by_time_range(
        self,
        calendar_ids: Iterable[int],
        start: datetime.datetime,
        end: datetime.datetime,
    ) -> "QuerySet[CalendarEvent]":
        return CalendarEvent.objects.find_by_time_range(calendar_ids, start, end)

    def create_event(self, calendar: Calendar, event_data: CalendarEventInputData) -> CalendarEvent:
        event = CalendarEvent.objects.create(
            calendar=calendar,
            title=event_data.title,
            description=event_data.description,
            location=event_data.location,
            start_time=event_data.start_time,
            end_time=event_data.end_time,
        )
        if self.write_through_service:
            self.write_through_service.propagate_create(event)
        return event

    def update_event(
        self,
        event: CalendarEvent,
        event_data: CalendarEventInputData,
        calendar: Calendar | None = None,
    ) -> CalendarEvent:
        if calendar is not None:
            event.calendar = calendar
        event.title = event_data.title
        event.description = event_data.description
        event.location = event_data.location
        event.start_time = event_data.start_time
        event.end_time = event_data.end_time
        event.save()
        if self.write_through_service:
            self.write_through_service.propagate_update(event)
        return event

    def delete_event(self, event: CalendarEvent) -> None:
        ref = event.external_ref
        owner = event.calendar.owner
        event_id = event.pk
        event.delete()
        if self.write_through_service:
            self.write_through_service.propagate_delete(ref, owner, event_id)
