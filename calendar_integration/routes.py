from common.types import RouteDict

from .views import (
    CalendarEventViewSet,
    CalendarViewSet,
    GoogleCalendarViewSet,
    UnifiedCalendarViewSet,
)


routes: list[RouteDict] = [
    {
        "regex": r"events",
        "viewset": CalendarEventViewSet,
        "basename": "CalendarEvents",
    },
    {
        "regex": r"calendars",
        "viewset": CalendarViewSet,
        "basename": "Calendars",
    },
    {
        "regex": r"google",
        "viewset": GoogleCalendarViewSet,
        "basename": "GoogleCalendar",
    },
    {
        "regex": r"unified-calendar",
        "viewset": UnifiedCalendarViewSet,
        "basename": "UnifiedCalendar",
    },
]
