import datetime
from collections.abc import Iterable
from typing import TYPE_CHECKING, Annotated

from dependency_injector.wiring import Provide, inject

from calendar_integration.exceptions import CalendarServiceNotInjectedError
from calendar_integration.models import GoogleAccountLink
from calendar_integration.services.dataclasses import BusyInterval, TimeSlot
from calendar_integration.slot_utils import find_free_slots
from users.models import User


if TYPE_CHECKING:
    from calendar_integration.services.google_credential_service import GoogleCredentialService


class SlotFinderService:
    """
    Computes meeting slots from the provider's free/busy answer. Unlike the unified view
    there is no degraded mode: provider errors reach the caller.
    """

    @inject
    def __init__(
        self,
        google_credential_service: Annotated[
            "GoogleCredentialService | None", Provide["google_credential_service"]
        ] = None,
    ):
        self.google_credential_service = google_credential_service

    def _get_credential_service(self) -> "GoogleCredentialService":
        if not self.google_credential_service:
            raise CalendarServiceNotInjectedError("Google credential service is not configured")
        return self.google_credential_service

    @staticmethod
    def resolve_calendar_ids(
        link: GoogleAccountLink, calendar_ids: Iterable[str] | None = None
    ) -> list[str]:
        explicit = [calendar_id for calendar_id in (calendar_ids or []) if calendar_id]
        if explicit:
            return explicit
        return list(link.selected_calendar_ids or []) or ["primary"]

    def get_free_busy(
        self,
        user: User,
        time_min: datetime.datetime,
        time_max: datetime.datetime,
        calendar_ids: Iterable[str] | None = None,
    ) -> dict[str, list[BusyInterval]]:
        credential_service = self._get_credential_service()
        link = credential_service.get_link(user)
        adapter = credential_service.get_adapter_for_link(link)
        return adapter.query_free_busy(
            self.resolve_calendar_ids(link, calendar_ids), time_min, time_max
        )

    def find_slots(
        self,
        user: User,
        time_min: datetime.datetime,
        time_max: datetime.datetime,
        duration_minutes: int,
        calendar_ids: Iterable[str] | None = None,
    ) -> list[TimeSlot]:
        busy_by_calendar = self.get_free_busy(user, time_min, time_max, calendar_ids)
        busy = [interval for intervals in busy_by_calendar.values() for interval in intervals]
        return find_free_slots(time_min, time_max, duration_minutes, busy)
