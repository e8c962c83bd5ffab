import datetime
from unittest.mock import Mock

import pytest

from calendar_integration.exceptions import (
    CalendarServiceNotInjectedError,
    TransientProviderError,
)
from calendar_integration.factories import CalendarIntegrationFactory
from calendar_integration.services.dataclasses import BusyInterval, TimeSlot
from calendar_integration.services.slot_finder_service import SlotFinderService


MORNING = datetime.datetime(2025, 6, 20, 9, 0, tzinfo=datetime.UTC)


@pytest.fixture
def adapter():
    adapter = Mock()
    adapter.query_free_busy.return_value = {}
    return adapter


@pytest.fixture
def link(user):
    return CalendarIntegrationFactory.create_google_account_link(user)


@pytest.fixture
def google_credential_service(adapter, link):
    credential_service = Mock()
    credential_service.get_link.return_value = link
    credential_service.get_adapter_for_link.return_value = adapter
    return credential_service


@pytest.fixture
def service(google_credential_service):
    return SlotFinderService(google_credential_service=google_credential_service)


@pytest.mark.django_db
class TestResolveCalendarIds:
    def test_explicit_ids_win(self, link):
        link.selected_calendar_ids = ["work"]

        assert SlotFinderService.resolve_calendar_ids(link, ["a", "", "b"]) == ["a", "b"]

    def test_selection_is_the_fallback(self, link):
        link.selected_calendar_ids = ["work"]

        assert SlotFinderService.resolve_calendar_ids(link, []) == ["work"]

    def test_primary_when_nothing_selected(self, link):
        assert SlotFinderService.resolve_calendar_ids(link, None) == ["primary"]


@pytest.mark.django_db
class TestFindSlots:
    def test_slots_skip_busy_intervals_of_every_calendar(self, service, adapter, user):
        adapter.query_free_busy.return_value = {
            "primary": [
                BusyInterval(
                    start=MORNING + datetime.timedelta(hours=1),
                    end=MORNING + datetime.timedelta(hours=1, minutes=30),
                    calendar_id="primary",
                )
            ],
            "work": [
                BusyInterval(
                    start=MORNING,
                    end=MORNING + datetime.timedelta(minutes=15),
                    calendar_id="work",
                )
            ],
        }

        slots = service.find_slots(
            user, MORNING, MORNING + datetime.timedelta(hours=2), 30, ["primary", "work"]
        )

        assert slots == [
            TimeSlot(
                start=MORNING + datetime.timedelta(minutes=30),
                end=MORNING + datetime.timedelta(hours=1),
            ),
            TimeSlot(
                start=MORNING + datetime.timedelta(hours=1, minutes=30),
                end=MORNING + datetime.timedelta(hours=2),
            ),
        ]
        adapter.query_free_busy.assert_called_once_with(
            ["primary", "work"], MORNING, MORNING + datetime.timedelta(hours=2)
        )

    def test_provider_errors_propagate(self, service, adapter, user):
        adapter.query_free_busy.side_effect = TransientProviderError()

        with pytest.raises(TransientProviderError):
            service.find_slots(user, MORNING, MORNING + datetime.timedelta(hours=2), 30)

    def test_missing_credential_service(self, user):
        with pytest.raises(CalendarServiceNotInjectedError):
            SlotFinderService(google_credential_service=None).get_free_busy(
                user, MORNING, MORNING + datetime.timedelta(hours=1)
            )
