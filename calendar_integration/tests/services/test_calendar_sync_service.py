import datetime
from unittest.mock import Mock, call

from django.utils import timezone

import pytest

from calendar_integration.constants import ProviderEventStatus
from calendar_integration.exceptions import (
    AccountNotLinkedError,
    CursorInvalidError,
    TransientProviderError,
)
from calendar_integration.factories import CalendarIntegrationFactory
from calendar_integration.models import CalendarSyncState
from calendar_integration.services.calendar_sync_service import CalendarSyncService
from calendar_integration.services.dataclasses import EventChangesPage, ProviderEventData


def make_item(event_id, calendar_id="primary", **kwargs):
    start = timezone.now()
    defaults = {
        "title": f"Event {event_id}",
        "start_time": start,
        "end_time": start + datetime.timedelta(hours=1),
    }
    defaults.update(kwargs)
    return ProviderEventData(id=event_id, calendar_id=calendar_id, **defaults)


@pytest.fixture
def adapter():
    return Mock()


@pytest.fixture
def link(user):
    return CalendarIntegrationFactory.create_google_account_link(
        user, selected_calendar_ids=["primary"], managed_calendar_id="managed-cal"
    )


@pytest.fixture
def google_credential_service(adapter, link):
    credential_service = Mock()
    credential_service.get_link.return_value = link
    credential_service.get_adapter_for_link.return_value = adapter
    return credential_service


@pytest.fixture
def service(google_credential_service):
    return CalendarSyncService(google_credential_service=google_credential_service)


@pytest.mark.django_db
class TestSyncCalendar:
    def test_first_sync_lists_default_window_and_stores_token(self, service, link, adapter):
        adapter.list_event_changes.return_value = EventChangesPage(
            events=[make_item("a")], next_sync_token="token-1"
        )

        update = service.sync_calendar(link, "primary")

        assert update.full_resync is True
        assert [item.id for item in update.items] == ["a"]
        kwargs = adapter.list_event_changes.call_args.kwargs
        assert kwargs["time_min"] < timezone.now() < kwargs["time_max"]
        state = CalendarSyncState.objects.get(link=link, calendar_id="primary")
        assert state.sync_token == "token-1"
        assert state.last_synced_at is not None
        assert state.last_full_sync_at is not None

    def test_incremental_sync_uses_stored_token(self, service, link, adapter):
        CalendarIntegrationFactory.create_sync_state(link, "primary", sync_token="token-1")
        adapter.list_event_changes.return_value = EventChangesPage(
            events=[make_item("b")], next_sync_token="token-2"
        )

        update = service.sync_calendar(link, "primary")

        assert update.full_resync is False
        adapter.list_event_changes.assert_called_once_with("primary", sync_token="token-1")
        assert CalendarSyncState.objects.get(link=link).sync_token == "token-2"

    def test_repeated_sync_without_changes_returns_no_items(self, service, link, adapter):
        CalendarIntegrationFactory.create_sync_state(link, "primary", sync_token="token-2")
        adapter.list_event_changes.return_value = EventChangesPage(
            events=[], next_sync_token="token-2"
        )

        first = service.sync_calendar(link, "primary")
        second = service.sync_calendar(link, "primary")

        assert first.items == []
        assert second.items == []
        assert CalendarSyncState.objects.get(link=link).sync_token == "token-2"

    def test_invalid_cursor_triggers_exactly_one_full_resync(self, service, link, adapter):
        CalendarIntegrationFactory.create_sync_state(link, "primary", sync_token="stale")
        adapter.list_event_changes.side_effect = [
            CursorInvalidError(),
            EventChangesPage(events=[make_item("c")], next_sync_token="fresh"),
        ]

        update = service.sync_calendar(link, "primary")

        assert update.full_resync is True
        assert [item.id for item in update.items] == ["c"]
        assert adapter.list_event_changes.call_count == 2
        first_call, second_call = adapter.list_event_changes.call_args_list
        assert first_call == call("primary", sync_token="stale")
        assert "sync_token" not in second_call.kwargs
        assert CalendarSyncState.objects.get(link=link).sync_token == "fresh"

    def test_failed_resync_keeps_cleared_token(self, service, link, adapter):
        CalendarIntegrationFactory.create_sync_state(link, "primary", sync_token="stale")
        adapter.list_event_changes.side_effect = [CursorInvalidError(), TransientProviderError()]

        with pytest.raises(TransientProviderError):
            service.sync_calendar(link, "primary")

        assert CalendarSyncState.objects.get(link=link).sync_token == ""

    def test_failed_fetch_does_not_touch_token(self, service, link, adapter):
        CalendarIntegrationFactory.create_sync_state(link, "primary", sync_token="token-1")
        adapter.list_event_changes.side_effect = TransientProviderError()

        with pytest.raises(TransientProviderError):
            service.sync_calendar(link, "primary")

        assert CalendarSyncState.objects.get(link=link).sync_token == "token-1"

    def test_force_full_ignores_stored_token(self, service, link, adapter):
        CalendarIntegrationFactory.create_sync_state(link, "primary", sync_token="token-1")
        adapter.list_event_changes.return_value = EventChangesPage(
            events=[], next_sync_token="token-9"
        )
        time_min = timezone.now()
        time_max = time_min + datetime.timedelta(days=7)

        update = service.sync_calendar(
            link, "primary", time_min=time_min, time_max=time_max, force_full=True
        )

        assert update.full_resync is True
        adapter.list_event_changes.assert_called_once_with(
            "primary", time_min=time_min, time_max=time_max
        )


@pytest.mark.django_db
class TestReconcileManagedCalendar:
    @pytest.fixture
    def mirrored_event(self, user):
        calendar = CalendarIntegrationFactory.create_calendar(user)
        return CalendarIntegrationFactory.create_event(
            calendar,
            external_calendar_id="managed-cal",
            external_event_id="evt-1",
            external_etag='"1"',
        )

    def test_cancelled_item_turns_event_local_only(self, service, link, mirrored_event):
        touched = service.reconcile_managed_calendar(
            link,
            [make_item("evt-1", "managed-cal", status=ProviderEventStatus.CANCELLED)],
        )

        assert touched == 1
        mirrored_event.refresh_from_db()
        assert mirrored_event.external_ref is None

    def test_new_etag_is_stored(self, service, link, mirrored_event):
        touched = service.reconcile_managed_calendar(
            link, [make_item("evt-1", "managed-cal", etag='"5"')]
        )

        assert touched == 1
        mirrored_event.refresh_from_db()
        assert mirrored_event.external_etag == '"5"'

    def test_unchanged_and_unknown_items_are_ignored(self, service, link, mirrored_event):
        touched = service.reconcile_managed_calendar(
            link,
            [make_item("evt-1", "managed-cal", etag='"1"'), make_item("other", "managed-cal")],
        )

        assert touched == 0

    def test_managed_calendar_sync_reconciles(self, service, link, adapter, mirrored_event):
        adapter.list_event_changes.return_value = EventChangesPage(
            events=[make_item("evt-1", "managed-cal", status=ProviderEventStatus.CANCELLED)],
            next_sync_token="token-1",
        )

        service.sync_calendar(link, "managed-cal")

        mirrored_event.refresh_from_db()
        assert mirrored_event.external_ref is None


@pytest.mark.django_db
class TestSyncSelectedCalendars:
    def test_empty_selection_is_a_no_op(self, service, link, adapter):
        link.selected_calendar_ids = []
        link.save()

        assert service.incremental_sync(link.user) == []
        adapter.list_event_changes.assert_not_called()

    def test_errors_are_reported_per_calendar(self, service, link, adapter):
        link.selected_calendar_ids = ["primary", "work"]
        link.save()
        adapter.list_event_changes.side_effect = [
            TransientProviderError(),
            EventChangesPage(events=[make_item("w", "work")], next_sync_token="work-token"),
        ]

        updates = service.incremental_sync(link.user)

        assert [u.calendar_id for u in updates] == ["primary", "work"]
        assert updates[0].error
        assert updates[0].items == []
        assert updates[1].error == ""
        assert [item.id for item in updates[1].items] == ["w"]

    def test_backfill_forces_full_listing(self, service, link, adapter):
        CalendarIntegrationFactory.create_sync_state(link, "primary", sync_token="token-1")
        adapter.list_event_changes.return_value = EventChangesPage(
            events=[], next_sync_token="token-2"
        )
        time_min = timezone.now() - datetime.timedelta(days=90)
        time_max = timezone.now()

        updates = service.backfill(link.user, time_min, time_max)

        assert updates[0].full_resync is True
        adapter.list_event_changes.assert_called_once_with(
            "primary", time_min=time_min, time_max=time_max
        )

    def test_unlinked_user(self, service, google_credential_service, user):
        google_credential_service.get_link.side_effect = AccountNotLinkedError()

        with pytest.raises(AccountNotLinkedError):
            service.incremental_sync(user)
