from unittest.mock import Mock

import pytest

from calendar_integration.factories import CalendarIntegrationFactory
from calendar_integration.services.dataclasses import CalendarSyncUpdate, MirroringResult
from calendar_integration.tasks import (
    incremental_sync_calendar_task,
    mirror_existing_events_task,
    revoke_google_token_task,
)


@pytest.mark.django_db
class TestIncrementalSyncCalendarTask:
    def test_syncs_calendar_of_link(self, user):
        link = CalendarIntegrationFactory.create_google_account_link(user)
        calendar_sync_service = Mock()
        calendar_sync_service.sync_calendar.return_value = CalendarSyncUpdate(
            calendar_id="primary", items=[Mock(), Mock()]
        )

        result = incremental_sync_calendar_task(
            link_id=link.pk, calendar_id="primary", calendar_sync_service=calendar_sync_service
        )

        assert result == 2
        calendar_sync_service.sync_calendar.assert_called_once_with(link, "primary")

    def test_unknown_link(self):
        calendar_sync_service = Mock()

        result = incremental_sync_calendar_task(
            link_id=999999, calendar_id="primary", calendar_sync_service=calendar_sync_service
        )

        assert result is None
        calendar_sync_service.sync_calendar.assert_not_called()

    def test_unestablished_link(self, user):
        link = CalendarIntegrationFactory.create_google_account_link(user, refresh_token="")
        calendar_sync_service = Mock()

        result = incremental_sync_calendar_task(
            link_id=link.pk, calendar_id="primary", calendar_sync_service=calendar_sync_service
        )

        assert result is None
        calendar_sync_service.sync_calendar.assert_not_called()


@pytest.mark.django_db
class TestMirrorExistingEventsTask:
    def test_mirrors_events(self, user):
        write_through_service = Mock()
        write_through_service.mirror_existing_events.return_value = MirroringResult(
            synced=3, failed=1
        )

        result = mirror_existing_events_task(
            user_id=user.pk, write_through_service=write_through_service
        )

        assert result == {"synced": 3, "failed": 1}
        write_through_service.mirror_existing_events.assert_called_once_with(user)

    def test_unknown_user(self):
        write_through_service = Mock()

        assert mirror_existing_events_task(
            user_id=999999, write_through_service=write_through_service
        ) is None
        write_through_service.mirror_existing_events.assert_not_called()


class TestRevokeGoogleTokenTask:
    def test_revokes_token(self):
        google_credential_service = Mock()
        google_credential_service.revoke_token.return_value = True

        assert revoke_google_token_task(
            token="refresh-token", google_credential_service=google_credential_service
        ) is True
        google_credential_service.revoke_token.assert_called_once_with("refresh-token")
