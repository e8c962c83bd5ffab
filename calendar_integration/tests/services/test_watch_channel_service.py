import datetime
from unittest.mock import Mock, patch

from django.utils import timezone

import pytest

from calendar_integration.exceptions import (
    TransientProviderError,
    WebhookIgnoredError,
    WebhookProcessingFailedError,
)
from calendar_integration.factories import CalendarIntegrationFactory
from calendar_integration.models import CalendarSyncState
from calendar_integration.services.dataclasses import WatchChannelData, WebhookNotificationData
from calendar_integration.services.watch_channel_service import WatchChannelService


@pytest.fixture
def adapter():
    adapter = Mock()
    adapter.watch_calendar.return_value = WatchChannelData(
        channel_id="channel-new",
        resource_id="resource-new",
        expires_at=datetime.datetime(2025, 6, 22, 10, 0, tzinfo=datetime.UTC),
    )
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
    return WatchChannelService(google_credential_service=google_credential_service)


def notification(**kwargs):
    defaults = {
        "channel_id": "channel-1",
        "resource_id": "resource-1",
        "resource_state": "exists",
    }
    defaults.update(kwargs)
    return WebhookNotificationData(**defaults)


@pytest.mark.django_db
class TestStartWatch:
    def test_start_watch_stores_channel(self, service, link, user, adapter, settings):
        channel = service.start_watch(user, "primary", channel_id="channel-new")

        assert channel.channel_id == "channel-new"
        kwargs = adapter.watch_calendar.call_args.kwargs
        assert kwargs["channel_id"] == "channel-new"
        assert kwargs["address"] == settings.GOOGLE_WEBHOOK_URL
        state = CalendarSyncState.objects.get(link=link, calendar_id="primary")
        assert state.channel_id == "channel-new"
        assert state.resource_id == "resource-new"
        assert state.channel_expires_at == datetime.datetime(2025, 6, 22, 10, 0, tzinfo=datetime.UTC)
        adapter.stop_channel.assert_not_called()

    def test_start_watch_generates_channel_id(self, service, user, adapter):
        service.start_watch(user, "primary")

        assert adapter.watch_calendar.call_args.kwargs["channel_id"]

    def test_start_watch_replaces_previous_channel(self, service, link, user, adapter):
        CalendarIntegrationFactory.create_sync_state(
            link, "primary", channel_id="channel-old", resource_id="resource-old"
        )

        service.start_watch(user, "primary", channel_id="channel-new")

        adapter.stop_channel.assert_called_once_with("channel-old", "resource-old")
        state = CalendarSyncState.objects.get(link=link, calendar_id="primary")
        assert state.channel_id == "channel-new"

    def test_failure_stopping_previous_channel_is_tolerated(self, service, link, user, adapter):
        CalendarIntegrationFactory.create_sync_state(
            link, "primary", channel_id="channel-old", resource_id="resource-old"
        )
        adapter.stop_channel.side_effect = TransientProviderError()

        channel = service.start_watch(user, "primary", channel_id="channel-new")

        assert channel.channel_id == "channel-new"

    def test_webhook_address_falls_back_to_site_url(self, settings):
        settings.GOOGLE_WEBHOOK_URL = ""
        settings.BASE_URL = "https://calendar.example.com"

        assert (
            WatchChannelService.get_webhook_address()
            == "https://calendar.example.com/webhooks/google-calendar/"
        )


@pytest.mark.django_db
class TestStopWatch:
    def test_stop_watch_clears_channel(self, service, link, user, adapter):
        CalendarIntegrationFactory.create_sync_state(
            link, "primary", channel_id="channel-1", resource_id="resource-1"
        )

        assert service.stop_watch(user, "primary") is True

        adapter.stop_channel.assert_called_once_with("channel-1", "resource-1")
        state = CalendarSyncState.objects.get(link=link, calendar_id="primary")
        assert state.channel_id is None
        assert state.resource_id == ""

    def test_stop_watch_channel_unknown_to_google(self, service, link, user, adapter):
        CalendarIntegrationFactory.create_sync_state(
            link, "primary", channel_id="channel-1", resource_id="resource-1"
        )
        adapter.stop_channel.return_value = False

        assert service.stop_watch(user, "primary") is True

        state = CalendarSyncState.objects.get(link=link, calendar_id="primary")
        assert state.channel_id is None
        assert state.resource_id == ""
        assert service.stop_watch(user, "primary") is False

    def test_stop_expired_watch_only_clears_locally(self, service, link, user, adapter):
        CalendarIntegrationFactory.create_sync_state(
            link,
            "primary",
            channel_id="channel-1",
            resource_id="resource-1",
            channel_expires_at=timezone.now() - datetime.timedelta(hours=1),
        )

        assert service.stop_watch(user, "primary") is True

        adapter.stop_channel.assert_not_called()
        state = CalendarSyncState.objects.get(link=link, calendar_id="primary")
        assert state.channel_id is None
        assert state.channel_expires_at is None

    def test_stop_watch_provider_outage_keeps_channel(self, service, link, user, adapter):
        CalendarIntegrationFactory.create_sync_state(
            link, "primary", channel_id="channel-1", resource_id="resource-1"
        )
        adapter.stop_channel.side_effect = TransientProviderError()

        with pytest.raises(TransientProviderError):
            service.stop_watch(user, "primary")

        state = CalendarSyncState.objects.get(link=link, calendar_id="primary")
        assert state.channel_id == "channel-1"

    def test_stop_watch_without_channel(self, service, link, user, adapter):
        CalendarIntegrationFactory.create_sync_state(link, "primary")

        assert service.stop_watch(user, "primary") is False
        adapter.stop_channel.assert_not_called()

    def test_stop_watch_unknown_calendar(self, service, user):
        assert service.stop_watch(user, "unknown") is False


@pytest.mark.django_db
class TestValidateNotification:
    @pytest.fixture
    def sync_state(self, link):
        return CalendarIntegrationFactory.create_sync_state(
            link, "primary", channel_id="channel-1", resource_id="resource-1"
        )

    def test_valid_notification(self, sync_state):
        assert WatchChannelService.validate_notification(notification()) == sync_state

    def test_sync_handshake_is_ignored(self, sync_state):
        with pytest.raises(WebhookIgnoredError):
            WatchChannelService.validate_notification(notification(resource_state="sync"))

    def test_missing_channel_id(self):
        with pytest.raises(WebhookProcessingFailedError):
            WatchChannelService.validate_notification(notification(channel_id=""))

    def test_unknown_channel(self, sync_state):
        with pytest.raises(WebhookIgnoredError):
            WatchChannelService.validate_notification(notification(channel_id="channel-x"))

    def test_stale_resource(self, sync_state):
        with pytest.raises(WebhookIgnoredError):
            WatchChannelService.validate_notification(notification(resource_id="resource-x"))

    def test_token_mismatch(self, sync_state, settings):
        settings.GOOGLE_CHANNEL_TOKEN = "expected"

        with pytest.raises(WebhookProcessingFailedError):
            WatchChannelService.validate_notification(notification(channel_token="wrong"))

    def test_token_match(self, sync_state, settings):
        settings.GOOGLE_CHANNEL_TOKEN = "expected"

        state = WatchChannelService.validate_notification(notification(channel_token="expected"))

        assert state == sync_state


@pytest.mark.django_db
class TestHandleNotification:
    @pytest.fixture
    def sync_state(self, link):
        return CalendarIntegrationFactory.create_sync_state(
            link, "work", channel_id="channel-1", resource_id="resource-1"
        )

    @patch("calendar_integration.tasks.incremental_sync_calendar_task")
    def test_known_channel_enqueues_one_sync(self, mock_task, service, sync_state):
        headers = {
            "X-Goog-Channel-ID": "channel-1",
            "X-Goog-Resource-ID": "resource-1",
            "X-Goog-Resource-State": "exists",
        }

        assert service.handle_notification(headers) == sync_state

        mock_task.delay.assert_called_once_with(link_id=sync_state.link_id, calendar_id="work")

    @patch("calendar_integration.tasks.incremental_sync_calendar_task")
    def test_handshake_is_dropped(self, mock_task, service, sync_state):
        headers = {
            "X-Goog-Channel-ID": "channel-1",
            "X-Goog-Resource-ID": "resource-1",
            "X-Goog-Resource-State": "sync",
        }

        assert service.handle_notification(headers) is None
        mock_task.delay.assert_not_called()

    @patch("calendar_integration.tasks.incremental_sync_calendar_task")
    def test_unknown_channel_is_dropped(self, mock_task, service, sync_state):
        assert service.handle_notification({"X-Goog-Channel-ID": "nope"}) is None
        mock_task.delay.assert_not_called()

    @patch("calendar_integration.tasks.incremental_sync_calendar_task")
    def test_missing_headers_are_dropped(self, mock_task, service):
        assert service.handle_notification({}) is None
        mock_task.delay.assert_not_called()
