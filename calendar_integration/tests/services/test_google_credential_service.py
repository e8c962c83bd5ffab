import datetime
from unittest.mock import Mock, patch

from django.utils import timezone

import pytest
import requests
from google.auth.exceptions import RefreshError, TransportError

from calendar_integration.constants import TokenState
from calendar_integration.exceptions import (
    AccountNotLinkedError,
    AuthExchangeError,
    InsufficientScopeError,
    ReauthRequiredError,
    TransientProviderError,
)
from calendar_integration.factories import DEFAULT_GOOGLE_SCOPES, CalendarIntegrationFactory
from calendar_integration.models import GoogleAccountLink
from calendar_integration.services.google_credential_service import (
    GoogleCredentialService,
    parse_scope,
)
from notifications.constants import NotificationKind


SERVICE_MODULE = "calendar_integration.services.google_credential_service"


def token_response(status_code=200, **payload):
    response = Mock()
    response.status_code = status_code
    response.json.return_value = payload
    return response


@pytest.fixture
def user_notification_service():
    return Mock()


@pytest.fixture
def service(user_notification_service):
    return GoogleCredentialService(user_notification_service=user_notification_service)


@pytest.fixture
def link(user):
    return CalendarIntegrationFactory.create_google_account_link(user)


def test_parse_scope():
    assert parse_scope("a b  c") == ["a", "b", "c"]
    assert parse_scope(["a"]) == ["a"]
    assert parse_scope(None) == []


@pytest.mark.django_db
class TestLinkAccount:
    @patch(f"{SERVICE_MODULE}.requests.post")
    def test_link_account_persists_tokens(
        self, mock_post, service, user, django_capture_on_commit_callbacks
    ):
        mock_post.return_value = token_response(
            access_token="new-access",
            refresh_token="new-refresh",
            expires_in=3599,
            scope=" ".join(DEFAULT_GOOGLE_SCOPES),
        )

        with (
            patch("calendar_integration.tasks.mirror_existing_events_task") as mock_task,
            django_capture_on_commit_callbacks(execute=True),
        ):
            link = service.link_account(user, "auth-code")

        link.refresh_from_db()
        assert link.access_token == "new-access"
        assert link.refresh_token == "new-refresh"
        assert link.scope == DEFAULT_GOOGLE_SCOPES
        assert link.token_state == TokenState.VALID
        assert link.expiry > timezone.now()
        mock_task.delay.assert_called_once_with(user_id=user.pk)
        assert mock_post.call_args.kwargs["data"]["code"] == "auth-code"
        assert mock_post.call_args.kwargs["data"]["grant_type"] == "authorization_code"

    @patch(f"{SERVICE_MODULE}.requests.post")
    def test_link_account_keeps_existing_refresh_token(self, mock_post, service, link, user):
        mock_post.return_value = token_response(
            access_token="new-access", expires_in=3600, scope=" ".join(DEFAULT_GOOGLE_SCOPES)
        )

        with patch("calendar_integration.tasks.mirror_existing_events_task"):
            service.link_account(user, "auth-code")

        link.refresh_from_db()
        assert link.access_token == "new-access"
        assert link.refresh_token == "refresh-token"

    @patch(f"{SERVICE_MODULE}.requests.post")
    def test_link_account_without_refresh_token_fails(self, mock_post, service, user):
        mock_post.return_value = token_response(
            access_token="new-access", expires_in=3600, scope=" ".join(DEFAULT_GOOGLE_SCOPES)
        )

        with pytest.raises(AuthExchangeError) as exc_info:
            service.link_account(user, "auth-code")

        assert exc_info.value.error_code == "missing_refresh_token"
        assert not GoogleAccountLink.objects.filter(user=user).exists()

    @patch(f"{SERVICE_MODULE}.requests.post")
    def test_link_account_with_insufficient_scope_persists_nothing(self, mock_post, service, user):
        mock_post.return_value = token_response(
            access_token="new-access",
            refresh_token="new-refresh",
            expires_in=3600,
            scope="https://www.googleapis.com/auth/calendar.readonly",
        )

        with pytest.raises(InsufficientScopeError) as exc_info:
            service.link_account(user, "auth-code")

        assert set(exc_info.value.missing_scopes) == set(DEFAULT_GOOGLE_SCOPES)
        assert not GoogleAccountLink.objects.filter(user=user).exists()

    @pytest.mark.parametrize("error_code", ["invalid_grant", "access_denied", "invalid_client"])
    @patch(f"{SERVICE_MODULE}.requests.post")
    def test_link_account_rejected_code(self, mock_post, service, user, error_code):
        mock_post.return_value = token_response(status_code=400, error=error_code)

        with pytest.raises(AuthExchangeError) as exc_info:
            service.link_account(user, "bad-code")

        assert exc_info.value.error_code == error_code
        assert not GoogleAccountLink.objects.filter(user=user).exists()

    @patch(f"{SERVICE_MODULE}.requests.post")
    def test_link_account_token_endpoint_down(self, mock_post, service, user):
        mock_post.side_effect = requests.ConnectionError()

        with pytest.raises(TransientProviderError):
            service.link_account(user, "auth-code")

    @patch(f"{SERVICE_MODULE}.requests.post")
    def test_link_account_token_endpoint_server_error(self, mock_post, service, user):
        mock_post.return_value = token_response(status_code=503)

        with pytest.raises(TransientProviderError):
            service.link_account(user, "auth-code")


@pytest.mark.django_db
class TestTokenState:
    def test_get_link_without_link(self, service, user):
        with pytest.raises(AccountNotLinkedError):
            service.get_link(user)

    def test_valid(self, service, link):
        assert service.get_token_state(link) == TokenState.VALID

    def test_expiring(self, service, link, settings):
        settings.GOOGLE_TOKEN_EXPIRING_WINDOW_SECONDS = 300
        now = timezone.now()
        link.expiry = now + datetime.timedelta(seconds=120)

        assert service.get_token_state(link, now) == TokenState.EXPIRING

    def test_expired_needs_refresh(self, service, link):
        now = timezone.now()
        link.expiry = now - datetime.timedelta(seconds=1)

        assert service.get_token_state(link, now) == TokenState.REFRESHING

    def test_unrecoverable(self, service, link):
        link.token_state = TokenState.UNRECOVERABLE

        assert service.get_token_state(link) == TokenState.UNRECOVERABLE


@pytest.mark.django_db
class TestEnsureFreshAccessToken:
    @pytest.fixture
    def expired_link(self, link):
        link.expiry = timezone.now() - datetime.timedelta(minutes=5)
        link.save()
        return link

    @patch(f"{SERVICE_MODULE}.Credentials")
    def test_valid_token_is_returned_without_refresh(self, mock_credentials, service, link):
        assert service.ensure_fresh_access_token(link) == "access-token"
        mock_credentials.assert_not_called()

    @patch(f"{SERVICE_MODULE}.Credentials")
    def test_expiring_token_is_not_refreshed(self, mock_credentials, service, link):
        link.expiry = timezone.now() + datetime.timedelta(seconds=30)
        link.save()

        assert service.ensure_fresh_access_token(link) == "access-token"
        mock_credentials.assert_not_called()

    @patch(f"{SERVICE_MODULE}.Credentials")
    def test_expired_token_is_refreshed_and_persisted(
        self, mock_credentials, service, expired_link
    ):
        new_expiry = datetime.datetime.now(datetime.UTC).replace(tzinfo=None) + datetime.timedelta(
            hours=1
        )
        credentials = mock_credentials.return_value
        credentials.token = "refreshed-access"
        credentials.refresh_token = "refresh-token"
        credentials.expiry = new_expiry
        credentials.granted_scopes = None

        token = service.ensure_fresh_access_token(expired_link)

        assert token == "refreshed-access"
        credentials.refresh.assert_called_once()
        expired_link.refresh_from_db()
        assert expired_link.access_token == "refreshed-access"
        assert expired_link.expiry == new_expiry.replace(tzinfo=datetime.UTC)
        assert expired_link.token_state == TokenState.VALID
        assert expired_link.last_refreshed_at is not None

    @patch(f"{SERVICE_MODULE}.Credentials")
    def test_invalid_grant_marks_link_unrecoverable_and_notifies(
        self, mock_credentials, service, expired_link, user_notification_service
    ):
        mock_credentials.return_value.refresh.side_effect = RefreshError(
            "invalid_grant: Token has been expired or revoked."
        )

        with pytest.raises(ReauthRequiredError):
            service.ensure_fresh_access_token(expired_link)

        expired_link.refresh_from_db()
        assert expired_link.token_state == TokenState.UNRECOVERABLE
        user_notification_service.notify.assert_called_once()
        user_id, payload = user_notification_service.notify.call_args.args
        assert user_id == expired_link.user_id
        assert payload.kind == NotificationKind.REAUTH_REQUIRED

    @patch(f"{SERVICE_MODULE}.Credentials")
    def test_unrecoverable_link_fails_fast(self, mock_credentials, service, link):
        link.token_state = TokenState.UNRECOVERABLE
        link.save()

        with pytest.raises(ReauthRequiredError):
            service.ensure_fresh_access_token(link)
        mock_credentials.assert_not_called()

    @patch(f"{SERVICE_MODULE}.Credentials")
    def test_transport_error_is_transient(self, mock_credentials, service, expired_link):
        mock_credentials.return_value.refresh.side_effect = TransportError("connection reset")

        with pytest.raises(TransientProviderError):
            service.ensure_fresh_access_token(expired_link)

        expired_link.refresh_from_db()
        assert expired_link.token_state == TokenState.VALID

    @patch(f"{SERVICE_MODULE}.Credentials")
    def test_other_refresh_error_is_transient(self, mock_credentials, service, expired_link):
        mock_credentials.return_value.refresh.side_effect = RefreshError("internal_failure")

        with pytest.raises(TransientProviderError):
            service.ensure_fresh_access_token(expired_link)

    @patch(f"{SERVICE_MODULE}.Credentials")
    def test_concurrent_caller_reuses_refreshed_token(
        self, mock_credentials, service, expired_link
    ):
        stale_copy = GoogleAccountLink.objects.get(pk=expired_link.pk)
        GoogleAccountLink.objects.filter(pk=expired_link.pk).update(
            access_token="already-refreshed",
            expiry=timezone.now() + datetime.timedelta(hours=1),
        )

        token = service.ensure_fresh_access_token(stale_copy)

        assert token == "already-refreshed"
        mock_credentials.assert_not_called()


@pytest.mark.django_db
class TestUnlinkAccount:
    def test_unlink_without_link(self, service, user):
        assert service.unlink_account(user) is False

    def test_unlink_stops_channels_and_queues_revocation(
        self, service, link, user, django_capture_on_commit_callbacks
    ):
        CalendarIntegrationFactory.create_sync_state(
            link, "primary", channel_id="channel-1", resource_id="resource-1"
        )
        adapter = Mock()

        with (
            patch.object(service, "get_adapter_for_link", return_value=adapter),
            patch("calendar_integration.tasks.revoke_google_token_task") as mock_task,
            django_capture_on_commit_callbacks(execute=True),
        ):
            assert service.unlink_account(user) is True

        adapter.stop_channel.assert_called_once_with("channel-1", "resource-1")
        mock_task.delay.assert_called_once_with(token="refresh-token")
        assert not GoogleAccountLink.objects.filter(user=user).exists()

    def test_unlink_succeeds_when_channel_stop_fails(self, service, link, user):
        CalendarIntegrationFactory.create_sync_state(
            link, "primary", channel_id="channel-1", resource_id="resource-1"
        )
        adapter = Mock()
        adapter.stop_channel.side_effect = TransientProviderError()

        with (
            patch.object(service, "get_adapter_for_link", return_value=adapter),
            patch("calendar_integration.tasks.revoke_google_token_task"),
        ):
            assert service.unlink_account(user) is True

        assert not GoogleAccountLink.objects.filter(user=user).exists()


class TestRevokeToken:
    @patch(f"{SERVICE_MODULE}.requests.post")
    def test_revoke_token(self, mock_post, service):
        mock_post.return_value = Mock(status_code=200)

        assert service.revoke_token("refresh-token") is True

    @patch(f"{SERVICE_MODULE}.requests.post")
    def test_revoke_token_network_failure(self, mock_post, service):
        mock_post.side_effect = requests.Timeout()

        assert service.revoke_token("refresh-token") is False
