import datetime
import logging
from typing import TYPE_CHECKING, Annotated

from django.conf import settings
from django.db import transaction
from django.utils import timezone

import requests
from dependency_injector.wiring import Provide, inject
from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials

from calendar_integration.constants import TokenState
from calendar_integration.exceptions import (
    AccountNotLinkedError,
    AuthExchangeError,
    InsufficientScopeError,
    ReauthRequiredError,
    TransientProviderError,
)
from calendar_integration.models import GoogleAccountLink
from calendar_integration.services.calendar_adapters.google_calendar_adapter import (
    GoogleCalendarAdapter,
)
from calendar_integration.services.dataclasses import GoogleTokenSet
from notifications.constants import NotificationKind
from notifications.dataclasses import NotificationPayload
from users.models import User


if TYPE_CHECKING:
    from notifications.services import UserNotificationService


logger = logging.getLogger(__name__)


class TimeoutRequest(Request):
    """google-auth transport that applies the configured provider timeout to every call."""

    def __call__(self, url, method="GET", body=None, headers=None, timeout=None, **kwargs):
        return super().__call__(
            url,
            method=method,
            body=body,
            headers=headers,
            timeout=timeout or settings.GOOGLE_API_TIMEOUT_SECONDS,
            **kwargs,
        )


def parse_scope(scope: str | list[str] | None) -> list[str]:
    if not scope:
        return []
    if isinstance(scope, str):
        return [s for s in scope.split(" ") if s]
    return list(scope)


class GoogleCredentialService:
    """
    Owns the delegated-access credentials of linked Google accounts.

    Token freshness follows ``TokenState``: a link is ``valid`` until it enters the
    ``expiring`` window, ``refreshing`` once the access token expired and the next provider
    call has to refresh it, and ``unrecoverable`` after Google rejected the refresh token.
    Only ``unrecoverable`` is persisted; it is left when the user links the account again.
    """

    @inject
    def __init__(
        self,
        user_notification_service: Annotated[
            "UserNotificationService | None", Provide["user_notification_service"]
        ] = None,
    ):
        self.user_notification_service = user_notification_service

    def _exchange_code(self, authorization_code: str) -> GoogleTokenSet:
        try:
            response = requests.post(
                settings.GOOGLE_TOKEN_URI,
                data={
                    "code": authorization_code,
                    "client_id": settings.GOOGLE_CLIENT_ID,
                    "client_secret": settings.GOOGLE_CLIENT_SECRET,
                    "redirect_uri": settings.GOOGLE_REDIRECT_URI,
                    "grant_type": "authorization_code",
                },
                timeout=settings.GOOGLE_API_TIMEOUT_SECONDS,
            )
        except requests.RequestException as e:
            raise TransientProviderError("Google token endpoint is unreachable.") from e

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        if response.status_code >= 500:
            raise TransientProviderError()
        if response.status_code >= 400 or "error" in payload:
            error_code = payload.get("error", "invalid_grant")
            logger.info("Authorization code exchange rejected: %s", error_code)
            raise AuthExchangeError(error_code=error_code)
        if not payload.get("access_token"):
            raise AuthExchangeError(error_code="invalid_response")

        return GoogleTokenSet(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token"),
            expiry=timezone.now() + datetime.timedelta(seconds=int(payload.get("expires_in", 3600))),
            scope=parse_scope(payload.get("scope")),
        )

    @staticmethod
    def get_missing_scopes(scope: list[str]) -> list[str]:
        return [s for s in settings.GOOGLE_CALENDAR_REQUIRED_SCOPES if s not in scope]

    def link_account(self, user: User, authorization_code: str) -> GoogleAccountLink:
        """
        Exchanges an authorization code for tokens and stores them on the user's link.

        Nothing is persisted when the exchange fails or the granted scope does not cover
        calendar read and write.
        """
        from calendar_integration.tasks import mirror_existing_events_task

        token_set = self._exchange_code(authorization_code)

        missing_scopes = self.get_missing_scopes(token_set.scope)
        if missing_scopes:
            raise InsufficientScopeError(missing_scopes)

        with transaction.atomic():
            link = GoogleAccountLink.objects.select_for_update().filter(user=user).first()
            if link is None:
                link = GoogleAccountLink(user=user)

            refresh_token = token_set.refresh_token or link.refresh_token
            if not refresh_token:
                # Google only returns a refresh token on the first consent
                raise AuthExchangeError(error_code="missing_refresh_token")

            link.access_token = token_set.access_token
            link.refresh_token = refresh_token
            link.expiry = token_set.expiry
            link.scope = token_set.scope
            link.token_state = TokenState.VALID
            link.last_refreshed_at = timezone.now()
            link.save()

            transaction.on_commit(lambda: mirror_existing_events_task.delay(user_id=user.pk))

        logger.info("Google account linked", extra={"user_id": user.pk})
        return link

    def get_link(self, user: User) -> GoogleAccountLink:
        link = GoogleAccountLink.objects.filter(user=user).first()
        if link is None or not link.is_established:
            raise AccountNotLinkedError()
        return link

    def get_token_state(
        self, link: GoogleAccountLink, now: datetime.datetime | None = None
    ) -> TokenState:
        now = now or timezone.now()
        if link.token_state == TokenState.UNRECOVERABLE or not link.refresh_token:
            return TokenState.UNRECOVERABLE
        if link.is_expired(now):
            return TokenState.REFRESHING
        window = datetime.timedelta(seconds=settings.GOOGLE_TOKEN_EXPIRING_WINDOW_SECONDS)
        if now >= link.expiry - window:
            return TokenState.EXPIRING
        return TokenState.VALID

    def _refresh(self, link: GoogleAccountLink) -> GoogleTokenSet:
        credentials = Credentials(
            token=None,
            refresh_token=link.refresh_token,
            token_uri=settings.GOOGLE_TOKEN_URI,
            client_id=settings.GOOGLE_CLIENT_ID,
            client_secret=settings.GOOGLE_CLIENT_SECRET,
        )
        credentials.refresh(TimeoutRequest())

        expiry = credentials.expiry
        if expiry is None:
            expiry = timezone.now() + datetime.timedelta(hours=1)
        elif timezone.is_naive(expiry):
            # google-auth reports expiry as naive UTC
            expiry = expiry.replace(tzinfo=datetime.UTC)

        return GoogleTokenSet(
            access_token=credentials.token,
            refresh_token=credentials.refresh_token,
            expiry=expiry,
            scope=parse_scope(getattr(credentials, "granted_scopes", None)) or link.scope,
        )

    def ensure_fresh_access_token(
        self, link: GoogleAccountLink, now: datetime.datetime | None = None
    ) -> str:
        """
        Returns an access token usable right now, refreshing it only once it expired.

        The refresh runs with the link row locked so concurrent callers for the same user
        are serialized; whoever gets the lock after a refresh reuses its result.
        Raises ReauthRequiredError when Google rejects the refresh token.
        """
        now = now or timezone.now()
        state = self.get_token_state(link, now)
        if state == TokenState.UNRECOVERABLE:
            raise ReauthRequiredError()
        if state != TokenState.REFRESHING:
            return link.access_token

        became_unrecoverable = False
        with transaction.atomic():
            locked = GoogleAccountLink.objects.select_for_update().get(pk=link.pk)
            locked_state = self.get_token_state(locked, now)
            if locked_state == TokenState.UNRECOVERABLE:
                link.token_state = TokenState.UNRECOVERABLE
                raise ReauthRequiredError()

            if locked_state == TokenState.REFRESHING:
                try:
                    token_set = self._refresh(locked)
                except RefreshError as e:
                    if "invalid_grant" not in str(e):
                        raise TransientProviderError("Google token refresh failed.") from e
                    locked.token_state = TokenState.UNRECOVERABLE
                    locked.save(update_fields=["token_state", "modified"])
                    became_unrecoverable = True
                except TransportError as e:
                    raise TransientProviderError("Google token endpoint is unreachable.") from e
                else:
                    locked.access_token = token_set.access_token
                    if token_set.refresh_token:
                        locked.refresh_token = token_set.refresh_token
                    locked.expiry = token_set.expiry
                    locked.scope = token_set.scope
                    locked.token_state = TokenState.VALID
                    locked.last_refreshed_at = timezone.now()
                    locked.save()
                    logger.info("Google access token refreshed", extra={"user_id": locked.user_id})

        link.access_token = locked.access_token
        link.refresh_token = locked.refresh_token
        link.expiry = locked.expiry
        link.scope = locked.scope
        link.token_state = locked.token_state
        link.last_refreshed_at = locked.last_refreshed_at

        if became_unrecoverable:
            logger.error(
                "Google refresh token was rejected, re-authentication required",
                extra={"user_id": link.user_id},
            )
            self._notify_reauth_required(link)
            raise ReauthRequiredError()

        return link.access_token

    def _notify_reauth_required(self, link: GoogleAccountLink) -> None:
        if not self.user_notification_service:
            return
        self.user_notification_service.notify(
            link.user_id,
            NotificationPayload(
                title="Reconnect your Google Calendar",
                body=(
                    "Google Calendar stopped accepting our access to your account, so your "
                    "calendars are no longer being synchronized. Link your Google account "
                    "again to resume."
                ),
                kind=NotificationKind.REAUTH_REQUIRED,
            ),
        )

    def get_adapter_for_link(self, link: GoogleAccountLink) -> GoogleCalendarAdapter:
        access_token = self.ensure_fresh_access_token(link)
        return GoogleCalendarAdapter({"token": access_token, "account_id": str(link.pk)})

    def get_adapter(self, user: User) -> GoogleCalendarAdapter:
        return self.get_adapter_for_link(self.get_link(user))

    def unlink_account(self, user: User) -> bool:
        """
        Deletes the user's link along with its selection and sync states.

        Watch channels are stopped and the token revoked on a best-effort basis, neither
        can make the unlink fail. Returns False when there was nothing to unlink.
        """
        from calendar_integration.tasks import revoke_google_token_task

        link = GoogleAccountLink.objects.filter(user=user).first()
        if link is None:
            return False

        states_with_channel = list(link.sync_states.with_active_channel())
        if states_with_channel and self.get_token_state(link) != TokenState.UNRECOVERABLE:
            try:
                adapter = self.get_adapter_for_link(link)
                for state in states_with_channel:
                    adapter.stop_channel(state.channel_id, state.resource_id)
            except Exception:  # noqa: BLE001
                logger.warning(
                    "Could not stop watch channels while unlinking",
                    extra={"user_id": user.pk},
                    exc_info=True,
                )

        token_to_revoke = link.refresh_token or link.access_token
        link.delete()
        if token_to_revoke:
            transaction.on_commit(lambda: revoke_google_token_task.delay(token=token_to_revoke))

        logger.info("Google account unlinked", extra={"user_id": user.pk})
        return True

    def revoke_token(self, token: str) -> bool:
        try:
            response = requests.post(
                settings.GOOGLE_REVOKE_URI,
                params={"token": token},
                headers={"content-type": "application/x-www-form-urlencoded"},
                timeout=settings.GOOGLE_API_TIMEOUT_SECONDS,
            )
        except requests.RequestException:
            logger.warning("Google token revocation request failed", exc_info=True)
            return False
        return response.status_code == 200
