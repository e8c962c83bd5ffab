import logging
from typing import Annotated

from django.db import transaction

from dependency_injector.wiring import Provide, inject
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from calendar_integration.exceptions import (
    AccountNotLinkedError,
    AuthExchangeError,
    InsufficientScopeError,
    ProviderError,
    ReauthRequiredError,
)
from calendar_integration.models import Calendar, CalendarEvent
from calendar_integration.serializers import (
    BusyIntervalSerializer,
    CalendarEventSerializer,
    CalendarSelectionSerializer,
    CalendarSerializer,
    CalendarSummarySerializer,
    CalendarSyncUpdateSerializer,
    EventSearchQuerySerializer,
    EventSearchResultSerializer,
    FreeBusyRequestSerializer,
    LinkGoogleAccountSerializer,
    ProviderCalendarSerializer,
    SuggestTimesRequestSerializer,
    TimeSlotSerializer,
    TimeWindowSerializer,
    UnifiedCalendarQuerySerializer,
    UnifiedViewSerializer,
    WatchChannelSerializer,
    WatchStartSerializer,
    WatchStopSerializer,
)
from calendar_integration.services.calendar_event_service import CalendarEventService
from calendar_integration.services.calendar_sync_service import CalendarSyncService
from calendar_integration.services.google_credential_service import GoogleCredentialService
from calendar_integration.services.slot_finder_service import SlotFinderService
from calendar_integration.services.unified_calendar_service import UnifiedCalendarService
from calendar_integration.services.watch_channel_service import WatchChannelService
from calendar_integration.services.write_through_service import CalendarWriteThroughService
from common.utils.view_utils import CalendarSyncModelViewSet


logger = logging.getLogger(__name__)

REAUTH_ERROR_CODES = ("invalid_grant", "access_denied")


def build_calendar_error_response(exc: Exception) -> Response | None:
    """
    Maps the calendar integration errors to API responses. Returns None for anything else.
    """
    if isinstance(exc, ReauthRequiredError):
        return Response(
            {"error": "invalid_grant", "requiresReauth": True},
            status=status.HTTP_401_UNAUTHORIZED,
        )
    if isinstance(exc, AuthExchangeError):
        if exc.error_code in REAUTH_ERROR_CODES:
            return Response(
                {"error": exc.error_code, "requiresReauth": True},
                status=status.HTTP_401_UNAUTHORIZED,
            )
        return Response({"error": exc.error_code}, status=status.HTTP_400_BAD_REQUEST)
    if isinstance(exc, InsufficientScopeError):
        return Response(
            {
                "error": "insufficient_scope",
                "missingScopes": exc.missing_scopes,
                "requiresReauth": True,
            },
            status=status.HTTP_403_FORBIDDEN,
        )
    if isinstance(exc, AccountNotLinkedError):
        return Response({"error": "account_not_linked"}, status=status.HTTP_400_BAD_REQUEST)
    if isinstance(exc, ProviderError):
        logger.warning("Google Calendar request failed: %s", exc.__class__.__name__)
        return Response({"error": "provider_unavailable"}, status=status.HTTP_502_BAD_GATEWAY)
    return None


class CalendarErrorResponseMixin:
    def handle_exception(self, exc):
        response = build_calendar_error_response(exc)
        if response is not None:
            return response
        return super().handle_exception(exc)


class CalendarViewSet(CalendarSyncModelViewSet):
    """
    ViewSet for managing the local calendars of the authenticated user.
    """

    queryset = Calendar.objects.all()
    serializer_class = CalendarSerializer

    def get_queryset(self):
        return super().get_queryset().owned_by(self.request.user).order_by("id")


class CalendarEventViewSet(CalendarErrorResponseMixin, CalendarSyncModelViewSet):
    """
    ViewSet for managing local calendar events. Writes are mirrored to Google Calendar
    when the owner has linked an account, without affecting the response.
    """

    queryset = CalendarEvent.objects.all()
    serializer_class = CalendarEventSerializer

    def get_queryset(self):
        return (
            super()
            .get_queryset()
            .owned_by(self.request.user)
            .select_related("calendar")
            .order_by("start_time", "id")
        )

    @extend_schema(
        summary="Delete calendar event",
        description="Delete a calendar event and its Google Calendar copy.",
        responses={204: None},
    )
    @inject
    def destroy(
        self,
        request,
        *args,
        calendar_event_service: Annotated[
            CalendarEventService, Provide["calendar_event_service"]
        ],
        **kwargs,
    ):
        instance = self.get_object()
        calendar_event_service.delete_event(instance)
        return Response(status=status.HTTP_204_NO_CONTENT)


class GoogleCalendarViewSet(CalendarErrorResponseMixin, viewsets.ViewSet):
    """
    Account linking, calendar selection, free/busy, sync and watch channels of the
    authenticated user's Google Calendar account.
    """

    @extend_schema(
        summary="Link Google account",
        description="Exchanges a Google authorization code for tokens.",
        request=LinkGoogleAccountSerializer,
    )
    @action(methods=["POST"], detail=False, url_path="link", url_name="link")
    @inject
    def link(
        self,
        request,
        google_credential_service: Annotated[
            GoogleCredentialService, Provide["google_credential_service"]
        ],
        write_through_service: Annotated[
            CalendarWriteThroughService, Provide["write_through_service"]
        ],
    ):
        serializer = LinkGoogleAccountSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        link = google_credential_service.link_account(
            request.user, serializer.validated_data["authorization_code"]
        )
        managed_calendar_id = write_through_service.try_ensure_managed_calendar(link)
        return Response(
            {
                "linked": True,
                "managedCalendarId": managed_calendar_id or None,
                "scope": link.scope,
            }
        )

    @extend_schema(summary="Unlink Google account", request=None, responses={204: None})
    @action(methods=["POST"], detail=False, url_path="unlink", url_name="unlink")
    @inject
    def unlink(
        self,
        request,
        google_credential_service: Annotated[
            GoogleCredentialService, Provide["google_credential_service"]
        ],
    ):
        with transaction.atomic():
            google_credential_service.unlink_account(request.user)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @extend_schema(
        summary="List Google calendars",
        responses={200: ProviderCalendarSerializer(many=True)},
    )
    @action(methods=["GET"], detail=False, url_path="calendars", url_name="calendars")
    @inject
    def calendars(
        self,
        request,
        google_credential_service: Annotated[
            GoogleCredentialService, Provide["google_credential_service"]
        ],
    ):
        link = google_credential_service.get_link(request.user)
        adapter = google_credential_service.get_adapter_for_link(link)
        serializer = ProviderCalendarSerializer(
            adapter.list_calendars(),
            many=True,
            context={"selected_calendar_ids": list(link.selected_calendar_ids or [])},
        )
        return Response({"calendars": serializer.data})

    @extend_schema(summary="Select Google calendars", request=CalendarSelectionSerializer)
    @action(
        methods=["POST"],
        detail=False,
        url_path="calendars/select",
        url_name="select-calendars",
    )
    @inject
    def select_calendars(
        self,
        request,
        google_credential_service: Annotated[
            GoogleCredentialService, Provide["google_credential_service"]
        ],
    ):
        serializer = CalendarSelectionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        link = google_credential_service.get_link(request.user)
        link.selected_calendar_ids = list(dict.fromkeys(serializer.validated_data["calendar_ids"]))
        link.save(update_fields=["selected_calendar_ids", "modified"])
        return Response({"selectedCalendarIds": link.selected_calendar_ids})

    @extend_schema(summary="Query free/busy", request=FreeBusyRequestSerializer)
    @action(methods=["POST"], detail=False, url_path="freebusy", url_name="freebusy")
    @inject
    def freebusy(
        self,
        request,
        slot_finder_service: Annotated[SlotFinderService, Provide["slot_finder_service"]],
    ):
        serializer = FreeBusyRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        busy_by_calendar = slot_finder_service.get_free_busy(
            request.user, data["time_min"], data["time_max"], data["calendar_ids"]
        )
        return Response(
            {
                "calendars": {
                    calendar_id: {"busy": BusyIntervalSerializer(intervals, many=True).data}
                    for calendar_id, intervals in busy_by_calendar.items()
                }
            }
        )

    @extend_schema(
        summary="Suggest meeting times",
        request=SuggestTimesRequestSerializer,
        responses={200: TimeSlotSerializer(many=True)},
    )
    @action(methods=["POST"], detail=False, url_path="suggest-times", url_name="suggest-times")
    @inject
    def suggest_times(
        self,
        request,
        slot_finder_service: Annotated[SlotFinderService, Provide["slot_finder_service"]],
    ):
        serializer = SuggestTimesRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        slots = slot_finder_service.find_slots(
            request.user,
            data["time_min"],
            data["time_max"],
            data["duration_minutes"],
            data["calendar_ids"],
        )
        return Response({"slots": TimeSlotSerializer(slots, many=True).data})

    @extend_schema(
        summary="Run incremental sync",
        request=None,
        responses={200: CalendarSyncUpdateSerializer(many=True)},
    )
    @action(
        methods=["POST"],
        detail=False,
        url_path="sync/incremental",
        url_name="sync-incremental",
    )
    @inject
    def sync_incremental(
        self,
        request,
        calendar_sync_service: Annotated[CalendarSyncService, Provide["calendar_sync_service"]],
    ):
        updates = calendar_sync_service.incremental_sync(request.user)
        return Response({"updates": CalendarSyncUpdateSerializer(updates, many=True).data})

    @extend_schema(
        summary="Backfill a time window",
        request=TimeWindowSerializer,
        responses={200: CalendarSyncUpdateSerializer(many=True)},
    )
    @action(methods=["POST"], detail=False, url_path="sync/backfill", url_name="sync-backfill")
    @inject
    def sync_backfill(
        self,
        request,
        calendar_sync_service: Annotated[CalendarSyncService, Provide["calendar_sync_service"]],
    ):
        serializer = TimeWindowSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        updates = calendar_sync_service.backfill(
            request.user,
            serializer.validated_data["time_min"],
            serializer.validated_data["time_max"],
        )
        return Response({"updates": CalendarSyncUpdateSerializer(updates, many=True).data})

    @extend_schema(
        summary="Start watching a calendar",
        request=WatchStartSerializer,
        responses={200: WatchChannelSerializer},
    )
    @action(methods=["POST"], detail=False, url_path="watch/start", url_name="watch-start")
    @inject
    def watch_start(
        self,
        request,
        watch_channel_service: Annotated[WatchChannelService, Provide["watch_channel_service"]],
    ):
        serializer = WatchStartSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        channel = watch_channel_service.start_watch(
            request.user,
            serializer.validated_data["calendar_id"],
            channel_id=serializer.validated_data.get("channel_id") or None,
        )
        return Response(WatchChannelSerializer(channel).data)

    @extend_schema(summary="Stop watching a calendar", request=WatchStopSerializer)
    @action(methods=["POST"], detail=False, url_path="watch/stop", url_name="watch-stop")
    @inject
    def watch_stop(
        self,
        request,
        watch_channel_service: Annotated[WatchChannelService, Provide["watch_channel_service"]],
    ):
        serializer = WatchStopSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        stopped = watch_channel_service.stop_watch(
            request.user, serializer.validated_data["calendar_id"]
        )
        return Response({"stopped": stopped})


TIME_WINDOW_PARAMETERS = [
    OpenApiParameter(
        name="timeMin",
        type=str,
        location=OpenApiParameter.QUERY,
        description="Start datetime in ISO format (YYYY-MM-DDTHH:MM:SSZ)",
        required=True,
    ),
    OpenApiParameter(
        name="timeMax",
        type=str,
        location=OpenApiParameter.QUERY,
        description="End datetime in ISO format (YYYY-MM-DDTHH:MM:SSZ)",
        required=True,
    ),
]


class UnifiedCalendarViewSet(CalendarErrorResponseMixin, viewsets.ViewSet):
    """
    Merged, deduplicated view of the user's local events and selected Google calendars.
    """

    @extend_schema(
        summary="Get unified calendar",
        parameters=[
            *TIME_WINDOW_PARAMETERS,
            OpenApiParameter(name="includeLocal", type=bool, location=OpenApiParameter.QUERY),
            OpenApiParameter(name="includeExternal", type=bool, location=OpenApiParameter.QUERY),
        ],
        responses={200: UnifiedViewSerializer},
    )
    @inject
    def list(  # noqa: A003
        self,
        request,
        unified_calendar_service: Annotated[
            UnifiedCalendarService, Provide["unified_calendar_service"]
        ],
    ):
        serializer = UnifiedCalendarQuerySerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        view = unified_calendar_service.get_unified_view(
            request.user,
            data["time_min"],
            data["time_max"],
            include_local=data["include_local"],
            include_external=data["include_external"],
        )
        return Response(UnifiedViewSerializer(view).data)

    @extend_schema(
        summary="Get unified calendar summary",
        parameters=TIME_WINDOW_PARAMETERS,
        responses={200: CalendarSummarySerializer},
    )
    @action(methods=["GET"], detail=False, url_path="summary", url_name="summary")
    @inject
    def summary(
        self,
        request,
        unified_calendar_service: Annotated[
            UnifiedCalendarService, Provide["unified_calendar_service"]
        ],
    ):
        serializer = TimeWindowSerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)

        summary = unified_calendar_service.get_summary(
            request.user,
            serializer.validated_data["time_min"],
            serializer.validated_data["time_max"],
        )
        return Response(CalendarSummarySerializer(summary).data)

    @extend_schema(
        summary="Search unified calendar events",
        parameters=[
            OpenApiParameter(name="q", type=str, location=OpenApiParameter.QUERY, required=True),
            OpenApiParameter(name="timeMin", type=str, location=OpenApiParameter.QUERY),
            OpenApiParameter(name="timeMax", type=str, location=OpenApiParameter.QUERY),
        ],
        responses={200: EventSearchResultSerializer},
    )
    @action(methods=["GET"], detail=False, url_path="search", url_name="search")
    @inject
    def search(
        self,
        request,
        unified_calendar_service: Annotated[
            UnifiedCalendarService, Provide["unified_calendar_service"]
        ],
    ):
        serializer = EventSearchQuerySerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        view = unified_calendar_service.search_events(
            request.user,
            data["q"],
            time_min=data.get("time_min"),
            time_max=data.get("time_max"),
        )
        return Response(
            EventSearchResultSerializer(view, context={"search_term": data["q"]}).data
        )
