import logging
from typing import Annotated

from django.http import HttpRequest, HttpResponse
from django.utils.decorators import method_decorator
from django.views import View
from django.views.decorators.csrf import csrf_exempt

from dependency_injector.wiring import Provide, inject

from calendar_integration.services.watch_channel_service import WatchChannelService


logger = logging.getLogger(__name__)


@method_decorator(csrf_exempt, name="dispatch")
class GoogleCalendarWebhookView(View):
    """
    Webhook endpoint for Google Calendar push notifications.

    Always answers 200, including for ignored, unknown or unverifiable channels, since any
    other status makes Google retry the delivery.
    """

    @inject
    def post(
        self,
        request: HttpRequest,
        watch_channel_service: Annotated[WatchChannelService, Provide["watch_channel_service"]],
    ) -> HttpResponse:
        try:
            state = watch_channel_service.handle_notification(request.headers)
        except Exception:  # noqa: BLE001
            logger.exception("Error processing Google Calendar webhook")
            return HttpResponse(status=200)

        if state is not None:
            logger.info(
                "Google Calendar webhook enqueued a sync",
                extra={"user_id": state.link.user_id, "calendar_id": state.calendar_id},
            )
        return HttpResponse(status=200)
