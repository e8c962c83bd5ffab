from typing import TYPE_CHECKING, Annotated

from dependency_injector.wiring import Provide, inject
from rest_framework import serializers

from calendar_integration.models import Calendar, CalendarEvent
from calendar_integration.services.dataclasses import CalendarEventInputData


if TYPE_CHECKING:
    from calendar_integration.services.calendar_event_service import CalendarEventService


class TimeWindowSerializer(serializers.Serializer):
    timeMin = serializers.DateTimeField(source="time_min")  # noqa: N815
    timeMax = serializers.DateTimeField(source="time_max")  # noqa: N815

    def validate(self, attrs):
        time_min = attrs.get("time_min")
        time_max = attrs.get("time_max")
        if time_min and time_max and time_max <= time_min:
            raise serializers.ValidationError({"timeMax": "timeMax must be after timeMin."})
        return attrs


class LinkGoogleAccountSerializer(serializers.Serializer):
    authorizationCode = serializers.CharField(source="authorization_code")  # noqa: N815


class CalendarSelectionSerializer(serializers.Serializer):
    calendarIds = serializers.ListField(  # noqa: N815
        source="calendar_ids",
        child=serializers.CharField(max_length=255),
        allow_empty=True,
    )


class FreeBusyRequestSerializer(TimeWindowSerializer):
    calendarIds = serializers.ListField(  # noqa: N815
        source="calendar_ids",
        child=serializers.CharField(max_length=255),
        required=False,
        default=list,
    )


class SuggestTimesRequestSerializer(FreeBusyRequestSerializer):
    durationMinutes = serializers.IntegerField(  # noqa: N815
        source="duration_minutes", min_value=1, default=60
    )


class WatchStartSerializer(serializers.Serializer):
    calendarId = serializers.CharField(source="calendar_id", max_length=255)  # noqa: N815
    channelId = serializers.CharField(  # noqa: N815
        source="channel_id", max_length=255, required=False, allow_blank=True
    )


class WatchStopSerializer(serializers.Serializer):
    calendarId = serializers.CharField(source="calendar_id", max_length=255)  # noqa: N815


class UnifiedCalendarQuerySerializer(TimeWindowSerializer):
    includeLocal = serializers.BooleanField(source="include_local", default=True)  # noqa: N815
    includeExternal = serializers.BooleanField(  # noqa: N815
        source="include_external", default=True
    )


class EventSearchQuerySerializer(TimeWindowSerializer):
    q = serializers.CharField(max_length=255)
    timeMin = serializers.DateTimeField(source="time_min", required=False)  # noqa: N815
    timeMax = serializers.DateTimeField(source="time_max", required=False)  # noqa: N815


class ProviderCalendarSerializer(serializers.Serializer):
    id = serializers.CharField()  # noqa: A003
    name = serializers.CharField()
    primary = serializers.BooleanField()
    color = serializers.CharField()
    accessRole = serializers.CharField(source="access_role")  # noqa: N815
    selected = serializers.SerializerMethodField()

    def get_selected(self, obj) -> bool:
        return obj.id in self.context.get("selected_calendar_ids", [])


class BusyIntervalSerializer(serializers.Serializer):
    start = serializers.DateTimeField()
    end = serializers.DateTimeField()


class TimeSlotSerializer(serializers.Serializer):
    start = serializers.DateTimeField()
    end = serializers.DateTimeField()


class ProviderEventSerializer(serializers.Serializer):
    id = serializers.CharField()  # noqa: A003
    calendarId = serializers.CharField(source="calendar_id")  # noqa: N815
    title = serializers.CharField()
    description = serializers.CharField()
    location = serializers.CharField()
    startTime = serializers.DateTimeField(source="start_time", allow_null=True)  # noqa: N815
    endTime = serializers.DateTimeField(source="end_time", allow_null=True)  # noqa: N815
    isAllDay = serializers.BooleanField(source="is_all_day")  # noqa: N815
    status = serializers.CharField()
    etag = serializers.CharField()
    htmlLink = serializers.CharField(source="html_link")  # noqa: N815
    updated = serializers.CharField()


class CalendarSyncUpdateSerializer(serializers.Serializer):
    calendarId = serializers.CharField(source="calendar_id")  # noqa: N815
    items = ProviderEventSerializer(many=True)
    fullResync = serializers.BooleanField(source="full_resync")  # noqa: N815
    error = serializers.CharField()


class WatchChannelSerializer(serializers.Serializer):
    channelId = serializers.CharField(source="channel_id")  # noqa: N815
    resourceId = serializers.CharField(source="resource_id")  # noqa: N815
    expiresAt = serializers.DateTimeField(source="expires_at", allow_null=True)  # noqa: N815


class CalendarDescriptorSerializer(serializers.Serializer):
    id = serializers.CharField()  # noqa: A003
    name = serializers.CharField()
    color = serializers.CharField()


class MergedEventSerializer(serializers.Serializer):
    id = serializers.CharField()  # noqa: A003
    source = serializers.CharField()
    title = serializers.CharField()
    description = serializers.CharField()
    location = serializers.CharField()
    startTime = serializers.DateTimeField(source="start_time")  # noqa: N815
    endTime = serializers.DateTimeField(source="end_time")  # noqa: N815
    isAllDay = serializers.BooleanField(source="is_all_day")  # noqa: N815
    calendar = CalendarDescriptorSerializer()
    externalEventId = serializers.CharField(source="external_event_id")  # noqa: N815
    htmlLink = serializers.CharField(source="html_link")  # noqa: N815


class UnifiedViewSerializer(serializers.Serializer):
    events = MergedEventSerializer(many=True)
    total = serializers.IntegerField()
    timeRange = serializers.SerializerMethodField()  # noqa: N815
    includeLocal = serializers.BooleanField(source="include_local")  # noqa: N815
    includeExternal = serializers.BooleanField(source="include_external")  # noqa: N815
    requiresReauth = serializers.BooleanField(source="requires_reauth")  # noqa: N815
    degradedReason = serializers.CharField(source="degraded_reason")  # noqa: N815

    def get_timeRange(self, obj) -> dict[str, str]:  # noqa: N802
        field = serializers.DateTimeField()
        return {
            "timeMin": field.to_representation(obj.time_min),
            "timeMax": field.to_representation(obj.time_max),
        }


class EventSearchResultSerializer(serializers.Serializer):
    events = MergedEventSerializer(many=True)
    total = serializers.IntegerField()
    searchTerm = serializers.SerializerMethodField()  # noqa: N815
    includeExternal = serializers.BooleanField(source="include_external")  # noqa: N815
    requiresReauth = serializers.BooleanField(source="requires_reauth")  # noqa: N815
    degradedReason = serializers.CharField(source="degraded_reason")  # noqa: N815

    def get_searchTerm(self, obj) -> str:  # noqa: N802
        return self.context.get("search_term", "")


class CalendarSummarySerializer(serializers.Serializer):
    totalEvents = serializers.IntegerField(source="total_events")  # noqa: N815
    sourceBreakdown = serializers.SerializerMethodField()  # noqa: N815
    calendarBreakdown = serializers.SerializerMethodField()  # noqa: N815
    timeRange = serializers.SerializerMethodField()  # noqa: N815
    includeExternal = serializers.BooleanField(source="include_external")  # noqa: N815
    requiresReauth = serializers.BooleanField(source="requires_reauth")  # noqa: N815
    degradedReason = serializers.CharField(source="degraded_reason")  # noqa: N815

    def get_sourceBreakdown(self, obj) -> dict[str, int]:  # noqa: N802
        return {"local": obj.local_count, "external": obj.external_count}

    def get_calendarBreakdown(self, obj) -> list[dict]:  # noqa: N802
        return [
            {
                "id": item.calendar.id,
                "name": item.calendar.name,
                "color": item.calendar.color,
                "source": item.source,
                "eventCount": item.event_count,
            }
            for item in obj.calendars
        ]

    def get_timeRange(self, obj) -> dict[str, str]:  # noqa: N802
        field = serializers.DateTimeField()
        return {
            "timeMin": field.to_representation(obj.time_min),
            "timeMax": field.to_representation(obj.time_max),
        }


class CalendarSerializer(serializers.ModelSerializer):
    class Meta:
        model = Calendar
        fields = (
            "id",
            "name",
            "description",
            "color",
            "mirror_to_provider",
            "is_default",
            "created",
            "modified",
        )
        read_only_fields = ("id", "created", "modified")

    def create(self, validated_data):
        validated_data["owner"] = self.context["request"].user
        return super().create(validated_data)


class CalendarEventSerializer(serializers.ModelSerializer):
    calendar = serializers.PrimaryKeyRelatedField(queryset=Calendar.objects.none())
    start_time = serializers.DateTimeField(required=True)
    end_time = serializers.DateTimeField(required=True)

    class Meta:
        model = CalendarEvent
        fields = (
            "id",
            "calendar",
            "title",
            "description",
            "location",
            "start_time",
            "end_time",
            "external_calendar_id",
            "external_event_id",
            "external_etag",
            "is_mirrored",
            "created",
            "modified",
        )
        read_only_fields = (
            "id",
            "external_calendar_id",
            "external_event_id",
            "external_etag",
            "is_mirrored",
            "created",
            "modified",
        )

    @inject
    def __init__(
        self,
        *args,
        calendar_event_service: Annotated[
            "CalendarEventService | None", Provide["calendar_event_service"]
        ] = None,
        **kwargs,
    ):
        self.calendar_event_service = calendar_event_service
        super().__init__(*args, **kwargs)
        request = self.context.get("request") if self.context else None
        user = request.user if request else None
        if user and user.is_authenticated:
            self.fields["calendar"].queryset = Calendar.objects.owned_by(user)

    def validate(self, attrs):
        start_time = attrs.get("start_time", getattr(self.instance, "start_time", None))
        end_time = attrs.get("end_time", getattr(self.instance, "end_time", None))
        if start_time and end_time and end_time <= start_time:
            raise serializers.ValidationError({"end_time": "End time must be after start time."})
        return attrs

    def _build_event_data(self, validated_data) -> CalendarEventInputData:
        instance = self.instance
        return CalendarEventInputData(
            title=validated_data.get("title", getattr(instance, "title", "")),
            description=validated_data.get("description", getattr(instance, "description", "")),
            location=validated_data.get("location", getattr(instance, "location", "")),
            start_time=validated_data.get("start_time", getattr(instance, "start_time", None)),
            end_time=validated_data.get("end_time", getattr(instance, "end_time", None)),
        )

    def create(self, validated_data):
        if not self.calendar_event_service:
            raise ValueError("Calendar event service not available")
        return self.calendar_event_service.create_event(
            validated_data["calendar"], self._build_event_data(validated_data)
        )

    def update(self, instance, validated_data):
        if not self.calendar_event_service:
            raise ValueError("Calendar event service not available")
        return self.calendar_event_service.update_event(
            instance,
            self._build_event_data(validated_data),
            calendar=validated_data.get("calendar"),
        )
