import datetime

from django.utils import timezone

import pytest

from calendar_integration.factories import CalendarIntegrationFactory
from calendar_integration.models import CalendarEvent, CalendarSyncState
from calendar_integration.services.dataclasses import ExternalEventRef
from users.factories import UserFactory


@pytest.fixture
def calendar(user):
    return CalendarIntegrationFactory.create_calendar(user)


@pytest.mark.django_db
class TestCalendarEventQuerySet:
    def test_overlapping_is_half_open(self, calendar):
        start = timezone.now().replace(microsecond=0)
        ends_at_window_start = CalendarIntegrationFactory.create_event(
            calendar, start_time=start - datetime.timedelta(hours=1)
        )
        straddling = CalendarIntegrationFactory.create_event(
            calendar, start_time=start - datetime.timedelta(minutes=30)
        )
        starts_at_window_end = CalendarIntegrationFactory.create_event(
            calendar, start_time=start + datetime.timedelta(hours=2)
        )

        events = CalendarEvent.objects.overlapping(start, start + datetime.timedelta(hours=2))

        assert straddling in events
        assert ends_at_window_start not in events
        assert starts_at_window_end not in events

    def test_owned_by(self, user, calendar):
        own = CalendarIntegrationFactory.create_event(calendar)
        other_calendar = CalendarIntegrationFactory.create_calendar(UserFactory().create_user())
        CalendarIntegrationFactory.create_event(other_calendar)

        assert list(CalendarEvent.objects.owned_by(user)) == [own]

    def test_pending_mirroring_for(self, user, calendar):
        now = timezone.now()
        pending = CalendarIntegrationFactory.create_event(
            calendar, start_time=now + datetime.timedelta(hours=1)
        )
        CalendarIntegrationFactory.create_event(
            calendar,
            start_time=now + datetime.timedelta(hours=2),
            external_calendar_id="managed-cal",
            external_event_id="g1",
        )
        CalendarIntegrationFactory.create_event(
            calendar, start_time=now - datetime.timedelta(hours=2)
        )

        assert list(CalendarEvent.objects.pending_mirroring_for(user, now=now)) == [pending]


@pytest.mark.django_db
class TestModels:
    def test_external_ref(self, calendar):
        event = CalendarIntegrationFactory.create_event(calendar)
        assert event.external_ref is None
        assert event.is_mirrored is False

        event.set_external_ref(ExternalEventRef(calendar_id="c", event_id="e", etag='"1"'))

        assert event.external_ref == ExternalEventRef(calendar_id="c", event_id="e", etag='"1"')
        assert event.is_mirrored is True

    def test_link_expiry(self, user):
        link = CalendarIntegrationFactory.create_google_account_link(user)
        now = timezone.now()

        assert link.is_established is True
        assert link.is_expired(now) is False
        assert link.is_expired(link.expiry) is True
        link.expiry = None
        assert link.is_expired(now) is True

    def test_sync_state_channel_lookup(self, user):
        link = CalendarIntegrationFactory.create_google_account_link(user)
        with_channel = CalendarIntegrationFactory.create_sync_state(
            link, "primary", channel_id="channel-1", resource_id="resource-1"
        )
        CalendarIntegrationFactory.create_sync_state(link, "work")

        assert CalendarSyncState.objects.get_by_channel_id("channel-1") == with_channel
        assert CalendarSyncState.objects.get_by_channel_id("") is None
        assert list(link.sync_states.with_active_channel()) == [with_channel]

        now = timezone.now()
        assert with_channel.is_channel_expired(now) is False
        with_channel.channel_expires_at = now
        assert with_channel.is_channel_expired(now) is True

        with_channel.clear_channel()
        assert with_channel.has_active_channel is False
