"""Merging of local and provider event streams into one timeline.

Deduplication is a heuristic on ``(title, start, calendar id)``; it can merge two
distinct events with the same title starting at the same instant. Exact correlation is
only possible for mirrored events, through the provider event id stored on the local
event.
"""

from collections.abc import Iterable

from calendar_integration.constants import EventSource
from calendar_integration.services.dataclasses import MergedEvent


def sort_events(events: Iterable[MergedEvent]) -> list[MergedEvent]:
    """Sort by start time. Ties keep their relative order."""
    return sorted(events, key=lambda event: event.start_time)


def deduplicate_events(events: Iterable[MergedEvent]) -> list[MergedEvent]:
    """Drop duplicates keeping the first position of each key.

    When a key collides, the local entry wins: it takes the place of an external entry
    seen before it, and a later external entry is discarded. External events whose id is
    the provider id of a local event in the stream are always discarded.
    """
    events = list(events)
    mirrored_ids = {
        event.external_event_id
        for event in events
        if event.source == EventSource.LOCAL and event.external_event_id
    }

    unique: list[MergedEvent] = []
    position_by_key: dict[tuple, int] = {}
    for event in events:
        if event.source == EventSource.EXTERNAL and event.id in mirrored_ids:
            continue

        key = event.dedup_key
        position = position_by_key.get(key)
        if position is None:
            position_by_key[key] = len(unique)
            unique.append(event)
        elif unique[position].source == EventSource.EXTERNAL and event.source == EventSource.LOCAL:
            unique[position] = event
    return unique


def merge_events(
    local_events: Iterable[MergedEvent], external_events: Iterable[MergedEvent]
) -> list[MergedEvent]:
    return deduplicate_events(sort_events([*local_events, *external_events]))
