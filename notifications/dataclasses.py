from dataclasses import dataclass

from notifications.constants import NotificationKind


@dataclass
class NotificationPayload:
    title: str
    body: str
    kind: NotificationKind
