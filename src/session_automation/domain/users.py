"""Domain models for users and their push tokens."""

from dataclasses import dataclass
from datetime import datetime, timedelta


@dataclass(frozen=True)
class PushToken:
    """A device push token uploaded by the app."""

    token: str
    uploaded_date: datetime

    def is_expired(self, now: datetime, max_age: timedelta) -> bool:
        """Return True once the token is older than the allowed age."""
        return now - self.uploaded_date > max_age


@dataclass(frozen=True)
class NotificationPreferences:
    """Per-user notification switches."""

    session_notifications: bool = False
    other_notifications: bool = False


@dataclass(frozen=True)
class UserRecord:
    """Represents a user as seen by the notification dispatcher."""

    id: str
    notification_preferences: NotificationPreferences | None
    fcm_tokens: tuple[PushToken, ...] | None
    tokens_version: int = 0

    @property
    def wants_session_notifications(self) -> bool:
        # Missing preferences mean notifications are off.
        prefs = self.notification_preferences
        return prefs is not None and prefs.session_notifications
