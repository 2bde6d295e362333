"""Domain models for session push notifications."""

from dataclasses import dataclass, field
from enum import StrEnum

NOTIFICATION_TYPE = "session_status_change"


class TargetRole(StrEnum):
    """Role a recipient plays in a session."""

    OWNER = "owner"
    SITTER = "sitter"


@dataclass(frozen=True)
class NotificationTarget:
    """A user to notify about a session, with their role."""

    user_id: str
    role: TargetRole


@dataclass(frozen=True)
class TokenTarget:
    """One device token resolved for a notification target."""

    token: str
    user_id: str
    role: TargetRole


@dataclass(frozen=True)
class PushMessage:
    """A platform-neutral push message plus the platform overrides we send."""

    title: str
    body: str
    data: dict[str, str]
    android: dict[str, object] = field(default_factory=lambda: {"priority": "high"})
    apns: dict[str, object] = field(default_factory=dict)


@dataclass
class DispatchReport:
    """Outcome of notifying everyone attached to one session transition."""

    session_id: str
    new_status: str
    recipients: int = 0
    targets_skipped: int = 0
    successes: int = 0
    failures: int = 0
    invalid_tokens: int = 0
    tokens_removed: int = 0
    payloads_skipped: int = 0

    @property
    def attempted(self) -> int:
        return self.successes + self.failures + self.invalid_tokens
