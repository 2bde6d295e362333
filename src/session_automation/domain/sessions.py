"""Domain models for sitting sessions."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

from session_automation.domain.errors import InvalidSessionPathError

_NESTS = "nests"
_SESSIONS = "sessions"
_ARCHIVED_SESSIONS = "archivedSessions"


class SessionStatus(StrEnum):
    """Lifecycle status of a sitting session."""

    UPCOMING = "upcoming"
    IN_PROGRESS = "inProgress"
    EXTENDED = "extended"
    COMPLETED = "completed"
    ARCHIVED = "archived"


@dataclass(frozen=True)
class SessionRef:
    """Location of a session document inside its nest."""

    nest_id: str
    session_id: str

    @classmethod
    def from_path(cls, path: str) -> "SessionRef":
        """Parse a `nests/{nest_id}/sessions/{session_id}` path."""
        segments = path.strip("/").split("/")
        if (
            len(segments) != 4  # noqa: PLR2004
            or segments[0] != _NESTS
            or segments[2] != _SESSIONS
            or not segments[1]
            or not segments[3]
        ):
            raise InvalidSessionPathError(f"Not a session path: {path!r}")
        return cls(nest_id=segments[1], session_id=segments[3])

    @property
    def path(self) -> str:
        return f"{_NESTS}/{self.nest_id}/{_SESSIONS}/{self.session_id}"

    @property
    def archive_path(self) -> str:
        return f"{_NESTS}/{self.nest_id}/{_ARCHIVED_SESSIONS}/{self.session_id}"


@dataclass(frozen=True)
class AssignedSitter:
    """Sitter assigned to a session."""

    user_id: str


@dataclass(frozen=True)
class SitterSession:
    """Represents a persisted sitting session."""

    ref: SessionRef
    id: str
    status: SessionStatus
    start_date: datetime
    end_date: datetime
    owner_id: str | None
    title: str = ""
    assigned_sitter: AssignedSitter | None = None
    last_status_update: datetime | None = None
    document: dict[str, object] = field(default_factory=dict, compare=False)

    def __post_init__(self) -> None:
        if self.start_date > self.end_date:
            raise ValueError(
                f"Session {self.id} starts after it ends "
                f"({self.start_date.isoformat()} > {self.end_date.isoformat()})"
            )


@dataclass(frozen=True)
class StatusUpdate:
    """A staged status change for one session."""

    ref: SessionRef
    expected_status: SessionStatus
    new_status: SessionStatus
    last_status_update: datetime


@dataclass(frozen=True)
class ArchiveMove:
    """Copy a live session into its nest's archive, then delete the original."""

    source: SessionRef
    document: dict[str, object]
    patched_fields: dict[str, object]

    @property
    def destination_path(self) -> str:
        return self.source.archive_path

    def archived_document(self) -> dict[str, object]:
        """Return the full document with the archive fields applied."""
        return {**self.document, **self.patched_fields}


@dataclass(frozen=True)
class CommitResult:
    """Refs the store confirmed as written by a batch commit."""

    committed: tuple[SessionRef, ...] = ()

    @property
    def count(self) -> int:
        return len(self.committed)
