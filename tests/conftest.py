"""Shared test fixtures."""

from collections.abc import Collection, Sequence
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta

import pytest

from session_automation.adapters.fcm_client import PushClient
from session_automation.config import Settings
from session_automation.containers import AppContainer
from session_automation.domain.errors import PushSendError, StoreError
from session_automation.domain.notifications import PushMessage
from session_automation.domain.sessions import (
    ArchiveMove,
    AssignedSitter,
    CommitResult,
    SessionRef,
    SessionStatus,
    SitterSession,
    StatusUpdate,
)
from session_automation.domain.users import (
    NotificationPreferences,
    PushToken,
    UserRecord,
)
from session_automation.services.archive import ArchiveRepository, ArchiveService
from session_automation.services.notifications import NotificationDispatcher
from session_automation.services.tokens import TokenReconciler, UserRepository
from session_automation.services.transitions import (
    SessionRepository,
    SessionStatusService,
)

NOW = datetime(2026, 10, 17, 10, 2, tzinfo=UTC)

_FIELDS = {
    "startDate": "start_date",
    "endDate": "end_date",
    "lastStatusUpdate": "last_status_update",
}


def make_session(  # noqa: PLR0913
    session_id: str = "S1",
    *,
    nest_id: str = "nest-1",
    status: SessionStatus = SessionStatus.UPCOMING,
    start_date: datetime = datetime(2026, 10, 17, 10, 5, tzinfo=UTC),
    end_date: datetime = datetime(2026, 10, 17, 11, 0, tzinfo=UTC),
    owner_id: str | None = "owner-1",
    sitter_id: str | None = "sitter-1",
    title: str = "Date night",
    last_status_update: datetime | None = None,
) -> SitterSession:
    document: dict[str, object] = {
        "id": session_id,
        "nest_id": nest_id,
        "status": status.value,
        "title": title,
        "owner_id": owner_id,
        "assigned_sitter": {"userID": sitter_id} if sitter_id else None,
        "start_date": start_date.isoformat(),
        "end_date": end_date.isoformat(),
        "visibility_level": "essential",
    }
    return SitterSession(
        ref=SessionRef(nest_id=nest_id, session_id=session_id),
        id=session_id,
        status=status,
        start_date=start_date,
        end_date=end_date,
        owner_id=owner_id,
        title=title,
        assigned_sitter=AssignedSitter(user_id=sitter_id) if sitter_id else None,
        last_status_update=last_status_update,
        document=document,
    )


def make_user(
    user_id: str,
    *,
    tokens: Sequence[str] | None = ("token",),
    uploaded: datetime = NOW - timedelta(days=1),
    session_notifications: bool | None = True,
    version: int = 0,
) -> UserRecord:
    prefs = (
        NotificationPreferences(session_notifications=session_notifications)
        if session_notifications is not None
        else None
    )
    return UserRecord(
        id=user_id,
        notification_preferences=prefs,
        fcm_tokens=(
            tuple(PushToken(token=token, uploaded_date=uploaded) for token in tokens)
            if tokens is not None
            else None
        ),
        tokens_version=version,
    )


@dataclass
class InMemorySessionStore(SessionRepository, ArchiveRepository):
    """In-memory live and archived sessions for tests."""

    sessions: dict[SessionRef, SitterSession] = field(default_factory=dict)
    archived: dict[SessionRef, dict[str, object]] = field(default_factory=dict)
    fail_queries: bool = False
    fail_commits: int = 0
    fail_deletes: bool = False
    commits: list[int] = field(default_factory=list)

    def add(self, *sessions: SitterSession) -> None:
        for session in sessions:
            self.sessions[session.ref] = session

    def get(self, session_id: str, nest_id: str = "nest-1") -> SitterSession | None:
        return self.sessions.get(SessionRef(nest_id=nest_id, session_id=session_id))

    def query_sessions(
        self,
        status: SessionStatus,
        field: str,
        lower: datetime | None = None,
        upper: datetime | None = None,
    ) -> list[SitterSession]:
        if self.fail_queries:
            raise StoreError("query failed")
        matches = []
        for session in self.sessions.values():
            value = getattr(session, _FIELDS[field])
            if session.status is not status or value is None:
                continue
            if lower is not None and value < lower:
                continue
            if upper is not None and value > upper:
                continue
            matches.append(session)
        return matches

    def batch_update_status(self, updates: Sequence[StatusUpdate]) -> CommitResult:
        if self.fail_commits:
            self.fail_commits -= 1
            raise StoreError("commit failed")
        self.commits.append(len(updates))
        committed = []
        for update in updates:
            session = self.sessions.get(update.ref)
            if session is None or session.status is not update.expected_status:
                continue
            self.sessions[update.ref] = replace(
                session,
                status=update.new_status,
                last_status_update=update.last_status_update,
            )
            committed.append(update.ref)
        return CommitResult(committed=tuple(committed))

    def batch_archive(self, moves: Sequence[ArchiveMove]) -> CommitResult:
        if self.fail_commits:
            self.fail_commits -= 1
            raise StoreError("commit failed")
        self.commits.append(len(moves))
        for move in moves:
            self.archived[move.source] = move.archived_document()
        if self.fail_deletes:
            raise StoreError("delete failed")
        deleted = []
        for move in moves:
            live = self.sessions.get(move.source)
            if live is not None and live.status is SessionStatus.COMPLETED:
                del self.sessions[move.source]
                deleted.append(move.source)
        return CommitResult(committed=tuple(deleted))


@dataclass
class InMemoryUserRepository(UserRepository):
    """In-memory users with push tokens for tests."""

    users: dict[str, UserRecord] = field(default_factory=dict)
    fail_reads: set[str] = field(default_factory=set)
    conflicts: int = 0
    lookups: list[str] = field(default_factory=list)

    def add(self, *users: UserRecord) -> None:
        for user in users:
            self.users[user.id] = user

    def tokens(self, user_id: str) -> list[str]:
        return [token.token for token in self.users[user_id].fcm_tokens or ()]

    def get_user(self, user_id: str) -> UserRecord | None:
        self.lookups.append(user_id)
        if user_id in self.fail_reads:
            raise StoreError(f"cannot read {user_id}")
        return self.users.get(user_id)

    def remove_user_token(self, user_id: str, token: str) -> bool:
        user = self.users.get(user_id)
        if user is None or user.fcm_tokens is None:
            return False
        remaining = tuple(item for item in user.fcm_tokens if item.token != token)
        if len(remaining) == len(user.fcm_tokens):
            return False
        self.users[user_id] = replace(
            user, fcm_tokens=remaining, tokens_version=user.tokens_version + 1
        )
        return True

    def remove_tokens_if_unchanged(
        self, user_id: str, tokens: Collection[str], expected_version: int
    ) -> int | None:
        user = self.users[user_id]
        if self.conflicts:
            # Simulate the device uploading a token between read and write.
            self.conflicts -= 1
            self.users[user_id] = replace(
                user,
                fcm_tokens=(*(user.fcm_tokens or ()), PushToken("fresh", NOW)),
                tokens_version=user.tokens_version + 1,
            )
            return None
        if user.tokens_version != expected_version:
            return None
        current = user.fcm_tokens or ()
        remaining = tuple(item for item in current if item.token not in tokens)
        if len(remaining) == len(current):
            return 0
        self.users[user_id] = replace(
            user, fcm_tokens=remaining, tokens_version=expected_version + 1
        )
        return len(current) - len(remaining)


@dataclass
class FakePushClient(PushClient):
    """Fake push transport that records sends and fails on request."""

    errors: dict[str, PushSendError] = field(default_factory=dict)
    sent: list[tuple[str, PushMessage]] = field(default_factory=list)
    closed: bool = False

    async def send(self, token: str, message: PushMessage) -> None:
        if token in self.errors:
            raise self.errors[token]
        self.sent.append((token, message))

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def settings() -> Settings:
    return Settings(
        supabase_url="https://example.supabase.co",
        supabase_service_key="service-key",
        cron_secret="cron-secret",
        fcm_project_id="nest-note",
    )


@pytest.fixture
def session_store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def user_repository() -> InMemoryUserRepository:
    return InMemoryUserRepository()


@pytest.fixture
def push_client() -> FakePushClient:
    return FakePushClient()


@pytest.fixture
def dispatcher(
    user_repository: InMemoryUserRepository, push_client: FakePushClient
) -> NotificationDispatcher:
    return NotificationDispatcher(
        user_repository=user_repository,
        push_client=push_client,
        token_reconciler=TokenReconciler(user_repository),
    )


@pytest.fixture
def status_service(
    session_store: InMemorySessionStore, dispatcher: NotificationDispatcher
) -> SessionStatusService:
    return SessionStatusService(repository=session_store, dispatcher=dispatcher)


@pytest.fixture
def container(
    settings: Settings,
    session_store: InMemorySessionStore,
    push_client: FakePushClient,
    dispatcher: NotificationDispatcher,
    status_service: SessionStatusService,
) -> AppContainer:
    async def close_resources() -> None:
        await push_client.close()

    return AppContainer(
        settings=settings,
        push_client=push_client,
        dispatcher=dispatcher,
        session_status_service=status_service,
        archive_service=ArchiveService(session_store),
        close_resources=close_resources,
    )
