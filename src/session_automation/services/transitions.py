"""Time-driven status transitions for sitting sessions."""

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Protocol

from session_automation.domain.errors import (
    MissingSessionFieldError,
    StoreError,
    SweepFailedError,
)
from session_automation.domain.sessions import (
    CommitResult,
    SessionRef,
    SessionStatus,
    SitterSession,
    StatusUpdate,
)
from session_automation.services.notifications import NotificationDispatcher

_logger = logging.getLogger(__name__)

START_WINDOW = timedelta(minutes=10)
EXTENSION_GRACE = timedelta(hours=2)


class SessionRepository(Protocol):
    """Persistence interface for live sessions."""

    def query_sessions(
        self,
        status: SessionStatus,
        field: str,
        lower: datetime | None = None,
        upper: datetime | None = None,
    ) -> list[SitterSession]:
        """Return sessions in a status whose `field` lies within the bounds."""

    def batch_update_status(self, updates: Sequence[StatusUpdate]) -> CommitResult:
        """Apply status updates and return the refs that were written."""


@dataclass(frozen=True)
class Transition:
    """Exit condition for one source status."""

    source: SessionStatus
    target: SessionStatus
    field: str
    window: Callable[[datetime], tuple[datetime | None, datetime | None]]


TRANSITIONS: dict[SessionStatus, Transition] = {
    SessionStatus.UPCOMING: Transition(
        source=SessionStatus.UPCOMING,
        target=SessionStatus.IN_PROGRESS,
        field="startDate",
        window=lambda now: (now - START_WINDOW, now + START_WINDOW),
    ),
    SessionStatus.IN_PROGRESS: Transition(
        source=SessionStatus.IN_PROGRESS,
        target=SessionStatus.EXTENDED,
        field="endDate",
        window=lambda now: (None, now),
    ),
    SessionStatus.EXTENDED: Transition(
        source=SessionStatus.EXTENDED,
        target=SessionStatus.COMPLETED,
        field="lastStatusUpdate",
        window=lambda now: (None, now - EXTENSION_GRACE),
    ),
}


def next_status(status: SessionStatus) -> SessionStatus | None:
    """Return the status a session moves to next, if it moves automatically."""
    transition = TRANSITIONS.get(status)
    return transition.target if transition else None


@dataclass
class SweepResult:
    """Counts from one transition sweep."""

    transitioned: dict[str, int] = field(
        default_factory=lambda: {status.value: 0 for status in TRANSITIONS}
    )
    notifications_sent: int = 0
    notifications_failed: int = 0
    tokens_removed: int = 0
    dispatch_errors: int = 0
    failed_commits: int = 0

    @property
    def total_transitioned(self) -> int:
        return sum(self.transitioned.values())

    def as_dict(self) -> dict[str, object]:
        return {
            "transitioned": dict(self.transitioned),
            "total_transitioned": self.total_transitioned,
            "notifications_sent": self.notifications_sent,
            "notifications_failed": self.notifications_failed,
            "tokens_removed": self.tokens_removed,
            "dispatch_errors": self.dispatch_errors,
            "failed_commits": self.failed_commits,
        }


@dataclass
class SessionStatusService:
    """Moves sessions through upcoming, inProgress, extended and completed."""

    repository: SessionRepository
    dispatcher: NotificationDispatcher
    batch_size: int = 500

    async def run_transition_sweep(self, now: datetime) -> SweepResult:
        """Advance every session whose time boundary has passed by one step.

        Each session is evaluated against its current status only, so a
        delayed session catches up one step per run. Re-running with the same
        `now` is a no-op for sessions already moved.
        """
        _logger.info("Starting session status update check at %s", now.isoformat())
        candidates = await self._collect_candidates(now)
        _logger.info(
            "Sessions to update: %s to in-progress, %s to extended, %s to completed",
            len(candidates[SessionStatus.UPCOMING]),
            len(candidates[SessionStatus.IN_PROGRESS]),
            len(candidates[SessionStatus.EXTENDED]),
        )

        staged: list[tuple[SitterSession, StatusUpdate]] = [
            (
                session,
                StatusUpdate(
                    ref=session.ref,
                    expected_status=source,
                    new_status=TRANSITIONS[source].target,
                    last_status_update=now,
                ),
            )
            for source, sessions in candidates.items()
            for session in sessions
        ]

        result = SweepResult()
        if not staged:
            _logger.info("No session updates needed")
            return result

        for start in range(0, len(staged), self.batch_size):
            chunk = staged[start : start + self.batch_size]
            try:
                commit = await asyncio.to_thread(
                    self.repository.batch_update_status,
                    [update for _, update in chunk],
                )
            except StoreError:
                _logger.exception(
                    "Failed to commit %s session status updates", len(chunk)
                )
                result.failed_commits += 1
                continue
            await self._dispatch_committed(chunk, commit, now, result)

        _logger.info(
            "Session updates complete: %s sessions updated, %s notifications sent, "
            "%s failed",
            result.total_transitioned,
            result.notifications_sent,
            result.notifications_failed,
        )
        if result.failed_commits:
            raise SweepFailedError(
                f"Failed to update session statuses: {result.failed_commits} "
                "batch commit(s) failed",
                result,
            )
        return result

    async def _collect_candidates(
        self, now: datetime
    ) -> dict[SessionStatus, list[SitterSession]]:
        queries = []
        for transition in TRANSITIONS.values():
            lower, upper = transition.window(now)
            queries.append(
                asyncio.to_thread(
                    self.repository.query_sessions,
                    transition.source,
                    transition.field,
                    lower,
                    upper,
                )
            )
        try:
            results = await asyncio.gather(*queries)
        except StoreError as exc:
            _logger.error("Error querying sessions for status updates: %s", exc)
            raise SweepFailedError(
                f"Failed to update session statuses: {exc}"
            ) from exc
        return dict(zip(TRANSITIONS, results, strict=True))

    async def _dispatch_committed(
        self,
        chunk: list[tuple[SitterSession, StatusUpdate]],
        commit: CommitResult,
        now: datetime,
        result: SweepResult,
    ) -> None:
        committed: set[SessionRef] = set(commit.committed)
        for session, update in chunk:
            if update.ref not in committed:
                _logger.info(
                    "[Session %s] Status changed elsewhere; skipping notification",
                    session.id,
                )
                continue
            result.transitioned[update.expected_status.value] += 1
            try:
                report = await self.dispatcher.dispatch(
                    session, update.new_status, now
                )
            except MissingSessionFieldError as exc:
                result.dispatch_errors += 1
                _logger.error(
                    "Failed to send notifications for session %s: %s",
                    session.ref.path,
                    exc,
                )
                continue
            except Exception:
                result.dispatch_errors += 1
                _logger.exception(
                    "Failed to send notifications for session %s", session.ref.path
                )
                continue
            result.notifications_sent += report.attempted
            result.notifications_failed += report.failures
            result.tokens_removed += report.tokens_removed
