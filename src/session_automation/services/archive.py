"""Archival of completed sessions past the retention window."""

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from session_automation.domain.errors import ArchiveSweepError, StoreError
from session_automation.domain.sessions import (
    ArchiveMove,
    CommitResult,
    SessionStatus,
    SitterSession,
)

_logger = logging.getLogger(__name__)

DEFAULT_RETENTION = timedelta(days=7)


class ArchiveRepository(Protocol):
    """Persistence interface for moving sessions into the archive."""

    def query_sessions(
        self,
        status: SessionStatus,
        field: str,
        lower: datetime | None = None,
        upper: datetime | None = None,
    ) -> list[SitterSession]:
        """Return sessions in a status whose `field` lies within the bounds."""

    def batch_archive(self, moves: Sequence[ArchiveMove]) -> CommitResult:
        """Write each archive copy, then delete its live original."""


@dataclass
class ArchiveResult:
    """Counts from one archival sweep."""

    candidates: int = 0
    archived: int = 0
    failed_chunks: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "candidates": self.candidates,
            "archived": self.archived,
            "failed_chunks": self.failed_chunks,
        }


@dataclass
class ArchiveService:
    """Moves stale completed sessions into their nest's archive."""

    repository: ArchiveRepository
    batch_size: int = 250

    async def run_archival_sweep(
        self, now: datetime, retention: timedelta = DEFAULT_RETENTION
    ) -> ArchiveResult:
        """Archive completed sessions that ended at least `retention` ago."""
        _logger.info("Starting session archiving process...")
        cutoff = now - retention
        try:
            sessions = await asyncio.to_thread(
                self.repository.query_sessions,
                SessionStatus.COMPLETED,
                "endDate",
                None,
                cutoff,
            )
        except StoreError as exc:
            _logger.error("Error archiving sessions: %s", exc)
            raise ArchiveSweepError(f"Failed to archive sessions: {exc}") from exc

        result = ArchiveResult(candidates=len(sessions))
        _logger.info("Found %s completed sessions to archive", len(sessions))
        if not sessions:
            _logger.info("No sessions needed archiving")
            return result

        moves = [build_archive_move(session, now) for session in sessions]
        for start in range(0, len(moves), self.batch_size):
            chunk = moves[start : start + self.batch_size]
            try:
                commit = await asyncio.to_thread(self.repository.batch_archive, chunk)
            except StoreError:
                # The chunk stays live and is picked up again on the next run.
                _logger.exception("Failed to archive %s sessions", len(chunk))
                result.failed_chunks += 1
                continue
            result.archived += commit.count

        _logger.info(
            "Session archiving complete: %s sessions archived", result.archived
        )
        if result.failed_chunks:
            raise ArchiveSweepError(
                f"Failed to archive sessions: {result.failed_chunks} chunk(s) failed",
                result,
            )
        return result


def build_archive_move(session: SitterSession, now: datetime) -> ArchiveMove:
    """Describe how a session is copied into the archive of its nest."""
    return ArchiveMove(
        source=session.ref,
        document=dict(session.document),
        patched_fields={
            "status": SessionStatus.ARCHIVED.value,
            "archivedDate": now,
        },
    )
