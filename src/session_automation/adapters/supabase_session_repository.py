"""Supabase-backed session repository."""

import logging
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime

import httpx
from postgrest.exceptions import APIError
from supabase import Client

from session_automation.domain.errors import StoreError
from session_automation.domain.sessions import (
    ArchiveMove,
    AssignedSitter,
    CommitResult,
    SessionRef,
    SessionStatus,
    SitterSession,
    StatusUpdate,
)
from session_automation.services.archive import ArchiveRepository
from session_automation.services.transitions import SessionRepository

_logger = logging.getLogger(__name__)

# Document field name -> table column.
_COLUMNS = {
    "status": "status",
    "startDate": "start_date",
    "endDate": "end_date",
    "lastStatusUpdate": "last_status_update",
    "archivedDate": "archived_date",
}
_STORE_ERRORS = (APIError, httpx.HTTPError)


@dataclass
class SupabaseSessionRepository(SessionRepository, ArchiveRepository):
    """Supabase implementation for live and archived sessions."""

    client: Client
    sessions_table: str = "sessions"
    archived_sessions_table: str = "archived_sessions"
    page_size: int = 1000

    def query_sessions(
        self,
        status: SessionStatus,
        field: str,
        lower: datetime | None = None,
        upper: datetime | None = None,
    ) -> list[SitterSession]:
        """Return sessions in a status whose `field` lies within the bounds."""
        column = _column(field)
        rows: list[dict[str, object]] = []
        offset = 0
        while True:
            query = (
                self.client.table(self.sessions_table)
                .select("*")
                .eq("status", status.value)
            )
            if lower is not None:
                query = query.gte(column, lower.isoformat())
            if upper is not None:
                query = query.lte(column, upper.isoformat())
            try:
                response = (
                    query.order("id")
                    .range(offset, offset + self.page_size - 1)
                    .execute()
                )
            except _STORE_ERRORS as exc:
                raise StoreError(f"Failed to query {status.value} sessions") from exc
            page = response.data or []
            rows.extend(page)
            if len(page) < self.page_size:
                break
            offset += self.page_size

        sessions = []
        for row in rows:
            try:
                sessions.append(row_to_session(row))
            except (KeyError, TypeError, ValueError) as exc:
                _logger.warning(
                    "Skipping malformed session row %s: %s", row.get("id"), exc
                )
        return sessions

    def batch_update_status(self, updates: Sequence[StatusUpdate]) -> CommitResult:
        """Apply status updates, guarded by each session's expected status."""
        groups: dict[tuple, list[str]] = defaultdict(list)
        for update in updates:
            key = (
                update.ref.nest_id,
                update.expected_status,
                update.new_status,
                update.last_status_update,
            )
            groups[key].append(update.ref.session_id)

        committed: list[SessionRef] = []
        for (nest_id, expected, new, changed_at), session_ids in groups.items():
            try:
                response = (
                    self.client.table(self.sessions_table)
                    .update(
                        {
                            "status": new.value,
                            "last_status_update": changed_at.isoformat(),
                        }
                    )
                    .eq("nest_id", nest_id)
                    .eq("status", expected.value)
                    .in_("id", session_ids)
                    .execute()
                )
            except _STORE_ERRORS as exc:
                raise StoreError(
                    f"Failed to update {len(session_ids)} sessions in nest {nest_id}"
                ) from exc
            committed.extend(_refs(response.data))
        return CommitResult(committed=tuple(committed))

    def batch_archive(self, moves: Sequence[ArchiveMove]) -> CommitResult:
        """Upsert archive copies first, then delete the archived live rows."""
        if not moves:
            return CommitResult()
        rows = [_archive_row(move) for move in moves]
        try:
            response = (
                self.client.table(self.archived_sessions_table)
                .upsert(rows, on_conflict="nest_id,id")
                .execute()
            )
        except _STORE_ERRORS as exc:
            raise StoreError(f"Failed to write {len(rows)} archived sessions") from exc

        by_nest: dict[str, list[str]] = defaultdict(list)
        for ref in _refs(response.data):
            by_nest[ref.nest_id].append(ref.session_id)

        deleted: list[SessionRef] = []
        for nest_id, session_ids in by_nest.items():
            try:
                response = (
                    self.client.table(self.sessions_table)
                    .delete()
                    .eq("nest_id", nest_id)
                    .eq("status", SessionStatus.COMPLETED.value)
                    .in_("id", session_ids)
                    .execute()
                )
            except _STORE_ERRORS as exc:
                raise StoreError(
                    f"Failed to delete archived sessions in nest {nest_id}"
                ) from exc
            deleted.extend(_refs(response.data))
        return CommitResult(committed=tuple(deleted))


def row_to_session(row: dict[str, object]) -> SitterSession:
    """Build a session from a `sessions` table row."""
    sitter = row.get("assigned_sitter")
    sitter_id = sitter.get("userID") if isinstance(sitter, dict) else None
    last_update = row.get("last_status_update")
    return SitterSession(
        ref=SessionRef(nest_id=str(row["nest_id"]), session_id=str(row["id"])),
        id=str(row["id"]),
        status=SessionStatus(row["status"]),
        start_date=parse_timestamp(row["start_date"]),
        end_date=parse_timestamp(row["end_date"]),
        owner_id=str(row["owner_id"]) if row.get("owner_id") else None,
        title=str(row.get("title") or ""),
        assigned_sitter=AssignedSitter(user_id=str(sitter_id)) if sitter_id else None,
        last_status_update=parse_timestamp(last_update) if last_update else None,
        document=dict(row),
    )


def parse_timestamp(value: object) -> datetime:
    """Parse a stored timestamp, treating naive values as UTC."""
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed


def _column(field: str) -> str:
    try:
        return _COLUMNS[field]
    except KeyError:
        raise ValueError(f"Unsupported session field: {field}") from None


def _archive_row(move: ArchiveMove) -> dict[str, object]:
    row = dict(move.document)
    for field, value in move.patched_fields.items():
        row[_COLUMNS.get(field, field)] = (
            value.isoformat() if isinstance(value, datetime) else value
        )
    row["nest_id"] = move.source.nest_id
    row["id"] = move.source.session_id
    return row


def _refs(rows: list[dict[str, object]] | None) -> list[SessionRef]:
    return [
        SessionRef(nest_id=str(row["nest_id"]), session_id=str(row["id"]))
        for row in rows or []
    ]
