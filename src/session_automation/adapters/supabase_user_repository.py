"""Supabase-backed user repository."""

from collections.abc import Collection
from dataclasses import dataclass

import httpx
from postgrest.exceptions import APIError
from supabase import Client

from session_automation.adapters.supabase_session_repository import parse_timestamp
from session_automation.domain.errors import StoreError
from session_automation.domain.users import (
    NotificationPreferences,
    PushToken,
    UserRecord,
)
from session_automation.services.tokens import UserRepository

_STORE_ERRORS = (APIError, httpx.HTTPError)
_USER_COLUMNS = "id, notification_preferences, fcm_tokens, fcm_tokens_version"


@dataclass
class SupabaseUserRepository(UserRepository):
    """Supabase implementation for user preferences and push tokens."""

    client: Client
    table: str = "users"

    def get_user(self, user_id: str) -> UserRecord | None:
        """Return the user with preferences and tokens, if present."""
        row = self._fetch_row(user_id)
        if row is None:
            return None
        return row_to_user(row)

    def remove_user_token(self, user_id: str, token: str) -> bool:
        """Drop one token from the user's list with a plain read-modify-write."""
        row = self._fetch_row(user_id)
        if row is None:
            return False
        raw_tokens, remaining = _without_tokens(row, {token})
        if len(remaining) == len(raw_tokens):
            return False
        version = int(row.get("fcm_tokens_version") or 0)
        try:
            self.client.table(self.table).update(
                {"fcm_tokens": remaining, "fcm_tokens_version": version + 1}
            ).eq("id", user_id).execute()
        except _STORE_ERRORS as exc:
            raise StoreError(f"Failed to update tokens for user {user_id}") from exc
        return True

    def remove_tokens_if_unchanged(
        self, user_id: str, tokens: Collection[str], expected_version: int
    ) -> int | None:
        """Drop tokens with a write conditioned on the token list version."""
        row = self._fetch_row(user_id)
        if row is None:
            return 0
        if int(row.get("fcm_tokens_version") or 0) != expected_version:
            return None
        raw_tokens, remaining = _without_tokens(row, tokens)
        removed = len(raw_tokens) - len(remaining)
        if not removed:
            return 0
        try:
            response = (
                self.client.table(self.table)
                .update(
                    {
                        "fcm_tokens": remaining,
                        "fcm_tokens_version": expected_version + 1,
                    }
                )
                .eq("id", user_id)
                .eq("fcm_tokens_version", expected_version)
                .execute()
            )
        except _STORE_ERRORS as exc:
            raise StoreError(f"Failed to update tokens for user {user_id}") from exc
        return removed if response.data else None

    def _fetch_row(self, user_id: str) -> dict[str, object] | None:
        try:
            response = (
                self.client.table(self.table)
                .select(_USER_COLUMNS)
                .eq("id", user_id)
                .limit(1)
                .execute()
            )
        except _STORE_ERRORS as exc:
            raise StoreError(f"Failed to load user {user_id}") from exc
        if not response.data:
            return None
        return response.data[0]


def row_to_user(row: dict[str, object]) -> UserRecord:
    """Build a user record from a `users` table row."""
    prefs = row.get("notification_preferences")
    raw_tokens = row.get("fcm_tokens")
    tokens = None
    if isinstance(raw_tokens, list):
        tokens = tuple(
            PushToken(
                token=str(item["token"]),
                uploaded_date=parse_timestamp(item["uploadedDate"]),
            )
            for item in raw_tokens
            if isinstance(item, dict) and item.get("token") and item.get("uploadedDate")
        )
    return UserRecord(
        id=str(row["id"]),
        notification_preferences=(
            NotificationPreferences(
                session_notifications=bool(prefs.get("sessionNotifications", False)),
                other_notifications=bool(prefs.get("otherNotifications", False)),
            )
            if isinstance(prefs, dict)
            else None
        ),
        fcm_tokens=tokens,
        tokens_version=int(row.get("fcm_tokens_version") or 0),
    )


def _without_tokens(
    row: dict[str, object], tokens: Collection[str]
) -> tuple[list[object], list[object]]:
    """Return the raw token entries and those left after dropping `tokens`."""
    raw_tokens = row.get("fcm_tokens")
    if not isinstance(raw_tokens, list):
        return [], []
    remaining = [
        item
        for item in raw_tokens
        if not (isinstance(item, dict) and _token_of(item) in tokens)
    ]
    return raw_tokens, remaining


def _token_of(item: dict[str, object]) -> str | None:
    token = item.get("token")
    return token if isinstance(token, str) else None
