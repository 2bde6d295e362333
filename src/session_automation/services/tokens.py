"""Pruning of push tokens the transport reported as invalid."""

import asyncio
import logging
from collections.abc import Collection, Mapping, Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol

from session_automation.domain.errors import StoreError
from session_automation.domain.users import UserRecord

_logger = logging.getLogger(__name__)


class UserRepository(Protocol):
    """Persistence interface for user notification data."""

    def get_user(self, user_id: str) -> UserRecord | None:
        """Return a user with preferences and tokens, if present."""

    def remove_user_token(self, user_id: str, token: str) -> bool:
        """Drop one token from the user's list; return True if it was present."""

    def remove_tokens_if_unchanged(
        self, user_id: str, tokens: Collection[str], expected_version: int
    ) -> int | None:
        """Drop tokens only if the list is still at `expected_version`.

        Entries other than the dropped tokens are written back untouched.
        Returns how many entries were removed, or None on a version conflict.
        """


class TokenPruneMode(StrEnum):
    """How invalid tokens are removed from a user's token list."""

    # Plain read-modify-write; a concurrent upload may race with the write.
    SNAPSHOT = "snapshot"
    # Conditional write on the token list version, retried on conflict.
    VERSIONED = "versioned"


@dataclass
class TokenReconciler:
    """Removes tokens that the push transport rejected as unregistered."""

    repository: UserRepository
    mode: TokenPruneMode = TokenPruneMode.SNAPSHOT
    max_attempts: int = 3

    async def remove_invalid_tokens(
        self, session_id: str, invalid_tokens: Mapping[str, Sequence[str]]
    ) -> int:
        """Remove invalid tokens grouped by user and return how many went away."""
        removed = 0
        for user_id, tokens in invalid_tokens.items():
            try:
                if self.mode is TokenPruneMode.VERSIONED:
                    removed += await self._remove_versioned(user_id, tokens)
                else:
                    removed += await self._remove_snapshot(user_id, tokens)
            except StoreError as exc:
                _logger.error(
                    "[Session %s] Failed to remove invalid tokens for user %s: %s",
                    session_id,
                    user_id,
                    exc,
                )
        return removed

    async def _remove_snapshot(self, user_id: str, tokens: Sequence[str]) -> int:
        removed = 0
        for token in dict.fromkeys(tokens):
            if await asyncio.to_thread(
                self.repository.remove_user_token, user_id, token
            ):
                removed += 1
        if removed:
            _logger.info("Removed %s invalid token(s) for user %s", removed, user_id)
        return removed

    async def _remove_versioned(self, user_id: str, tokens: Sequence[str]) -> int:
        stale = frozenset(tokens)
        for _ in range(self.max_attempts):
            user = await asyncio.to_thread(self.repository.get_user, user_id)
            if user is None:
                _logger.warning(
                    "User %s not found when trying to remove invalid token", user_id
                )
                return 0
            removed = await asyncio.to_thread(
                self.repository.remove_tokens_if_unchanged,
                user_id,
                stale,
                user.tokens_version,
            )
            if removed is None:
                continue
            if removed:
                _logger.info(
                    "Removed %s invalid token(s) for user %s", removed, user_id
                )
            return removed
        _logger.warning(
            "Gave up removing invalid tokens for user %s after %s conflicting writes",
            user_id,
            self.max_attempts,
        )
        return 0
