"""Exceptions raised by the session automation core."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from session_automation.services.archive import ArchiveResult
    from session_automation.services.transitions import SweepResult


class SessionAutomationError(RuntimeError):
    """Base error for the session automation package."""


class StoreError(SessionAutomationError):
    """A query or write against the document store failed."""


class InvalidSessionPathError(SessionAutomationError, ValueError):
    """A storage path does not point at a live session document."""


class MissingSessionFieldError(SessionAutomationError):
    """A session is missing a field the dispatcher cannot work without."""


class PushSendError(SessionAutomationError):
    """A push transport send failed."""

    def __init__(
        self,
        message: str,
        *,
        invalid_token: bool = False,
        status_code: int | None = None,
        error_code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.invalid_token = invalid_token
        self.status_code = status_code
        self.error_code = error_code


class SweepFailedError(SessionAutomationError):
    """A status transition sweep could not query or commit against the store."""

    def __init__(self, message: str, result: SweepResult | None = None) -> None:
        super().__init__(message)
        self.result = result


class ArchiveSweepError(SessionAutomationError):
    """An archival sweep could not query or commit against the store."""

    def __init__(self, message: str, result: ArchiveResult | None = None) -> None:
        super().__init__(message)
        self.result = result
