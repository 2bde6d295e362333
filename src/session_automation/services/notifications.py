"""Fan-out of session status changes to owner and sitter devices."""

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from session_automation.adapters.fcm_client import PushClient
from session_automation.domain.errors import (
    MissingSessionFieldError,
    PushSendError,
    StoreError,
)
from session_automation.domain.notifications import (
    NOTIFICATION_TYPE,
    DispatchReport,
    NotificationTarget,
    PushMessage,
    TargetRole,
    TokenTarget,
)
from session_automation.domain.sessions import SessionStatus, SitterSession
from session_automation.services.tokens import TokenReconciler, UserRepository

_logger = logging.getLogger(__name__)

_TOKEN_MAX_AGE = timedelta(days=30 * 4)
_ERROR_MESSAGE_LIMIT = 200

# Title and body template per status a session can transition into.
_STATUS_COPY: dict[SessionStatus, tuple[str, str]] = {
    SessionStatus.IN_PROGRESS: (
        "Session Starting",
        'Your session "{title}" is starting now',
    ),
    SessionStatus.EXTENDED: (
        "Session Extended",
        'Your session "{title}" has been extended',
    ),
    SessionStatus.COMPLETED: (
        "Session Completed",
        'Your session "{title}" has ended',
    ),
}


@dataclass(frozen=True)
class _SendOutcome:
    target: TokenTarget
    error: PushSendError | None = None


@dataclass
class NotificationDispatcher:
    """Notify everyone attached to a session about its new status."""

    user_repository: UserRepository
    push_client: PushClient
    token_reconciler: TokenReconciler
    token_max_age: timedelta = _TOKEN_MAX_AGE
    max_concurrent_sends: int = 20

    async def dispatch(
        self,
        session: SitterSession,
        new_status: SessionStatus | str,
        now: datetime | None = None,
    ) -> DispatchReport:
        """Send the status change to every valid token of the session's users.

        Individual send failures are counted and logged, never raised. Tokens
        the transport reports as unregistered are removed from their user.
        """
        if not session.id:
            raise MissingSessionFieldError("Session has no id; cannot notify")
        sent_at = now or datetime.now(tz=UTC)
        report = DispatchReport(session_id=session.id, new_status=str(new_status))

        targets = resolve_targets(session)
        _logger.info(
            "[Session %s] Found %s users to notify", session.id, len(targets)
        )
        if not targets:
            _logger.warning("[Session %s] No users found to notify", session.id)
            return report
        report.recipients = len(targets)

        resolved = await asyncio.gather(
            *(self._resolve_tokens(session.id, target, sent_at) for target in targets)
        )
        token_targets: list[TokenTarget] = []
        for tokens in resolved:
            if tokens is None:
                report.targets_skipped += 1
                continue
            token_targets.extend(tokens)

        if not token_targets:
            _logger.warning(
                "[Session %s] No valid FCM tokens found for any users", session.id
            )
            return report
        _logger.info(
            "[Session %s] Found %s valid FCM tokens for %s users",
            session.id,
            len(token_targets),
            len(targets),
        )

        status = _coerce_status(new_status)
        if status not in _STATUS_COPY:
            _logger.error(
                "[Session %s] Unknown status for notification: %s",
                session.id,
                new_status,
            )
            report.payloads_skipped = len(token_targets)
            return report

        timestamp = sent_at.isoformat()
        outcomes = await self._send_all(session, status, timestamp, token_targets)
        invalid: dict[str, list[str]] = {}
        for outcome in outcomes:
            if outcome.error is None:
                report.successes += 1
            elif outcome.error.invalid_token:
                report.invalid_tokens += 1
                invalid.setdefault(outcome.target.user_id, []).append(
                    outcome.target.token
                )
            else:
                report.failures += 1
                _logger.error(
                    "[Session %s] Failed to send to token: %s",
                    session.id,
                    _truncate(str(outcome.error)),
                )

        if invalid:
            report.tokens_removed = await self.token_reconciler.remove_invalid_tokens(
                session.id, invalid
            )
        _logger.info(
            "[Session %s] Notifications sent: %s successful, %s failed, "
            "%s invalid tokens",
            session.id,
            report.successes,
            report.failures,
            report.invalid_tokens,
        )
        return report

    async def _resolve_tokens(
        self, session_id: str, target: NotificationTarget, now: datetime
    ) -> list[TokenTarget] | None:
        """Return the user's unexpired tokens, or None when they opt out."""
        try:
            user = await asyncio.to_thread(
                self.user_repository.get_user, target.user_id
            )
        except StoreError as exc:
            _logger.error(
                "[Session %s] Error fetching user %s: %s",
                session_id,
                target.user_id,
                exc,
            )
            return None
        if user is None:
            _logger.warning(
                "[Session %s] User data not found for %s", session_id, target.user_id
            )
            return None
        if not user.wants_session_notifications:
            _logger.info(
                "[Session %s] User %s has disabled session notifications",
                session_id,
                target.user_id,
            )
            return None
        if user.fcm_tokens is None:
            _logger.warning(
                "[Session %s] No FCM tokens array for user %s",
                session_id,
                target.user_id,
            )
            return None
        return [
            TokenTarget(token=token.token, user_id=target.user_id, role=target.role)
            for token in user.fcm_tokens
            if not token.is_expired(now, self.token_max_age)
        ]

    async def _send_all(
        self,
        session: SitterSession,
        status: SessionStatus,
        timestamp: str,
        token_targets: Iterable[TokenTarget],
    ) -> list[_SendOutcome]:
        semaphore = asyncio.Semaphore(self.max_concurrent_sends)

        async def send_one(target: TokenTarget) -> _SendOutcome:
            message = build_status_message(session, status, target.role, timestamp)
            async with semaphore:
                try:
                    await self.push_client.send(target.token, message)
                except PushSendError as exc:
                    return _SendOutcome(target=target, error=exc)
                except Exception as exc:  # noqa: BLE001
                    return _SendOutcome(target=target, error=PushSendError(str(exc)))
            return _SendOutcome(target=target)

        async with asyncio.TaskGroup() as group:
            tasks = [group.create_task(send_one(target)) for target in token_targets]
        return [task.result() for task in tasks]


def resolve_targets(session: SitterSession) -> list[NotificationTarget]:
    """Map each session user to a role; the owner role wins on collision."""
    roles: dict[str, TargetRole] = {}
    if session.assigned_sitter and session.assigned_sitter.user_id:
        roles[session.assigned_sitter.user_id] = TargetRole.SITTER
    if session.owner_id:
        roles[session.owner_id] = TargetRole.OWNER
    else:
        _logger.warning("[Session %s] No ownerID found in session data", session.id)
    return [NotificationTarget(user_id=uid, role=role) for uid, role in roles.items()]


def build_status_message(
    session: SitterSession,
    new_status: SessionStatus,
    role: TargetRole,
    timestamp: str,
) -> PushMessage | None:
    """Build the push message for a status change, or None if it has no copy."""
    copy = _STATUS_COPY.get(new_status)
    if copy is None:
        return None
    title, body = copy
    data = {
        "sessionId": session.id,
        "newStatus": new_status.value,
        "timestamp": timestamp,
        "type": NOTIFICATION_TYPE,
        "userRole": role.value,
    }
    return PushMessage(
        title=title,
        body=body.format(title=session.title),
        data=data,
        apns={
            "aps": {
                "interruption-level": "time-sensitive",
                "content-available": 1,
                "sound": "default",
            },
            **data,
        },
    )


def _coerce_status(value: SessionStatus | str) -> SessionStatus | None:
    try:
        return SessionStatus(value)
    except ValueError:
        return None


def _truncate(message: str) -> str:
    if len(message) <= _ERROR_MESSAGE_LIMIT:
        return message
    return message[: _ERROR_MESSAGE_LIMIT - 3] + "..."
