"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from supabase import create_client

from session_automation.adapters.fcm_client import (
    GoogleAccessTokenProvider,
    HttpxFcmClient,
    PushClient,
)
from session_automation.adapters.supabase_session_repository import (
    SupabaseSessionRepository,
)
from session_automation.adapters.supabase_user_repository import (
    SupabaseUserRepository,
)
from session_automation.config import Settings
from session_automation.services.archive import ArchiveService
from session_automation.services.notifications import NotificationDispatcher
from session_automation.services.tokens import TokenReconciler
from session_automation.services.transitions import SessionStatusService


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    push_client: PushClient
    dispatcher: NotificationDispatcher
    session_status_service: SessionStatusService
    archive_service: ArchiveService
    close_resources: Callable[[], Awaitable[None]]


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    supabase_client = create_client(
        resolved_settings.supabase_url, resolved_settings.supabase_service_key
    )
    session_repository = SupabaseSessionRepository(
        supabase_client,
        sessions_table=resolved_settings.sessions_table,
        archived_sessions_table=resolved_settings.archived_sessions_table,
    )
    user_repository = SupabaseUserRepository(
        supabase_client, table=resolved_settings.users_table
    )
    push_client = HttpxFcmClient.create(
        project_id=resolved_settings.fcm_project_id,
        token_provider=GoogleAccessTokenProvider(
            credentials_info=resolved_settings.fcm_credentials_info,
            credentials_file=resolved_settings.fcm_credentials_file,
        ),
        base_url=resolved_settings.fcm_base_url,
    )
    token_reconciler = TokenReconciler(
        repository=user_repository,
        mode=resolved_settings.token_prune_mode,
        max_attempts=resolved_settings.token_prune_max_attempts,
    )
    dispatcher = NotificationDispatcher(
        user_repository=user_repository,
        push_client=push_client,
        token_reconciler=token_reconciler,
        token_max_age=resolved_settings.token_max_age,
        max_concurrent_sends=resolved_settings.max_concurrent_sends,
    )
    session_status_service = SessionStatusService(
        repository=session_repository,
        dispatcher=dispatcher,
        batch_size=resolved_settings.transition_batch_size,
    )
    archive_service = ArchiveService(
        repository=session_repository,
        batch_size=resolved_settings.archive_batch_size,
    )

    async def close_resources() -> None:
        await push_client.close()

    return AppContainer(
        settings=resolved_settings,
        push_client=push_client,
        dispatcher=dispatcher,
        session_status_service=session_status_service,
        archive_service=archive_service,
        close_resources=close_resources,
    )
