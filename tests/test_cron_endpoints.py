"""Tests for cron trigger endpoints."""

from datetime import UTC, datetime, timedelta

from fastapi.testclient import TestClient

from session_automation.api.app import create_app
from session_automation.domain.sessions import SessionStatus
from tests.conftest import InMemorySessionStore, make_session

_BEARER = {"Authorization": "Bearer cron-secret"}


def test_health(container) -> None:
    client = TestClient(create_app(container))

    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_cron_routes_require_secret(container) -> None:
    client = TestClient(create_app(container))

    assert client.get("/cron/session-statuses").status_code == 401
    assert (
        client.get(
            "/cron/archive-sessions", headers={"Authorization": "Bearer wrong"}
        ).status_code
        == 401
    )
    assert (
        client.post(
            "/cron/session-statuses", headers={"X-Cron-Token": "nope"}
        ).status_code
        == 401
    )


def test_session_status_cron_runs_sweep(
    container, session_store: InMemorySessionStore
) -> None:
    now = datetime.now(tz=UTC)
    session_store.add(
        make_session(
            "S1",
            start_date=now + timedelta(minutes=5),
            end_date=now + timedelta(hours=3),
        )
    )
    client = TestClient(create_app(container))

    response = client.get("/cron/session-statuses", headers=_BEARER)

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["result"]["transitioned"]["upcoming"] == 1
    assert session_store.get("S1").status is SessionStatus.IN_PROGRESS


def test_archive_cron_accepts_cron_token_header(
    container, session_store: InMemorySessionStore
) -> None:
    ended = datetime.now(tz=UTC) - timedelta(days=8)
    session_store.add(
        make_session(
            "S1",
            status=SessionStatus.COMPLETED,
            start_date=ended - timedelta(hours=2),
            end_date=ended,
        )
    )
    client = TestClient(create_app(container))

    response = client.post(
        "/cron/archive-sessions", headers={"X-Cron-Token": "cron-secret"}
    )

    assert response.status_code == 200
    assert response.json()["result"]["archived"] == 1
    assert session_store.get("S1") is None


def test_sweep_failure_surfaces_as_server_error(
    container, session_store: InMemorySessionStore
) -> None:
    session_store.fail_queries = True
    client = TestClient(create_app(container))

    statuses = client.get("/cron/session-statuses", headers=_BEARER)
    archive = client.get("/cron/archive-sessions", headers=_BEARER)

    assert statuses.status_code == 500
    assert statuses.json()["status"] == "error"
    assert archive.status_code == 500


def test_empty_cron_secret_rejects_empty_tokens(container) -> None:
    container.settings = container.settings.model_copy(update={"cron_secret": ""})
    client = TestClient(create_app(container))

    bearer = client.get(
        "/cron/session-statuses", headers={"Authorization": "Bearer "}
    )
    header = client.post("/cron/archive-sessions", headers={"X-Cron-Token": ""})

    assert bearer.status_code == 401
    assert header.status_code == 401
