"""ASGI entrypoint for the session automation API."""

from session_automation.api.app import create_app
from session_automation.containers import build_container

app = create_app(build_container())
