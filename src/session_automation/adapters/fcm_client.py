"""Firebase Cloud Messaging (HTTP v1) client adapter."""

import asyncio
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Protocol

import google.auth
import httpx
from google.auth import credentials as google_credentials
from google.auth.exceptions import GoogleAuthError
from google.auth.transport import Request as AuthRequest
from google.auth.transport.requests import Request as RequestsAuthRequest
from google.oauth2 import service_account

from session_automation.domain.errors import PushSendError
from session_automation.domain.notifications import PushMessage

FCM_SCOPES = ("https://www.googleapis.com/auth/firebase.messaging",)
_INVALID_TOKEN_CODES = {"UNREGISTERED", "INVALID_ARGUMENT"}
_FCM_ERROR_TYPE = "type.googleapis.com/google.firebase.fcm.v1.FcmError"


class PushClient(Protocol):
    """Interface for sending a push message to a single device token."""

    async def send(self, token: str, message: PushMessage) -> None:
        """Send one message, raising PushSendError on failure."""


class AccessTokenProvider(Protocol):
    """Source of OAuth2 bearer tokens for the FCM API."""

    async def token(self) -> str:
        """Return a bearer token that is valid right now."""


@dataclass
class GoogleAccessTokenProvider(AccessTokenProvider):
    """Mints FCM access tokens from Google service account credentials.

    Credentials come from inline service account info, a key file, or the
    application default credentials, in that order. Access tokens expire after
    about an hour and are refreshed before the next send that needs one.
    """

    credentials_info: Mapping[str, object] | None = None
    credentials_file: str | None = None
    credentials: google_credentials.Credentials | None = None
    request_factory: Callable[[], AuthRequest] = RequestsAuthRequest
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)

    async def token(self) -> str:
        async with self._lock:
            credentials = self._load_credentials()
            if not credentials.valid:
                await asyncio.to_thread(credentials.refresh, self.request_factory())
        return credentials.token

    def _load_credentials(self) -> google_credentials.Credentials:
        if self.credentials is None:
            if self.credentials_info:
                self.credentials = (
                    service_account.Credentials.from_service_account_info(
                        dict(self.credentials_info), scopes=FCM_SCOPES
                    )
                )
            elif self.credentials_file:
                self.credentials = (
                    service_account.Credentials.from_service_account_file(
                        self.credentials_file, scopes=FCM_SCOPES
                    )
                )
            else:
                self.credentials, _ = google.auth.default(scopes=FCM_SCOPES)
        return self.credentials


@dataclass
class HttpxFcmClient(PushClient):
    """FCM client implemented with httpx."""

    project_id: str
    token_provider: AccessTokenProvider
    http_client: httpx.AsyncClient
    base_url: str = "https://fcm.googleapis.com/v1"

    @classmethod
    def create(
        cls,
        project_id: str,
        token_provider: AccessTokenProvider,
        base_url: str = "https://fcm.googleapis.com/v1",
    ) -> "HttpxFcmClient":
        """Create an FCM client with a managed httpx session."""
        return cls(
            project_id=project_id,
            token_provider=token_provider,
            http_client=httpx.AsyncClient(),
            base_url=base_url,
        )

    async def send(self, token: str, message: PushMessage) -> None:
        """Send a message using FCM's messages:send API."""
        url = f"{self.base_url}/projects/{self.project_id}/messages:send"
        try:
            access_token = await self.token_provider.token()
        except GoogleAuthError as exc:
            raise PushSendError(f"FCM credentials unavailable: {exc}") from exc
        try:
            response = await self.http_client.post(
                url,
                json={"message": build_fcm_message(token, message)},
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=10,
            )
        except httpx.HTTPError as exc:
            raise PushSendError(f"FCM request failed: {exc}") from exc
        if response.is_error:
            raise _error_from_response(response)

    async def close(self) -> None:
        """Close the underlying HTTP client session."""
        await self.http_client.aclose()


def build_fcm_message(token: str, message: PushMessage) -> dict[str, object]:
    """Build the FCM v1 `message` object for one device token."""
    payload: dict[str, object] = {
        "token": token,
        "notification": {"title": message.title, "body": message.body},
        "data": message.data,
        "android": message.android,
    }
    if message.apns:
        payload["apns"] = {"payload": message.apns}
    return payload


def _error_from_response(response: httpx.Response) -> PushSendError:
    try:
        body = response.json()
    except ValueError:
        body = {}
    error = body.get("error", {}) if isinstance(body, dict) else {}
    if not isinstance(error, dict):
        error = {}
    status = error.get("status")
    error_code = _fcm_error_code(error) or status
    message = error.get("message") or response.text or response.reason_phrase
    return PushSendError(
        f"FCM send failed ({response.status_code} {error_code}): {message}",
        invalid_token=error_code in _INVALID_TOKEN_CODES,
        status_code=response.status_code,
        error_code=error_code,
    )


def _fcm_error_code(error: dict) -> str | None:
    for detail in error.get("details", []):
        if isinstance(detail, dict) and detail.get("@type") == _FCM_ERROR_TYPE:
            code = detail.get("errorCode")
            if isinstance(code, str):
                return code
    return None
