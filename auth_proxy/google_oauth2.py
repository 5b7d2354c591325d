from __future__ import annotations

import time
from dataclasses import dataclass

import httpx

from auth_proxy.models import GoogleUserInfo

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

DEFAULT_TIMEOUT_SECONDS = 10.0


class GoogleOAuthError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None, error: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error = error

    @property
    def is_invalid_grant(self) -> bool:
        return self.error in {"invalid_grant", "invalid_token"}


@dataclass
class TokenResponse:
    access_token: str
    refresh_token: str | None
    expires_in: int
    expires_at: float
    token_type: str
    scope: str

    def is_expired(self) -> bool:
        return time.time() >= self.expires_at

    @classmethod
    def from_payload(cls, payload: dict) -> "TokenResponse":
        access_token = payload.get("access_token")
        refresh_token = payload.get("refresh_token")
        expires_in = payload.get("expires_in")
        scope = payload.get("scope", "openid email profile")

        if not isinstance(access_token, str) or not access_token:
            raise RuntimeError("Token response missing access_token.")
        if refresh_token is not None and not isinstance(refresh_token, str):
            raise RuntimeError("Token response refresh_token must be a string.")
        if not isinstance(expires_in, int):
            raise RuntimeError("Token response missing expires_in.")
        if not isinstance(scope, str):
            raise RuntimeError("Token response scope must be a string.")

        return cls(
            access_token=access_token,
            refresh_token=refresh_token or None,
            expires_in=expires_in,
            expires_at=time.time() + expires_in,
            token_type=str(payload.get("token_type") or "Bearer"),
            scope=scope,
        )


def _provider_error(response: httpx.Response, prefix: str) -> GoogleOAuthError:
    error = None
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        raw = payload.get("error")
        if isinstance(raw, str):
            error = raw
        elif isinstance(raw, dict) and response.status_code == 401:
            error = "invalid_token"
    elif response.status_code == 401:
        error = "invalid_token"
    return GoogleOAuthError(
        f"{prefix} failed with status {response.status_code}: {response.text}",
        status_code=response.status_code,
        error=error,
    )


def _json_payload(response: httpx.Response, prefix: str) -> dict:
    try:
        payload = response.json()
    except ValueError as error:
        raise GoogleOAuthError(
            f"{prefix} returned a non-JSON body", status_code=response.status_code
        ) from error
    if not isinstance(payload, dict):
        raise GoogleOAuthError(
            f"{prefix} returned an unexpected body", status_code=response.status_code
        )
    return payload


async def _send(
    method: str,
    url: str,
    *,
    client: httpx.AsyncClient | None,
    **kwargs,
) -> httpx.Response:
    own_client = client is None
    http_client = client or httpx.AsyncClient(timeout=DEFAULT_TIMEOUT_SECONDS)
    try:
        return await http_client.request(method, url, **kwargs)
    finally:
        if own_client:
            await http_client.aclose()


async def _token_request(
    payload: dict[str, str],
    *,
    client: httpx.AsyncClient | None = None,
) -> TokenResponse:
    response = await _send("POST", GOOGLE_TOKEN_URL, client=client, data=payload)
    if response.status_code != 200:
        raise _provider_error(response, "Token request")
    return TokenResponse.from_payload(_json_payload(response, "Token request"))


async def exchange_code(
    client_id: str,
    client_secret: str,
    code: str,
    redirect_uri: str,
    code_verifier: str,
    *,
    client: httpx.AsyncClient | None = None,
) -> TokenResponse:
    return await _token_request(
        {
            "grant_type": "authorization_code",
            "client_id": client_id,
            "client_secret": client_secret,
            "code": code,
            "redirect_uri": redirect_uri,
            "code_verifier": code_verifier,
        },
        client=client,
    )


async def refresh_token(
    client_id: str,
    client_secret: str,
    refresh_token: str,
    *,
    client: httpx.AsyncClient | None = None,
) -> TokenResponse:
    return await _token_request(
        {
            "grant_type": "refresh_token",
            "client_id": client_id,
            "client_secret": client_secret,
            "refresh_token": refresh_token,
        },
        client=client,
    )


async def fetch_user_info(
    access_token: str,
    *,
    client: httpx.AsyncClient | None = None,
) -> GoogleUserInfo:
    response = await _send(
        "GET",
        GOOGLE_USERINFO_URL,
        client=client,
        headers={"Authorization": f"Bearer {access_token}"},
    )
    if response.status_code != 200:
        raise _provider_error(response, "User info request")
    return GoogleUserInfo.from_payload(_json_payload(response, "User info request"))


async def revoke_token(
    token: str,
    *,
    client: httpx.AsyncClient | None = None,
) -> bool:
    response = await _send(
        "POST",
        GOOGLE_REVOKE_URL,
        client=client,
        params={"token": token},
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    return response.status_code == 200
