from __future__ import annotations

import httpx

from .constants import LOGGER
from .errors import (
    AdminAccessDenied,
    ProxyRequestError,
    StateExpiredError,
    StateMismatchError,
    StateNotFoundError,
    TokenExchangeFailed,
    TokenRefreshFailed,
    TokenValidationFailed,
)
from .models import StoredState, TokenResponse, TokenValidation

TOKEN_PATH = "/api/auth/token"
REFRESH_PATH = "/api/auth/refresh"
VALIDATE_ADMIN_PATH = "/api/auth/validate-admin"
LOGOUT_PATH = "/api/auth/logout"
OAUTH_STATE_PATH = "/api/oauth-state"

_STATE_ERRORS = {
    404: StateNotFoundError,
    410: StateExpiredError,
    403: StateMismatchError,
}


def _json_or_empty(response: httpx.Response) -> dict:
    try:
        payload = response.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


def _describe(response: httpx.Response) -> str:
    payload = _json_or_empty(response)
    return str(payload.get("error_description") or payload.get("error") or response.text)


class AuthProxyClient:
    """Typed wrapper over the auth proxy endpoints."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def aclose(self) -> None:
        await self._client.aclose()

    # -- pending login state ---------------------------------------------------

    async def store_state(self, state: str, code_verifier: str, redirect_uri: str) -> str:
        response = await self._client.post(
            OAUTH_STATE_PATH,
            params={"action": "store"},
            json={"state": state, "codeVerifier": code_verifier, "redirectUri": redirect_uri},
        )
        if response.status_code != 200:
            raise ProxyRequestError(
                f"Failed to store OAuth state: {_describe(response)}",
                status_code=response.status_code,
            )
        session_id = _json_or_empty(response).get("sessionId")
        if not isinstance(session_id, str) or not session_id:
            raise ProxyRequestError("OAuth state response missing sessionId.")
        return session_id

    async def retrieve_state(self, session_id: str, state: str) -> StoredState:
        response = await self._client.get(
            OAUTH_STATE_PATH,
            params={"action": "retrieve", "sessionId": session_id, "state": state},
        )
        if response.status_code != 200:
            error_cls = _STATE_ERRORS.get(response.status_code, ProxyRequestError)
            raise error_cls(
                f"Failed to retrieve OAuth state: {_describe(response)}",
                status_code=response.status_code,
            )
        payload = _json_or_empty(response)
        return StoredState(
            code_verifier=str(payload.get("codeVerifier", "")),
            redirect_uri=str(payload.get("redirectUri", "")),
        )

    async def cleanup_state(self, session_id: str) -> bool:
        response = await self._client.delete(
            OAUTH_STATE_PATH,
            params={"action": "cleanup", "sessionId": session_id},
        )
        if response.status_code != 200:
            raise ProxyRequestError(
                f"Failed to clean up OAuth state: {_describe(response)}",
                status_code=response.status_code,
            )
        return bool(_json_or_empty(response).get("cleaned"))

    # -- tokens ----------------------------------------------------------------

    async def exchange_token(
        self,
        code: str,
        code_verifier: str,
        redirect_uri: str,
        state: str | None = None,
    ) -> TokenResponse:
        body = {"code": code, "codeVerifier": code_verifier, "redirectUri": redirect_uri}
        if state:
            body["state"] = state
        try:
            response = await self._client.post(TOKEN_PATH, json=body)
        except httpx.HTTPError as error:
            raise TokenExchangeFailed(f"Token exchange request failed: {error}") from error
        if response.status_code == 403 and _json_or_empty(response).get("error") == "access_denied":
            raise AdminAccessDenied(
                f"Signed-in account is not an administrator: {_describe(response)}"
            )
        if response.status_code != 200:
            raise TokenExchangeFailed(
                f"Failed to exchange authorization code for tokens: {_describe(response)}",
                status_code=response.status_code,
            )
        try:
            return TokenResponse.from_payload(response.json())
        except (ValueError, RuntimeError) as error:
            raise TokenExchangeFailed(f"Malformed token response: {error}") from error

    async def refresh_token(self, refresh_token: str) -> TokenResponse:
        try:
            response = await self._client.post(REFRESH_PATH, json={"refreshToken": refresh_token})
        except httpx.HTTPError as error:
            raise TokenRefreshFailed(f"Token refresh request failed: {error}") from error
        if response.status_code != 200:
            raise TokenRefreshFailed(
                f"Failed to refresh access token: {_describe(response)}",
                status_code=response.status_code,
            )
        try:
            return TokenResponse.from_payload(response.json())
        except (ValueError, RuntimeError) as error:
            raise TokenRefreshFailed(f"Malformed refresh response: {error}") from error

    async def validate_admin(self, access_token: str) -> TokenValidation:
        try:
            response = await self._client.post(
                VALIDATE_ADMIN_PATH, json={"accessToken": access_token}
            )
        except httpx.HTTPError as error:
            raise TokenValidationFailed(f"Token validation request failed: {error}") from error

        payload = _json_or_empty(response)
        if response.status_code == 200:
            user = payload.get("user") or {}
            is_admin = bool(payload.get("isAdmin"))
            return TokenValidation(
                valid=bool(payload.get("success")) and is_admin,
                email=user.get("email"),
                name=user.get("name"),
                picture=user.get("picture"),
                is_admin=is_admin,
            )
        # A 403 is a definite answer about the identity, not a failed check.
        if response.status_code == 403 and "isAdmin" in payload:
            return TokenValidation(valid=False, is_admin=bool(payload.get("isAdmin")))

        raise TokenValidationFailed(
            f"Failed to validate token: {_describe(response)}",
            status_code=response.status_code,
        )

    async def logout(self, access_token: str | None, refresh_token: str | None) -> bool:
        body = {}
        if access_token:
            body["accessToken"] = access_token
        if refresh_token:
            body["refreshToken"] = refresh_token
        response = await self._client.post(LOGOUT_PATH, json=body)
        if response.status_code != 200:
            LOGGER.warning("Server logout answered %s", response.status_code)
            return False
        return bool(_json_or_empty(response).get("success"))
