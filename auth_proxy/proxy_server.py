from __future__ import annotations

import logging

import httpx
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from auth_proxy import google_oauth2
from auth_proxy.cookies import (
    clear_refresh_cookie,
    extract_bearer_token,
    read_refresh_token,
    set_refresh_cookie,
)
from auth_proxy.cors import (
    DEFAULT_CORS_ORIGINS,
    apply_cors_response,
    cors_error_response,
    preflight_route,
)
from auth_proxy.google_oauth2 import GoogleOAuthError
from auth_proxy.models import GoogleUserInfo
from auth_proxy.state_store import PendingStateError, PendingStateMismatch, StateStore, mask

LOGGER = logging.getLogger("auth_proxy.server")

ADMIN_PERMISSIONS = {
    "canManageShifts": True,
    "canViewReports": True,
    "canManageVolunteers": True,
}


def parse_admin_emails(raw: str | None) -> set[str]:
    if not raw:
        return set()
    return {item.strip().lower() for item in raw.split(",") if item.strip()}


async def _read_json(request: Request) -> dict | None:
    try:
        payload = await request.json()
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None


class AuthProxyServer:
    """Server half of the admin login: everything that needs the client secret."""

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        state_store: StateStore,
        admin_emails: set[str] | None = None,
        default_redirect_uri: str | None = None,
        cors_origins: set[str] | None = None,
        exchange_code_fn=google_oauth2.exchange_code,
        refresh_token_fn=google_oauth2.refresh_token,
        fetch_user_info_fn=google_oauth2.fetch_user_info,
        revoke_token_fn=google_oauth2.revoke_token,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.state_store = state_store
        self.admin_emails = {email.lower() for email in admin_emails or set()}
        self.default_redirect_uri = default_redirect_uri
        self.cors_origins = set(DEFAULT_CORS_ORIGINS)
        if cors_origins:
            self.cors_origins.update(cors_origins)

        self._exchange_code_fn = exchange_code_fn
        self._refresh_token_fn = refresh_token_fn
        self._fetch_user_info_fn = fetch_user_info_fn
        self._revoke_token_fn = revoke_token_fn

    def is_admin(self, email: str) -> bool:
        return email.strip().lower() in self.admin_emails

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    # -- routes ----------------------------------------------------------------

    def routes(self) -> list[Route]:
        routes = [
            Route("/api/auth/token", self._handle_token, methods=["POST"]),
            Route("/api/auth/refresh", self._handle_refresh, methods=["POST"]),
            Route("/api/auth/validate-admin", self._handle_validate_admin, methods=["POST"]),
            Route("/api/auth/logout", self._handle_logout, methods=["POST"]),
            Route("/api/oauth-state", self._handle_oauth_state, methods=["GET", "POST", "DELETE"]),
        ]
        preflights = [
            preflight_route(route.path, self.cors_origins, sorted(route.methods - {"HEAD"}))
            for route in routes
        ]
        return routes + preflights

    # -- token exchange --------------------------------------------------------

    async def _handle_token(self, request: Request) -> Response:
        body = await _read_json(request)
        if body is None:
            return self._error(request, "invalid_request", "Invalid JSON body.", 400)

        code = body.get("code")
        code_verifier = body.get("codeVerifier")
        LOGGER.info(
            "Auth token request has_code=%s has_code_verifier=%s has_redirect_uri=%s has_state=%s",
            bool(code),
            bool(code_verifier),
            bool(body.get("redirectUri")),
            bool(body.get("state")),
        )
        if not code or not code_verifier:
            return self._error(
                request, "invalid_request", "code and codeVerifier are required.", 400
            )

        redirect_uri = body.get("redirectUri") or self.default_redirect_uri
        if not self.configured or not redirect_uri:
            LOGGER.error(
                "OAuth configuration missing has_client_id=%s has_client_secret=%s has_redirect_uri=%s",
                bool(self.client_id),
                bool(self.client_secret),
                bool(redirect_uri),
            )
            return self._configuration_error(request)

        try:
            exchanged = await self._exchange_code_fn(
                client_id=self.client_id,
                client_secret=self.client_secret,
                code=code,
                redirect_uri=redirect_uri,
                code_verifier=code_verifier,
            )
            user = await self._fetch_user_info_fn(exchanged.access_token)
        except (httpx.HTTPError, RuntimeError) as error:
            LOGGER.error("Token exchange failed: %s", error)
            return self._error(request, "authentication_failed", str(error), 500)

        if not self.is_admin(user.email):
            LOGGER.warning("Unauthorized access attempt by: %s", user.email)
            return self._error(
                request,
                "access_denied",
                "You are not authorized to access the admin panel.",
                403,
            )

        response = JSONResponse(
            {
                "access_token": exchanged.access_token,
                "refresh_token": exchanged.refresh_token,
                "expires_in": exchanged.expires_in,
                "token_type": exchanged.token_type,
                "scope": exchanged.scope,
            }
        )
        if exchanged.refresh_token:
            set_refresh_cookie(response, exchanged.refresh_token)
        return apply_cors_response(request, response, self.cors_origins)

    # -- refresh ---------------------------------------------------------------

    async def _handle_refresh(self, request: Request) -> Response:
        body = await _read_json(request)
        refresh_token = read_refresh_token(request, body)
        if not refresh_token:
            return self._error(
                request,
                "no_refresh_token",
                "Refresh token not found. Please log in again.",
                401,
            )

        if not self.configured:
            LOGGER.error("OAuth configuration missing")
            return self._configuration_error(request)

        try:
            refreshed = await self._refresh_token_fn(
                client_id=self.client_id,
                client_secret=self.client_secret,
                refresh_token=refresh_token,
            )
        except GoogleOAuthError as error:
            LOGGER.error("Token refresh failed: %s", error)
            if error.is_invalid_grant:
                response = self._error(
                    request,
                    "token_expired",
                    "Your session has expired. Please log in again.",
                    401,
                )
                clear_refresh_cookie(response)
                return response
            return self._error(request, "token_refresh_failed", str(error), 500)
        except (httpx.HTTPError, RuntimeError) as error:
            LOGGER.error("Token refresh failed: %s", error)
            return self._error(request, "token_refresh_failed", str(error), 500)

        try:
            user = await self._fetch_user_info_fn(refreshed.access_token)
        except (httpx.HTTPError, RuntimeError) as error:
            LOGGER.error("User lookup after refresh failed: %s", error)
            return self._error(request, "token_refresh_failed", str(error), 500)

        # The allowlist may have changed since the token was issued.
        if not self.is_admin(user.email):
            LOGGER.warning("Admin access revoked for: %s", user.email)
            response = self._error(
                request,
                "access_revoked",
                "Your admin access has been revoked. Please contact an administrator.",
                403,
            )
            clear_refresh_cookie(response)
            return response

        response = JSONResponse(
            {
                "success": True,
                "access_token": refreshed.access_token,
                "expires_in": refreshed.expires_in,
                "token_type": refreshed.token_type,
                "scope": refreshed.scope,
                "user": user.to_payload(),
            }
        )
        if refreshed.refresh_token:
            set_refresh_cookie(response, refreshed.refresh_token)
        return apply_cors_response(request, response, self.cors_origins)

    # -- admin validation ------------------------------------------------------

    async def _handle_validate_admin(self, request: Request) -> Response:
        body = await _read_json(request) or {}
        token = body.get("accessToken") or extract_bearer_token(
            request.headers.get("authorization")
        )
        if not token:
            return self._error(
                request,
                "no_access_token",
                "Access token is required for validation.",
                401,
                extra={"isAdmin": False},
            )

        try:
            user = await self._fetch_user_info_fn(token)
        except GoogleOAuthError as error:
            LOGGER.error("Admin validation failed: %s", error)
            if error.status_code == 401 or error.is_invalid_grant:
                return self._error(
                    request,
                    "invalid_token",
                    "The provided access token is invalid or expired.",
                    401,
                    extra={"isAdmin": False},
                )
            if error.status_code == 403:
                return self._error(
                    request,
                    "access_denied",
                    "Insufficient permissions to access admin features.",
                    403,
                    extra={"isAdmin": False},
                )
            return self._error(
                request, "validation_failed", str(error), 500, extra={"isAdmin": False}
            )
        except (httpx.HTTPError, RuntimeError) as error:
            LOGGER.error("Admin validation failed: %s", error)
            return self._error(
                request, "validation_failed", str(error), 500, extra={"isAdmin": False}
            )

        if not self.is_admin(user.email):
            LOGGER.warning("Unauthorized validation attempt by: %s", user.email)
            return self._error(
                request,
                "access_denied",
                "You are not authorized to access the admin panel.",
                403,
                extra={"isAdmin": False},
            )

        LOGGER.info("Admin access validated for: %s", user.email)
        return apply_cors_response(
            request,
            JSONResponse(
                {
                    "success": True,
                    "isAdmin": True,
                    "user": user.to_payload(),
                    "permissions": dict(ADMIN_PERMISSIONS),
                }
            ),
            self.cors_origins,
        )

    # -- logout ----------------------------------------------------------------

    async def _handle_logout(self, request: Request) -> Response:
        body = await _read_json(request) or {}
        message = "Logged out successfully"
        try:
            await self._revoke_session(
                access_token=body.get("accessToken") or None,
                refresh_token=read_refresh_token(request, body),
            )
        except Exception:
            LOGGER.exception("Logout cleanup failed")
            message = "Logged out successfully (with cleanup errors)"

        response = JSONResponse({"success": True, "message": message})
        clear_refresh_cookie(response)
        return apply_cors_response(request, response, self.cors_origins)

    async def _revoke_session(self, *, access_token: str | None, refresh_token: str | None) -> None:
        user_email = "unknown"
        if access_token:
            try:
                user: GoogleUserInfo = await self._fetch_user_info_fn(access_token)
                user_email = user.email
            except (httpx.HTTPError, RuntimeError):
                LOGGER.info("Could not get user info during logout (token might be expired)")

        for kind, token in (("access", access_token), ("refresh", refresh_token)):
            if not token:
                continue
            try:
                revoked = await self._revoke_token_fn(token)
            except httpx.HTTPError as error:
                LOGGER.warning("Failed to revoke %s token: %s", kind, error)
                continue
            if not revoked:
                LOGGER.warning("Provider refused to revoke %s token", kind)

        LOGGER.info("User logged out: %s", user_email)

    # -- oauth state -----------------------------------------------------------

    async def _handle_oauth_state(self, request: Request) -> Response:
        action = request.query_params.get("action")
        method = request.method
        if method == "POST" and action == "store":
            return await self._store_state(request)
        if method == "GET" and action == "retrieve":
            return await self._retrieve_state(request)
        if method == "DELETE" and action == "cleanup":
            return await self._cleanup_state(request)

        expected = {"POST": "store", "GET": "retrieve", "DELETE": "cleanup"}.get(method)
        if expected is None:
            return self._error(request, "method_not_allowed", "Method not allowed.", 405)
        return self._error(
            request, "invalid_action", f"Invalid action. Use ?action={expected}", 400
        )

    async def _store_state(self, request: Request) -> Response:
        body = await _read_json(request) or {}
        state = body.get("state")
        code_verifier = body.get("codeVerifier")
        redirect_uri = body.get("redirectUri")
        if not all(isinstance(value, str) and value for value in (state, code_verifier, redirect_uri)):
            return self._error(
                request,
                "invalid_request",
                "state, codeVerifier, and redirectUri are required.",
                400,
            )

        entry = await self.state_store.store(state, code_verifier, redirect_uri)
        return apply_cors_response(
            request,
            JSONResponse(
                {
                    "success": True,
                    "sessionId": entry.session_id,
                    "expiresAt": entry.expires_at,
                }
            ),
            self.cors_origins,
        )

    async def _retrieve_state(self, request: Request) -> Response:
        session_id = request.query_params.get("sessionId")
        state = request.query_params.get("state")
        if not session_id or not state:
            return self._error(
                request,
                "invalid_request",
                "sessionId and state query parameters are required.",
                400,
            )

        try:
            entry = await self.state_store.retrieve(session_id, state)
        except PendingStateMismatch:
            return self._error(request, "forbidden", "OAuth state validation failed.", 403)
        except PendingStateError as error:
            return self._error(request, error.error_code, str(error), error.status_code)

        return apply_cors_response(
            request,
            JSONResponse(
                {
                    "success": True,
                    "state": entry.state,
                    "codeVerifier": entry.code_verifier,
                    "redirectUri": entry.redirect_uri,
                }
            ),
            self.cors_origins,
        )

    async def _cleanup_state(self, request: Request) -> Response:
        session_id = request.query_params.get("sessionId")
        if not session_id:
            return self._error(
                request, "invalid_request", "sessionId query parameter is required.", 400
            )

        existed = await self.state_store.cleanup(session_id)
        LOGGER.debug("Cleanup requested session=%s", mask(session_id))
        return apply_cors_response(
            request,
            JSONResponse({"success": True, "cleaned": existed}),
            self.cors_origins,
        )

    # -- helpers ---------------------------------------------------------------

    def _configuration_error(self, request: Request) -> Response:
        return self._error(
            request,
            "server_configuration_error",
            "OAuth configuration is not properly set up.",
            500,
        )

    def _error(
        self,
        request: Request,
        code: str,
        description: str,
        status_code: int,
        *,
        extra: dict | None = None,
    ) -> Response:
        return cors_error_response(
            request=request,
            allowed_origins=self.cors_origins,
            code=code,
            description=description,
            status_code=status_code,
            extra=extra,
        )
