import asyncio
import time
import urllib.parse

import httpx
from starlette.applications import Starlette
from starlette.testclient import TestClient

from auth_proxy.google_oauth2 import GoogleOAuthError, TokenResponse
from auth_proxy.models import GoogleUserInfo
from auth_proxy.proxy_server import AuthProxyServer
from auth_proxy.state_store import MemoryStateStore
from shiftdesk.browser import MemoryNavigator, MemorySessionStorage
from shiftdesk.google_oauth import GoogleOAuthClient, OAuthConfig
from shiftdesk.proxy_client import AuthProxyClient

ADMIN_EMAIL = "admin@example.org"
VOLUNTEER_EMAIL = "volunteer@example.org"
ORIGIN = "http://localhost:4200"
REDIRECT_URI = "http://localhost:4200/calendar/auth/callback"


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class GatedSleep:
    """Returns immediately for the first ``free`` calls, then blocks until cancelled."""

    def __init__(self, free: int = 0) -> None:
        self.free = free
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if len(self.calls) > self.free:
            await asyncio.Event().wait()


class FakeGoogle:
    """Stands in for the Google token, userinfo and revoke endpoints."""

    def __init__(self, *, email: str = ADMIN_EMAIL) -> None:
        self.email = email
        self.exchange_calls: list[dict] = []
        self.refresh_calls: list[dict] = []
        self.revoked: list[str] = []
        self.exchange_error: Exception | None = None
        self.refresh_error: Exception | None = None
        self.user_info_error: Exception | None = None
        self.revoke_error: Exception | None = None

    async def exchange_code(self, **kwargs) -> TokenResponse:
        self.exchange_calls.append(kwargs)
        if self.exchange_error is not None:
            raise self.exchange_error
        return TokenResponse(
            access_token="google-access",
            refresh_token="google-refresh",
            expires_in=3600,
            expires_at=time.time() + 3600,
            token_type="Bearer",
            scope="openid email profile",
        )

    async def refresh_token(self, **kwargs) -> TokenResponse:
        self.refresh_calls.append(kwargs)
        if self.refresh_error is not None:
            raise self.refresh_error
        return TokenResponse(
            access_token="google-access-refreshed",
            refresh_token=None,
            expires_in=3600,
            expires_at=time.time() + 3600,
            token_type="Bearer",
            scope="openid email profile",
        )

    async def fetch_user_info(self, access_token: str) -> GoogleUserInfo:
        if self.user_info_error is not None:
            raise self.user_info_error
        return GoogleUserInfo(email=self.email, name="Pat Admin", picture="https://img/pat.png")

    async def revoke_token(self, token: str) -> bool:
        if self.revoke_error is not None:
            raise self.revoke_error
        self.revoked.append(token)
        return True


def invalid_grant() -> GoogleOAuthError:
    return GoogleOAuthError("Token request failed", status_code=400, error="invalid_grant")


def _build_proxy(
    google: FakeGoogle | None = None,
    *,
    state_store: MemoryStateStore | None = None,
    admin_emails: set[str] | None = None,
    client_secret: str = "google-secret",
) -> tuple[AuthProxyServer, FakeGoogle]:
    google = google or FakeGoogle()
    proxy = AuthProxyServer(
        client_id="google-client",
        client_secret=client_secret,
        state_store=state_store or MemoryStateStore(),
        admin_emails={ADMIN_EMAIL} if admin_emails is None else admin_emails,
        default_redirect_uri=REDIRECT_URI,
        exchange_code_fn=google.exchange_code,
        refresh_token_fn=google.refresh_token,
        fetch_user_info_fn=google.fetch_user_info,
        revoke_token_fn=google.revoke_token,
    )
    return proxy, google


def _build_app(proxy: AuthProxyServer) -> Starlette:
    return Starlette(routes=proxy.routes())


def _build_test_client(google: FakeGoogle | None = None, **kwargs):
    proxy, google = _build_proxy(google, **kwargs)
    return proxy, google, TestClient(_build_app(proxy), base_url="https://shiftdesk.test")


def _proxy_http_client(proxy: AuthProxyServer) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        transport=httpx.ASGITransport(app=_build_app(proxy)),
        base_url="https://shiftdesk.test",
    )


def _build_oauth_client(
    proxy: AuthProxyServer | None = None,
    *,
    client_id: str = "google-client",
    url: str = "http://localhost:4200/calendar",
    transport: httpx.AsyncBaseTransport | None = None,
):
    if transport is not None:
        http_client = httpx.AsyncClient(transport=transport, base_url="https://shiftdesk.test")
    else:
        http_client = _proxy_http_client(proxy or _build_proxy()[0])
    storage = MemorySessionStorage()
    navigator = MemoryNavigator(url)
    config = OAuthConfig(client_id=client_id, redirect_uri=REDIRECT_URI)
    proxy_client = AuthProxyClient(http_client)
    return GoogleOAuthClient(config, proxy_client, storage, navigator), proxy_client, storage, navigator


def callback_url(authorization_url: str, *, code: str = "auth-code", state: str | None = None) -> str:
    query = urllib.parse.parse_qs(urllib.parse.urlparse(authorization_url).query)
    params = {"code": code, "state": state or query["state"][0], "scope": "openid email profile"}
    return f"{REDIRECT_URI}?{urllib.parse.urlencode(params)}"
