from __future__ import annotations

import httpx

from .browser import Navigator, SessionStorage
from .email_relay import EmailRelayClient
from .env import api_base_url, http_timeout, load_oauth_config, max_retries
from .google_oauth import GoogleOAuthClient, OAuthConfig
from .http import build_http_client
from .orchestrator import AuthOrchestrator
from .proxy_client import AuthProxyClient
from .reminders import EmailReminderSender, ReminderScheduler, http_shift_loader
from .token_manager import TokenManager


def create_auth(
    session_storage: SessionStorage,
    navigator: Navigator,
    *,
    config: OAuthConfig | None = None,
    base_url: str | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> AuthOrchestrator:
    # Authorization codes are single use, so the proxy client never retries.
    client = build_http_client(
        base_url=base_url if base_url is not None else api_base_url(),
        timeout=http_timeout(),
        transport=transport,
    )
    proxy = AuthProxyClient(client)
    oauth_client = GoogleOAuthClient(
        config or load_oauth_config(), proxy, session_storage, navigator
    )
    return AuthOrchestrator(oauth_client, TokenManager(proxy), navigator)


def create_reminder_scheduler(
    *,
    enabled: bool = True,
    hours_before_shift: float = 24,
    check_interval_minutes: float = 60,
    base_url: str | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ReminderScheduler:
    # Shift reads and relay posts may be repeated.
    client = build_http_client(
        base_url=base_url if base_url is not None else api_base_url(),
        timeout=http_timeout(),
        max_retries=max_retries(),
        transport=transport,
    )
    return ReminderScheduler(
        http_shift_loader(client),
        EmailReminderSender(EmailRelayClient(client)),
        enabled=enabled,
        hours_before_shift=hours_before_shift,
        check_interval_minutes=check_interval_minutes,
    )
