"""Authorization Code flow with PKCE (RFC 7636) against Google.

The browser half of the login: it never sees the client secret. Pending
state and the code verifier live on the auth proxy, and only the opaque
session id is kept in session storage across the provider redirect.
"""

from __future__ import annotations

import base64
import hashlib
import secrets
import urllib.parse
from dataclasses import dataclass, field

import httpx

from .browser import Navigator, SessionStorage, query_params
from .constants import (
    CODE_VERIFIER_LENGTH,
    DEBUG_CLIENT_ID,
    DEFAULT_SCOPE,
    GOOGLE_AUTH_URL,
    LOGGER,
    PKCE_ALPHABET,
    SESSION_ID_STORAGE_KEY,
    STATE_LENGTH,
)
from .errors import (
    ConfigurationError,
    InvalidCallbackError,
    OAuthProviderError,
    ProxyRequestError,
    SessionLostError,
)
from .models import TokenResponse
from .proxy_client import AuthProxyClient


@dataclass
class OAuthConfig:
    client_id: str
    redirect_uri: str
    scope: str = DEFAULT_SCOPE
    admin_emails: list[str] = field(default_factory=list)

    def validate(self) -> None:
        if not self.client_id:
            raise ConfigurationError("OAuth client ID is required")
        if self.client_id == DEBUG_CLIENT_ID:
            raise ConfigurationError(
                "OAuth client ID is the development placeholder; configure GOOGLE_OAUTH_CLIENT_ID"
            )


@dataclass
class PKCEChallenge:
    code_verifier: str
    code_challenge: str


@dataclass
class CallbackResult:
    code: str
    code_verifier: str
    redirect_uri: str


def generate_random_string(length: int) -> str:
    return "".join(secrets.choice(PKCE_ALPHABET) for _ in range(length))


def generate_code_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


class GoogleOAuthClient:
    def __init__(
        self,
        config: OAuthConfig,
        proxy: AuthProxyClient,
        session_storage: SessionStorage,
        navigator: Navigator,
    ) -> None:
        self.config = config
        self._proxy = proxy
        self._session_storage = session_storage
        self._navigator = navigator

    def generate_pkce_challenge(self) -> PKCEChallenge:
        code_verifier = generate_random_string(CODE_VERIFIER_LENGTH)
        return PKCEChallenge(
            code_verifier=code_verifier,
            code_challenge=generate_code_challenge(code_verifier),
        )

    def generate_state(self) -> str:
        return generate_random_string(STATE_LENGTH)

    async def build_authorization_url(self, config: OAuthConfig | None = None) -> str:
        config = config or self.config
        config.validate()

        pkce = self.generate_pkce_challenge()
        state = self.generate_state()

        session_id = await self._proxy.store_state(state, pkce.code_verifier, config.redirect_uri)
        self._session_storage.set(SESSION_ID_STORAGE_KEY, session_id)

        query = {
            "client_id": config.client_id,
            "redirect_uri": config.redirect_uri,
            "response_type": "code",
            "scope": config.scope,
            "state": state,
            "code_challenge": pkce.code_challenge,
            "code_challenge_method": "S256",
            "access_type": "offline",
            "prompt": "consent",
        }
        return f"{GOOGLE_AUTH_URL}?{urllib.parse.urlencode(query)}"

    async def start_oauth_flow(self, config: OAuthConfig | None = None) -> None:
        url = await self.build_authorization_url(config)
        self._navigator.redirect(url)

    def is_callback_url(self, url: str | None = None) -> bool:
        params = query_params(url if url is not None else self._navigator.current_url())
        return "code" in params and "state" in params

    async def process_callback(self, url: str | None = None) -> CallbackResult:
        params = query_params(url if url is not None else self._navigator.current_url())
        # Cleared on every exit, success or failure.
        session_id = self._session_storage.get(SESSION_ID_STORAGE_KEY)
        self._session_storage.remove(SESSION_ID_STORAGE_KEY)

        error = params.get("error")
        if error:
            raise OAuthProviderError(error, params.get("error_description"))

        code = params.get("code")
        state = params.get("state")
        if not code:
            raise InvalidCallbackError("Authorization code not found in callback")
        if not state:
            raise InvalidCallbackError("State parameter not found in callback")
        if not session_id:
            raise SessionLostError("OAuth session not found in storage; please sign in again")

        stored = await self._proxy.retrieve_state(session_id, state)
        try:
            await self._proxy.cleanup_state(session_id)
        except (ProxyRequestError, httpx.HTTPError) as error:
            LOGGER.warning("OAuth state cleanup failed: %s", error)

        return CallbackResult(
            code=code,
            code_verifier=stored.code_verifier,
            redirect_uri=stored.redirect_uri or self.config.redirect_uri,
        )

    async def exchange_code_for_tokens(
        self,
        code: str,
        code_verifier: str,
        redirect_uri: str,
    ) -> TokenResponse:
        return await self._proxy.exchange_token(code, code_verifier, redirect_uri)
