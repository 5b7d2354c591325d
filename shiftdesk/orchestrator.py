from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Callable

import httpx

from .browser import Navigator, remove_query_params
from .constants import ACCESS_DENIED_MESSAGE, LOGGER
from .errors import AdminAccessDenied, AuthError, ConfigurationError, NotAuthenticatedError
from .google_oauth import GoogleOAuthClient
from .models import TokenValidation
from .signals import Signal
from .token_manager import TokenManager

CALLBACK_QUERY_PARAMS = {"code", "state", "scope"}


@dataclass(frozen=True)
class AdminUser:
    email: str
    name: str
    is_admin: bool


@dataclass(frozen=True)
class AuthState:
    is_authenticated: bool = False
    is_loading: bool = False
    user: AdminUser | None = None
    error: str | None = None

    def __post_init__(self) -> None:
        if self.is_authenticated and (self.user is None or not self.user.is_admin):
            raise ValueError("An authenticated state requires an admin user.")


@dataclass
class LoginResult:
    success: bool
    user: AdminUser | None = None
    error: str | None = None


UNAUTHENTICATED = AuthState()
LOADING = AuthState(is_loading=True)


class AuthOrchestrator:
    """Login/logout/validate state machine over the OAuth client and token manager.

    Exactly one ``AuthState`` is held and every transition is broadcast to
    subscribers. Failures are terminal for the attempt: nothing here retries,
    a fresh ``login()`` is required.
    """

    def __init__(
        self,
        oauth_client: GoogleOAuthClient,
        token_manager: TokenManager,
        navigator: Navigator,
    ) -> None:
        self._oauth = oauth_client
        self._tokens = token_manager
        self._navigator = navigator
        self._state: Signal[AuthState] = Signal(UNAUTHENTICATED)

    # -- state -----------------------------------------------------------------

    @property
    def state(self) -> AuthState:
        return self._state.value

    @property
    def token_manager(self) -> TokenManager:
        return self._tokens

    @property
    def current_user(self) -> AdminUser | None:
        return self._state.value.user

    def is_authenticated(self) -> bool:
        return self._state.value.is_authenticated

    def subscribe(
        self, listener: Callable[[AuthState], None], *, replay: bool = True
    ) -> Callable[[], None]:
        return self._state.subscribe(listener, replay=replay)

    def clear_error(self) -> None:
        current = self._state.value
        if current.error:
            self._set_state(replace(current, error=None))

    def _set_state(self, state: AuthState) -> None:
        self._state.set(state)

    # -- flows -----------------------------------------------------------------

    async def initialize(self) -> AuthState:
        if self._oauth.is_callback_url():
            await self._complete_callback()
        elif self._tokens.has_valid_token():
            await self._validate_existing_token()
        else:
            self._set_state(UNAUTHENTICATED)
        return self.state

    async def login(self) -> LoginResult:
        self._set_state(LOADING)
        try:
            await self._oauth.start_oauth_flow()
        except ConfigurationError as error:
            self._fail(str(error))
            raise
        except (AuthError, httpx.HTTPError) as error:
            message = str(error) or "Failed to start login"
            self._fail(message)
            return LoginResult(success=False, error=message)
        return LoginResult(success=True)

    async def logout(self) -> None:
        self._set_state(LOADING)
        try:
            await self._tokens.logout()
        finally:
            self._set_state(UNAUTHENTICATED)
        LOGGER.info("Logged out")

    async def handle_callback(self) -> bool:
        """Run the callback handshake and report whether it ended authenticated."""
        return await self._complete_callback()

    async def refresh_auth_state(self) -> AuthState:
        if not self._tokens.has_valid_token():
            raise NotAuthenticatedError("No valid token available")

        self._set_state(replace(self._state.value, is_loading=True, error=None))
        try:
            validation = await self._tokens.validate_token()
        except (AuthError, httpx.HTTPError) as error:
            LOGGER.error("Token validation failed: %s", error)
            self._fail("Token validation failed")
            raise
        self._apply_validation(validation)
        return self.state

    # -- internals -------------------------------------------------------------

    async def _complete_callback(self) -> bool:
        self._set_state(LOADING)
        url = self._navigator.current_url()
        try:
            callback = await self._oauth.process_callback(url)
        except AuthError as error:
            self._fail(str(error) or "Invalid OAuth callback")
            return False
        except httpx.HTTPError as error:
            LOGGER.error("OAuth state lookup failed: %s", error)
            self._fail("Invalid OAuth callback")
            return False

        try:
            tokens = await self._oauth.exchange_code_for_tokens(
                callback.code, callback.code_verifier, callback.redirect_uri
            )
            self._tokens.store_tokens(
                tokens.access_token,
                tokens.refresh_token or "",
                tokens.expires_in,
                tokens.token_type,
                tokens.scope,
            )
            validation = await self._tokens.validate_token()
        except AdminAccessDenied as error:
            LOGGER.warning("Rejected non-admin login: %s", error)
            self._fail(ACCESS_DENIED_MESSAGE)
            return False
        except (AuthError, httpx.HTTPError) as error:
            LOGGER.error("OAuth callback processing failed: %s", error)
            self._fail("Authentication failed")
            return False

        if not self._apply_validation(validation):
            return False
        self._navigator.replace_url(remove_query_params(url, CALLBACK_QUERY_PARAMS))
        return True

    async def _validate_existing_token(self) -> None:
        self._set_state(LOADING)
        try:
            validation = await self._tokens.validate_token()
        except (AuthError, httpx.HTTPError) as error:
            LOGGER.error("Token validation failed: %s", error)
            self._tokens.clear_tokens()
            self._set_state(UNAUTHENTICATED)
            return
        self._apply_validation(validation)

    def _apply_validation(self, validation: TokenValidation) -> bool:
        if not validation.valid or not validation.is_admin:
            LOGGER.warning("Rejected non-admin login for %s", validation.email)
            self._fail(ACCESS_DENIED_MESSAGE)
            return False

        user = AdminUser(
            email=validation.email or "",
            name=validation.name or "",
            is_admin=True,
        )
        self._set_state(AuthState(is_authenticated=True, user=user))
        LOGGER.info("Authenticated admin %s", user.email)
        return True

    def _fail(self, message: str) -> None:
        self._tokens.clear_tokens()
        self._set_state(AuthState(error=message))
        LOGGER.error("Authentication error: %s", message)
