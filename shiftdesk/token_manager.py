from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass

from .constants import LOGGER, MIN_REFRESH_DELAY_SECONDS, REFRESH_MARGIN_SECONDS
from .errors import (
    AlreadyRefreshingError,
    AuthError,
    NoRefreshTokenError,
    NotAuthenticatedError,
    TokenRefreshFailed,
)
from .models import TokenResponse, TokenValidation
from .proxy_client import AuthProxyClient
from .signals import Signal


@dataclass
class TokenRecord:
    access_token: str
    refresh_token: str
    expires_at: float
    token_type: str
    scope: str


@dataclass
class TokenExpiration:
    expires_at: float
    is_expired: bool
    time_until_expiry: float


def _current_task() -> asyncio.Task | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class TokenManager:
    """Sole holder of the live credentials, kept in memory only.

    A single refresh task is outstanding at any time; storing a new record
    cancels the previous task and schedules a new one at the record's
    ``expires_at`` (which already includes the refresh margin).
    """

    def __init__(
        self,
        proxy: AuthProxyClient,
        *,
        clock=time.time,
        sleep=asyncio.sleep,
        refresh_margin_seconds: float = REFRESH_MARGIN_SECONDS,
    ) -> None:
        self._proxy = proxy
        self._clock = clock
        self._sleep = sleep
        self._refresh_margin = refresh_margin_seconds
        self._record: TokenRecord | None = None
        self._refresh_task: asyncio.Task | None = None
        self._is_refreshing = False
        self.valid_token: Signal[bool] = Signal(False)

    # -- storage ---------------------------------------------------------------

    def store_tokens(
        self,
        access_token: str,
        refresh_token: str,
        expires_in: int,
        token_type: str = "Bearer",
        scope: str = "",
    ) -> TokenRecord:
        return self._store(
            access_token, refresh_token, expires_in, token_type, scope, min_delay=0.0
        )

    def _store(
        self,
        access_token: str,
        refresh_token: str,
        expires_in: int,
        token_type: str,
        scope: str,
        *,
        min_delay: float,
    ) -> TokenRecord:
        record = TokenRecord(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=self._clock() + expires_in - self._refresh_margin,
            token_type=token_type,
            scope=scope,
        )
        self._record = record
        self.schedule_token_refresh(min_delay=min_delay)
        self.valid_token.set(self.has_valid_token())
        LOGGER.info("Tokens stored; refresh due in %ss", int(record.expires_at - self._clock()))
        return record

    def get_access_token(self) -> str | None:
        record = self._record
        if record is None:
            return None
        if self._clock() >= record.expires_at:
            LOGGER.debug("Access token is past its refresh deadline")
            return None
        return record.access_token

    def has_valid_token(self) -> bool:
        return self.get_access_token() is not None

    def get_authorization_header(self) -> str | None:
        access_token = self.get_access_token()
        if access_token is None:
            return None
        return f"{self._record.token_type} {access_token}"

    def get_refresh_token(self) -> str | None:
        return self._record.refresh_token if self._record else None

    def token_expiration(self) -> TokenExpiration | None:
        record = self._record
        if record is None:
            return None
        remaining = record.expires_at - self._clock()
        return TokenExpiration(
            expires_at=record.expires_at,
            is_expired=remaining <= 0,
            time_until_expiry=max(0.0, remaining),
        )

    @property
    def is_refreshing(self) -> bool:
        return self._is_refreshing

    # -- refresh ---------------------------------------------------------------

    async def refresh_access_token(self) -> TokenResponse:
        refresh_token = self.get_refresh_token()
        if not refresh_token:
            raise NoRefreshTokenError("No refresh token available")
        if self._is_refreshing:
            raise AlreadyRefreshingError("Token refresh already in progress")

        record = self._record
        self._is_refreshing = True
        try:
            response = await self._proxy.refresh_token(refresh_token)
        except AuthError as error:
            LOGGER.error("Token refresh failed: %s", error)
            self.clear_tokens()
            if isinstance(error, TokenRefreshFailed):
                raise
            raise TokenRefreshFailed(
                f"Failed to refresh access token: {error}",
                status_code=error.status_code,
            ) from error
        finally:
            self._is_refreshing = False

        if self._record is not record:
            raise TokenRefreshFailed("Credentials changed while refreshing; result discarded")

        # A refreshed lifetime shorter than the margin must not spin the timer.
        self._store(
            response.access_token,
            refresh_token,
            response.expires_in,
            response.token_type,
            response.scope,
            min_delay=MIN_REFRESH_DELAY_SECONDS,
        )
        LOGGER.info("Access token refreshed")
        return response

    async def force_refresh(self) -> TokenResponse:
        return await self.refresh_access_token()

    def schedule_token_refresh(self, *, min_delay: float = 0.0) -> None:
        self._cancel_refresh_task()
        record = self._record
        if record is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            LOGGER.warning("No running event loop; automatic token refresh disabled")
            return
        delay = record.expires_at - self._clock()
        self._refresh_task = loop.create_task(self._refresh_when_due(max(min_delay, delay)))

    async def _refresh_when_due(self, delay: float) -> None:
        if delay > 0:
            await self._sleep(delay)
        try:
            await self.refresh_access_token()
        except AuthError as error:
            LOGGER.error("Scheduled token refresh failed: %s", error)

    def _cancel_refresh_task(self) -> None:
        task = self._refresh_task
        self._refresh_task = None
        if task is None or task.done() or task is _current_task():
            return
        task.cancel()

    # -- validation and logout -------------------------------------------------

    async def validate_token(self) -> TokenValidation:
        access_token = self.get_access_token()
        if not access_token:
            raise NotAuthenticatedError("No access token available")
        return await self._proxy.validate_admin(access_token)

    async def logout(self) -> bool:
        record = self._record
        revoked = False
        try:
            if record is not None:
                revoked = await self._proxy.logout(record.access_token, record.refresh_token)
        except Exception as error:
            LOGGER.error("Server logout failed: %s", error)
        finally:
            self.clear_tokens()
        return revoked

    def clear_tokens(self) -> None:
        self._cancel_refresh_task()
        self._record = None
        self._is_refreshing = False
        self.valid_token.set(False)
        LOGGER.debug("Tokens cleared")
