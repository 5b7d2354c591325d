from __future__ import annotations

import asyncio
import logging
import secrets
import time
from abc import ABC, abstractmethod

from auth_proxy.models import PendingAuthState

LOGGER = logging.getLogger("auth_proxy.state_store")

DEFAULT_STATE_TTL_SECONDS = 30 * 60
DEFAULT_SWEEP_INTERVAL_SECONDS = 60 * 60


def mask(value: str) -> str:
    return f"{value[:8]}..."


class PendingStateError(RuntimeError):
    status_code = 400
    error_code = "invalid_state"


class PendingStateNotFound(PendingStateError):
    status_code = 404
    error_code = "state_not_found"


class PendingStateExpired(PendingStateError):
    status_code = 410
    error_code = "state_expired"


class PendingStateMismatch(PendingStateError):
    status_code = 403
    error_code = "state_mismatch"


class StateStore(ABC):
    @abstractmethod
    async def store(self, state: str, code_verifier: str, redirect_uri: str) -> PendingAuthState:
        raise NotImplementedError

    @abstractmethod
    async def retrieve(self, session_id: str, state: str) -> PendingAuthState:
        raise NotImplementedError

    @abstractmethod
    async def cleanup(self, session_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def sweep_expired(self) -> int:
        raise NotImplementedError


class MemoryStateStore(StateStore):
    """Pending OAuth logins held in process memory.

    A restart drops every pending login; the user simply starts again.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = DEFAULT_STATE_TTL_SECONDS,
        sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        clock=time.time,
        sleep=asyncio.sleep,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock
        self._sleep = sleep
        self._entries: dict[str, PendingAuthState] = {}
        self._sweep_task: asyncio.Task | None = None

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._entries

    async def store(self, state: str, code_verifier: str, redirect_uri: str) -> PendingAuthState:
        now = self._clock()
        entry = PendingAuthState(
            session_id=secrets.token_hex(32),
            state=state,
            code_verifier=code_verifier,
            redirect_uri=redirect_uri,
            created_at=now,
            expires_at=now + self.ttl_seconds,
        )
        self._entries[entry.session_id] = entry
        LOGGER.info(
            "OAuth state stored session=%s state=%s expires_at=%s",
            mask(entry.session_id),
            mask(state),
            entry.expires_at,
        )
        return entry

    async def retrieve(self, session_id: str, state: str) -> PendingAuthState:
        # Removed before any check so a session id has exactly one reader.
        entry = self._entries.pop(session_id, None)
        if entry is None:
            LOGGER.warning("OAuth state not found session=%s", mask(session_id))
            raise PendingStateNotFound("OAuth state has expired or is invalid.")

        if entry.is_expired(self._clock()):
            LOGGER.warning("OAuth state expired session=%s", mask(session_id))
            raise PendingStateExpired("OAuth state has expired.")

        if not secrets.compare_digest(entry.state.encode(), state.encode()):
            LOGGER.error(
                "OAuth state mismatch, possible CSRF attempt session=%s received=%s stored=%s",
                mask(session_id),
                mask(state),
                mask(entry.state),
            )
            raise PendingStateMismatch("OAuth state validation failed.")

        LOGGER.info("OAuth state retrieved session=%s", mask(session_id))
        return entry

    async def cleanup(self, session_id: str) -> bool:
        existed = self._entries.pop(session_id, None) is not None
        LOGGER.info("OAuth state cleanup session=%s existed=%s", mask(session_id), existed)
        return existed

    async def sweep_expired(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            LOGGER.info("Swept %s expired OAuth states", len(expired))
        return len(expired)

    # -- lifecycle -------------------------------------------------------------

    def start(self) -> None:
        if self._sweep_task is not None and not self._sweep_task.done():
            return
        self._sweep_task = asyncio.get_running_loop().create_task(self._sweep_loop())

    async def stop(self) -> None:
        task = self._sweep_task
        self._sweep_task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        self._entries.clear()

    @property
    def running(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    async def _sweep_loop(self) -> None:
        while True:
            await self._sleep(self.sweep_interval_seconds)
            await self.sweep_expired()
