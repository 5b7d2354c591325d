from __future__ import annotations

import contextlib
import logging
import os

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from auth_proxy.proxy_server import AuthProxyServer, parse_admin_emails
from auth_proxy.state_store import (
    DEFAULT_STATE_TTL_SECONDS,
    DEFAULT_SWEEP_INTERVAL_SECONDS,
    MemoryStateStore,
)
from shiftdesk.constants import APP_VERSION
from shiftdesk.env import get_env_int, load_env, parse_csv_env, setup_logging, validate_env

LOGGER = logging.getLogger("auth_proxy.app")


async def health_route(request: Request) -> Response:
    del request
    return JSONResponse({"status": "ok", "version": APP_VERSION})


def create_proxy_server(state_store: MemoryStateStore) -> AuthProxyServer:
    return AuthProxyServer(
        client_id=os.getenv("GOOGLE_OAUTH_CLIENT_ID", "").strip(),
        client_secret=os.getenv("GOOGLE_OAUTH_CLIENT_SECRET", "").strip(),
        state_store=state_store,
        admin_emails=parse_admin_emails(os.getenv("ADMIN_EMAILS")),
        default_redirect_uri=os.getenv("GOOGLE_OAUTH_REDIRECT_URI", "").strip() or None,
        cors_origins=parse_csv_env("SHIFTDESK_CORS_ORIGINS"),
    )


def create_app(*, validate: bool = True) -> Starlette:
    load_env()
    setup_logging()
    if validate:
        validate_env()

    state_store = MemoryStateStore(
        ttl_seconds=get_env_int("SHIFTDESK_STATE_TTL_SECONDS", DEFAULT_STATE_TTL_SECONDS),
        sweep_interval_seconds=get_env_int(
            "SHIFTDESK_STATE_SWEEP_SECONDS", DEFAULT_SWEEP_INTERVAL_SECONDS
        ),
    )
    proxy = create_proxy_server(state_store)

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette):
        state_store.start()
        LOGGER.info("Auth proxy started with %s admin(s)", len(proxy.admin_emails))
        try:
            yield
        finally:
            await state_store.stop()

    app = Starlette(
        routes=[Route("/health", health_route, methods=["GET"]), *proxy.routes()],
        lifespan=lifespan,
    )
    app.state.proxy = proxy
    app.state.state_store = state_store
    return app


def main() -> None:
    import uvicorn

    host = os.getenv("SHIFTDESK_HOST", "127.0.0.1")
    port = get_env_int("SHIFTDESK_PORT", 8000)
    app = create_app()
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    main()
