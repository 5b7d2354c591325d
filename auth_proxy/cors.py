from __future__ import annotations

from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

DEFAULT_CORS_ORIGINS = {
    "http://localhost:4200",
}
DEFAULT_ALLOW_METHODS = "GET, POST, DELETE, OPTIONS"


def _is_allowed_origin(origin: str | None, allowed_origins: set[str]) -> bool:
    return bool(origin and origin in allowed_origins)


def apply_cors_response(
    request: Request,
    response: Response,
    allowed_origins: set[str],
    *,
    methods: str = DEFAULT_ALLOW_METHODS,
) -> Response:
    origin = request.headers.get("origin")
    if _is_allowed_origin(origin, allowed_origins):
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Methods"] = methods
        response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
        # The refresh cookie only travels on credentialed requests.
        response.headers["Access-Control-Allow-Credentials"] = "true"
        response.headers["Vary"] = "Origin"
    return response


def cors_preflight_response(
    request: Request,
    allowed_origins: set[str],
    *,
    methods: str = DEFAULT_ALLOW_METHODS,
) -> Response:
    return apply_cors_response(
        request, Response(status_code=204), allowed_origins, methods=methods
    )


def preflight_route(path: str, allowed_origins: set[str], methods: list[str]) -> Route:
    allow = ", ".join([*methods, "OPTIONS"])

    async def handle_preflight(request: Request) -> Response:
        return cors_preflight_response(request, allowed_origins, methods=allow)

    return Route(path, handle_preflight, methods=["OPTIONS"])


def cors_error_response(
    request: Request,
    allowed_origins: set[str],
    code: str,
    description: str,
    status_code: int,
    *,
    extra: dict | None = None,
) -> Response:
    body = {"error": code, "error_description": description}
    if extra:
        body.update(extra)
    return apply_cors_response(
        request,
        JSONResponse(body, status_code=status_code),
        allowed_origins,
    )
