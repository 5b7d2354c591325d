from __future__ import annotations

from starlette.requests import Request
from starlette.responses import Response

REFRESH_COOKIE_NAME = "refreshToken"
REFRESH_COOKIE_PATH = "/api/auth"
REFRESH_COOKIE_MAX_AGE = 7 * 24 * 60 * 60


def set_refresh_cookie(response: Response, refresh_token: str) -> None:
    response.set_cookie(
        REFRESH_COOKIE_NAME,
        refresh_token,
        max_age=REFRESH_COOKIE_MAX_AGE,
        path=REFRESH_COOKIE_PATH,
        secure=True,
        httponly=True,
        samesite="strict",
    )


def clear_refresh_cookie(response: Response) -> None:
    response.set_cookie(
        REFRESH_COOKIE_NAME,
        "",
        max_age=0,
        path=REFRESH_COOKIE_PATH,
        secure=True,
        httponly=True,
        samesite="strict",
    )


def read_refresh_token(request: Request, body: dict | None = None) -> str | None:
    token = request.cookies.get(REFRESH_COOKIE_NAME)
    if token:
        return token
    if body:
        fallback = body.get("refreshToken")
        if isinstance(fallback, str) and fallback:
            return fallback
    return None


def extract_bearer_token(authorization_header: str | None) -> str | None:
    if not authorization_header:
        return None
    scheme, _, token = authorization_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()

