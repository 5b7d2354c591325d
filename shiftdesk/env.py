from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import AnyHttpUrl, TypeAdapter, ValidationError

from .constants import (
    CALLBACK_PATH,
    DEFAULT_HTTP_TIMEOUT_SECONDS,
    DEFAULT_MAX_RETRIES,
    DEFAULT_SCOPE,
    LOGGER,
)
from .google_oauth import OAuthConfig

DEFAULT_PUBLIC_URL = "http://localhost:4200"

_URL_ADAPTER = TypeAdapter(AnyHttpUrl)


def is_truthy(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def parse_csv_env(key: str) -> set[str]:
    raw = os.getenv(key, "")
    if not raw.strip():
        return set()
    return {item.strip() for item in raw.split(",") if item.strip()}


def get_env_int(key: str, default: int) -> int:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be an integer value.")


def get_env_float(key: str, default: float) -> float:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be a number.")


def validate_url(key: str, value: str) -> str:
    try:
        return str(_URL_ADAPTER.validate_python(value))
    except ValidationError as error:
        raise RuntimeError(f"{key} must be a valid http(s) URL: {value!r}") from error


def load_env() -> None:
    env_path = Path(__file__).resolve().parent.parent / ".env"
    if not env_path.exists():
        return
    load_dotenv(env_path, override=True)


def validate_env() -> None:
    required = (
        "GOOGLE_OAUTH_CLIENT_ID",
        "GOOGLE_OAUTH_CLIENT_SECRET",
    )
    missing = [key for key in required if not os.getenv(key, "").strip()]
    if missing:
        raise RuntimeError(
            f"Missing required environment variables for the auth proxy: {', '.join(missing)}"
        )

    for key in ("GOOGLE_OAUTH_REDIRECT_URI", "SHIFTDESK_PUBLIC_URL"):
        value = os.getenv(key, "").strip()
        if value:
            validate_url(key, value)

    if not parse_csv_env("ADMIN_EMAILS"):
        LOGGER.warning("ADMIN_EMAILS is empty; every login will be refused.")

    get_env_float("SHIFTDESK_HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT_SECONDS)
    get_env_int("SHIFTDESK_MAX_RETRIES", DEFAULT_MAX_RETRIES)


def setup_logging() -> bool:
    debug_enabled = is_truthy(os.getenv("SHIFTDESK_DEBUG", "1"))
    if debug_enabled:
        logging.basicConfig(level=logging.INFO)
        LOGGER.setLevel(logging.INFO)
        logging.getLogger("auth_proxy").setLevel(logging.INFO)
    return debug_enabled


def http_timeout() -> float:
    return get_env_float("SHIFTDESK_HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT_SECONDS)


def max_retries() -> int:
    return get_env_int("SHIFTDESK_MAX_RETRIES", DEFAULT_MAX_RETRIES)


def public_url() -> str:
    raw = os.getenv("SHIFTDESK_PUBLIC_URL", "").strip() or DEFAULT_PUBLIC_URL
    return validate_url("SHIFTDESK_PUBLIC_URL", raw).rstrip("/")


def api_base_url() -> str:
    raw = os.getenv("SHIFTDESK_API_BASE_URL", "").strip()
    if not raw:
        return public_url()
    return validate_url("SHIFTDESK_API_BASE_URL", raw).rstrip("/")


def load_oauth_config() -> OAuthConfig:
    return OAuthConfig(
        client_id=os.getenv("GOOGLE_OAUTH_CLIENT_ID", "").strip(),
        redirect_uri=f"{public_url()}{CALLBACK_PATH}",
        scope=os.getenv("GOOGLE_OAUTH_SCOPE", DEFAULT_SCOPE).strip() or DEFAULT_SCOPE,
        admin_emails=sorted(parse_csv_env("ADMIN_EMAILS")),
    )
