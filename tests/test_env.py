import pytest

from shiftdesk.env import (
    api_base_url,
    get_env_float,
    get_env_int,
    is_truthy,
    load_oauth_config,
    parse_csv_env,
    validate_env,
)

_ENV_KEYS = (
    "GOOGLE_OAUTH_CLIENT_ID",
    "GOOGLE_OAUTH_CLIENT_SECRET",
    "GOOGLE_OAUTH_REDIRECT_URI",
    "GOOGLE_OAUTH_SCOPE",
    "SHIFTDESK_PUBLIC_URL",
    "SHIFTDESK_API_BASE_URL",
    "SHIFTDESK_HTTP_TIMEOUT",
    "SHIFTDESK_MAX_RETRIES",
    "ADMIN_EMAILS",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def _set_required(monkeypatch) -> None:
    monkeypatch.setenv("GOOGLE_OAUTH_CLIENT_ID", "google-client")
    monkeypatch.setenv("GOOGLE_OAUTH_CLIENT_SECRET", "google-secret")
    monkeypatch.setenv("ADMIN_EMAILS", "admin@example.org")


def test_is_truthy() -> None:
    assert is_truthy(" Yes ")
    assert is_truthy("1")
    assert not is_truthy("0")
    assert not is_truthy(None)


def test_parse_csv_env_drops_blanks(monkeypatch) -> None:
    monkeypatch.setenv("ADMIN_EMAILS", " a@example.org, ,b@example.org,")

    assert parse_csv_env("ADMIN_EMAILS") == {"a@example.org", "b@example.org"}
    assert parse_csv_env("SHIFTDESK_UNSET_LIST") == set()


def test_numeric_env_values(monkeypatch) -> None:
    monkeypatch.setenv("SHIFTDESK_MAX_RETRIES", "5")
    monkeypatch.setenv("SHIFTDESK_HTTP_TIMEOUT", "2.5")

    assert get_env_int("SHIFTDESK_MAX_RETRIES", 3) == 5
    assert get_env_float("SHIFTDESK_HTTP_TIMEOUT", 10.0) == 2.5
    assert get_env_int("SHIFTDESK_UNSET_INT", 7) == 7


def test_invalid_int_is_reported(monkeypatch) -> None:
    monkeypatch.setenv("SHIFTDESK_MAX_RETRIES", "many")

    with pytest.raises(RuntimeError, match="SHIFTDESK_MAX_RETRIES"):
        get_env_int("SHIFTDESK_MAX_RETRIES", 3)


def test_validate_env_lists_missing_credentials() -> None:
    with pytest.raises(RuntimeError) as error:
        validate_env()

    assert "GOOGLE_OAUTH_CLIENT_ID" in str(error.value)
    assert "GOOGLE_OAUTH_CLIENT_SECRET" in str(error.value)


def test_validate_env_rejects_bad_redirect_uri(monkeypatch) -> None:
    _set_required(monkeypatch)
    monkeypatch.setenv("GOOGLE_OAUTH_REDIRECT_URI", "not a url")

    with pytest.raises(RuntimeError, match="GOOGLE_OAUTH_REDIRECT_URI"):
        validate_env()


def test_validate_env_warns_on_empty_admin_list(monkeypatch, caplog) -> None:
    _set_required(monkeypatch)
    monkeypatch.setenv("ADMIN_EMAILS", "")

    validate_env()

    assert "ADMIN_EMAILS is empty" in caplog.text


def test_load_oauth_config_builds_callback_uri(monkeypatch) -> None:
    _set_required(monkeypatch)
    monkeypatch.setenv("SHIFTDESK_PUBLIC_URL", "https://kitchen.example.org/")
    monkeypatch.setenv("ADMIN_EMAILS", "b@example.org,a@example.org")

    config = load_oauth_config()

    assert config.client_id == "google-client"
    assert config.redirect_uri == "https://kitchen.example.org/calendar/auth/callback"
    assert config.scope == "openid email profile"
    assert config.admin_emails == ["a@example.org", "b@example.org"]


def test_api_base_url_defaults_to_public_url(monkeypatch) -> None:
    monkeypatch.setenv("SHIFTDESK_PUBLIC_URL", "https://kitchen.example.org")

    assert api_base_url() == "https://kitchen.example.org"

    monkeypatch.setenv("SHIFTDESK_API_BASE_URL", "https://api.kitchen.example.org/")
    assert api_base_url() == "https://api.kitchen.example.org"
