import httpx
from starlette.applications import Starlette
from starlette.testclient import TestClient

from auth_proxy.cookies import REFRESH_COOKIE_NAME
from auth_proxy.google_oauth2 import GOOGLE_TOKEN_URL
from auth_proxy.proxy_server import AuthProxyServer, parse_admin_emails
from auth_proxy.state_store import MemoryStateStore
from tests.helpers import (
    ADMIN_EMAIL,
    ORIGIN,
    REDIRECT_URI,
    VOLUNTEER_EMAIL,
    FakeGoogle,
    _build_test_client,
    invalid_grant,
)


def _exchange(test_client, **overrides):
    body = {
        "code": "auth-code",
        "codeVerifier": "v" * 128,
        "redirectUri": REDIRECT_URI,
        "state": "s1",
    }
    body.update(overrides)
    return test_client.post("/api/auth/token", json=body, headers={"Origin": ORIGIN})


def test_parse_admin_emails_normalizes() -> None:
    assert parse_admin_emails(" Admin@Example.org, ,other@example.org ") == {
        "admin@example.org",
        "other@example.org",
    }
    assert parse_admin_emails(None) == set()


# -- token exchange --------------------------------------------------------------


def test_token_exchange_sets_refresh_cookie() -> None:
    _, google, test_client = _build_test_client()

    response = _exchange(test_client)

    assert response.status_code == 200
    payload = response.json()
    assert payload["access_token"] == "google-access"
    assert payload["expires_in"] == 3600
    assert google.exchange_calls[0]["code_verifier"] == "v" * 128
    assert google.exchange_calls[0]["redirect_uri"] == REDIRECT_URI

    cookie = response.headers["set-cookie"]
    assert f"{REFRESH_COOKIE_NAME}=google-refresh" in cookie
    assert "HttpOnly" in cookie
    assert "Secure" in cookie
    assert "SameSite=strict" in cookie
    assert "Path=/api/auth" in cookie
    assert "Max-Age=604800" in cookie
    assert response.headers["access-control-allow-origin"] == ORIGIN
    assert response.headers["access-control-allow-credentials"] == "true"


def test_token_exchange_requires_code_and_verifier() -> None:
    _, google, test_client = _build_test_client()

    response = _exchange(test_client, codeVerifier="")

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_request"
    assert google.exchange_calls == []


def test_token_exchange_rejects_invalid_json() -> None:
    _, _, test_client = _build_test_client()

    response = test_client.post(
        "/api/auth/token", content=b"not json", headers={"Content-Type": "application/json"}
    )

    assert response.status_code == 400


def test_token_exchange_without_secret_is_configuration_error() -> None:
    _, google, test_client = _build_test_client(client_secret="")

    response = _exchange(test_client)

    assert response.status_code == 500
    assert response.json()["error"] == "server_configuration_error"
    assert google.exchange_calls == []


def test_token_exchange_provider_failure_is_500() -> None:
    google = FakeGoogle()
    google.exchange_error = invalid_grant()
    _, _, test_client = _build_test_client(google)

    response = _exchange(test_client)

    assert response.status_code == 500
    assert response.json()["error"] == "authentication_failed"


def test_token_exchange_refuses_non_admin() -> None:
    _, _, test_client = _build_test_client(FakeGoogle(email=VOLUNTEER_EMAIL))

    response = _exchange(test_client)

    assert response.status_code == 403
    assert response.json()["error"] == "access_denied"
    assert "set-cookie" not in response.headers


def test_admin_allowlist_is_case_insensitive() -> None:
    _, _, test_client = _build_test_client(FakeGoogle(email="ADMIN@Example.org"))

    assert _exchange(test_client).status_code == 200


# -- refresh ---------------------------------------------------------------------


def test_refresh_reads_cookie() -> None:
    _, google, test_client = _build_test_client()
    test_client.cookies.set(REFRESH_COOKIE_NAME, "cookie-refresh", path="/api/auth")

    response = test_client.post("/api/auth/refresh", json={"refreshToken": "body-refresh"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["access_token"] == "google-access-refreshed"
    assert payload["user"]["email"] == ADMIN_EMAIL
    assert google.refresh_calls[0]["refresh_token"] == "cookie-refresh"


def test_refresh_falls_back_to_body() -> None:
    _, google, test_client = _build_test_client()

    response = test_client.post("/api/auth/refresh", json={"refreshToken": "body-refresh"})

    assert response.status_code == 200
    assert google.refresh_calls[0]["refresh_token"] == "body-refresh"


def test_refresh_without_token_is_401() -> None:
    _, _, test_client = _build_test_client()

    response = test_client.post("/api/auth/refresh", json={})

    assert response.status_code == 401
    assert response.json()["error"] == "no_refresh_token"


def test_refresh_invalid_grant_clears_cookie() -> None:
    google = FakeGoogle()
    google.refresh_error = invalid_grant()
    _, _, test_client = _build_test_client(google)

    response = test_client.post("/api/auth/refresh", json={"refreshToken": "stale"})

    assert response.status_code == 401
    assert response.json()["error"] == "token_expired"
    assert "Max-Age=0" in response.headers["set-cookie"]


def test_refresh_other_provider_failure_is_500() -> None:
    google = FakeGoogle()
    google.refresh_error = httpx.ConnectError("boom")
    _, _, test_client = _build_test_client(google)

    response = test_client.post("/api/auth/refresh", json={"refreshToken": "r"})

    assert response.status_code == 500
    assert "set-cookie" not in response.headers


def test_refresh_detects_revoked_admin() -> None:
    _, _, test_client = _build_test_client(admin_emails={"someone-else@example.org"})

    response = test_client.post("/api/auth/refresh", json={"refreshToken": "r"})

    assert response.status_code == 403
    assert response.json()["error"] == "access_revoked"
    assert "Max-Age=0" in response.headers["set-cookie"]


# -- validate admin --------------------------------------------------------------


def test_validate_admin_success() -> None:
    _, _, test_client = _build_test_client()

    response = test_client.post("/api/auth/validate-admin", json={"accessToken": "google-access"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["success"] is True
    assert payload["isAdmin"] is True
    assert payload["user"] == {
        "email": ADMIN_EMAIL,
        "name": "Pat Admin",
        "picture": "https://img/pat.png",
    }
    assert payload["permissions"]["canManageShifts"] is True


def test_validate_admin_accepts_bearer_header() -> None:
    _, _, test_client = _build_test_client()

    response = test_client.post(
        "/api/auth/validate-admin", headers={"Authorization": "Bearer google-access"}
    )

    assert response.status_code == 200


def test_validate_admin_missing_token_is_401() -> None:
    _, _, test_client = _build_test_client()

    response = test_client.post("/api/auth/validate-admin", json={})

    assert response.status_code == 401
    assert response.json()["isAdmin"] is False


def test_validate_admin_invalid_token_is_401() -> None:
    from auth_proxy.google_oauth2 import GoogleOAuthError

    google = FakeGoogle()
    google.user_info_error = GoogleOAuthError("User info request failed", status_code=401)
    _, _, test_client = _build_test_client(google)

    response = test_client.post("/api/auth/validate-admin", json={"accessToken": "expired"})

    assert response.status_code == 401
    assert response.json()["error"] == "invalid_token"


def test_validate_admin_non_admin_is_403() -> None:
    _, _, test_client = _build_test_client(FakeGoogle(email=VOLUNTEER_EMAIL))

    response = test_client.post("/api/auth/validate-admin", json={"accessToken": "t"})

    assert response.status_code == 403
    assert response.json() == {
        "error": "access_denied",
        "error_description": "You are not authorized to access the admin panel.",
        "isAdmin": False,
    }


# -- logout ----------------------------------------------------------------------


def test_logout_revokes_both_tokens() -> None:
    _, google, test_client = _build_test_client()
    test_client.cookies.set(REFRESH_COOKIE_NAME, "cookie-refresh", path="/api/auth")

    response = test_client.post("/api/auth/logout", json={"accessToken": "google-access"})

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert google.revoked == ["google-access", "cookie-refresh"]
    assert "Max-Age=0" in response.headers["set-cookie"]


def test_logout_succeeds_when_revocation_fails() -> None:
    google = FakeGoogle()
    google.revoke_error = httpx.ConnectError("provider down")
    _, _, test_client = _build_test_client(google)

    response = test_client.post("/api/auth/logout", json={"accessToken": "a"})

    assert response.status_code == 200
    assert response.json()["success"] is True


def test_logout_without_body_succeeds() -> None:
    _, google, test_client = _build_test_client()

    response = test_client.post("/api/auth/logout")

    assert response.status_code == 200
    assert google.revoked == []


# -- oauth state -----------------------------------------------------------------


def _store(test_client, state="s1"):
    return test_client.post(
        "/api/oauth-state?action=store",
        json={"state": state, "codeVerifier": "v1", "redirectUri": "https://x/cb"},
    )


def test_oauth_state_round_trip_is_one_time() -> None:
    _, _, test_client = _build_test_client()

    session_id = _store(test_client).json()["sessionId"]
    retrieved = test_client.get(
        "/api/oauth-state", params={"action": "retrieve", "sessionId": session_id, "state": "s1"}
    )
    again = test_client.get(
        "/api/oauth-state", params={"action": "retrieve", "sessionId": session_id, "state": "s1"}
    )

    assert retrieved.status_code == 200
    assert retrieved.json()["codeVerifier"] == "v1"
    assert retrieved.json()["redirectUri"] == "https://x/cb"
    assert again.status_code == 404


def test_oauth_state_mismatch_is_generic_403() -> None:
    _, _, test_client = _build_test_client()
    session_id = _store(test_client).json()["sessionId"]

    response = test_client.get(
        "/api/oauth-state",
        params={"action": "retrieve", "sessionId": session_id, "state": "forged"},
    )

    assert response.status_code == 403
    assert response.json() == {
        "error": "forbidden",
        "error_description": "OAuth state validation failed.",
    }


def test_oauth_state_store_requires_fields() -> None:
    _, _, test_client = _build_test_client()

    response = test_client.post("/api/oauth-state?action=store", json={"state": "s1"})

    assert response.status_code == 400


def test_oauth_state_retrieve_requires_params() -> None:
    _, _, test_client = _build_test_client()

    response = test_client.get("/api/oauth-state", params={"action": "retrieve"})

    assert response.status_code == 400


def test_oauth_state_wrong_action_is_400() -> None:
    _, _, test_client = _build_test_client()

    response = test_client.post("/api/oauth-state?action=retrieve", json={})

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_action"


def test_oauth_state_unsupported_method_is_405() -> None:
    _, _, test_client = _build_test_client()

    response = test_client.put("/api/oauth-state?action=store", json={})

    assert response.status_code == 405


def test_oauth_state_cleanup() -> None:
    proxy, _, test_client = _build_test_client()
    session_id = _store(test_client).json()["sessionId"]

    response = test_client.delete(
        "/api/oauth-state", params={"action": "cleanup", "sessionId": session_id}
    )

    assert response.status_code == 200
    assert response.json() == {"success": True, "cleaned": True}
    assert session_id not in proxy.state_store


# -- cors ------------------------------------------------------------------------


def test_preflight_allows_configured_origin() -> None:
    _, _, test_client = _build_test_client()

    response = test_client.options(
        "/api/auth/token",
        headers={"Origin": ORIGIN, "Access-Control-Request-Method": "POST"},
    )

    assert response.status_code == 204
    assert response.headers["access-control-allow-origin"] == ORIGIN
    assert response.headers["access-control-allow-methods"] == "POST, OPTIONS"


def test_preflight_ignores_unknown_origin() -> None:
    _, _, test_client = _build_test_client()

    response = test_client.options(
        "/api/oauth-state", headers={"Origin": "https://evil.example"}
    )

    assert response.status_code == 204
    assert "access-control-allow-origin" not in response.headers


def test_non_json_provider_answer_is_a_json_error(httpx_mock) -> None:
    httpx_mock.add_response(method="POST", url=GOOGLE_TOKEN_URL, text="<html>maintenance</html>")
    proxy = AuthProxyServer(
        client_id="google-client",
        client_secret="google-secret",
        state_store=MemoryStateStore(),
        admin_emails={ADMIN_EMAIL},
        default_redirect_uri=REDIRECT_URI,
    )
    test_client = TestClient(Starlette(routes=proxy.routes()), base_url="https://shiftdesk.test")

    response = _exchange(test_client)

    assert response.status_code == 500
    assert response.json()["error"] == "authentication_failed"
    assert response.headers["access-control-allow-origin"] == ORIGIN
