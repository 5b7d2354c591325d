from __future__ import annotations

from dataclasses import dataclass


@dataclass
class TokenResponse:
    access_token: str
    refresh_token: str | None
    expires_in: int
    token_type: str = "Bearer"
    scope: str = ""

    @classmethod
    def from_payload(cls, payload: dict) -> "TokenResponse":
        access_token = payload.get("access_token")
        expires_in = payload.get("expires_in")
        if not isinstance(access_token, str) or not access_token:
            raise RuntimeError("Token response missing access_token.")
        if not isinstance(expires_in, int):
            raise RuntimeError("Token response missing expires_in.")
        refresh_token = payload.get("refresh_token")
        return cls(
            access_token=access_token,
            refresh_token=refresh_token if isinstance(refresh_token, str) and refresh_token else None,
            expires_in=expires_in,
            token_type=str(payload.get("token_type") or "Bearer"),
            scope=str(payload.get("scope") or ""),
        )


@dataclass
class TokenValidation:
    valid: bool
    email: str | None = None
    name: str | None = None
    picture: str | None = None
    is_admin: bool = False


@dataclass
class StoredState:
    code_verifier: str
    redirect_uri: str
