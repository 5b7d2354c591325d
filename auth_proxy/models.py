from __future__ import annotations

from dataclasses import dataclass


@dataclass
class PendingAuthState:
    session_id: str
    state: str
    code_verifier: str
    redirect_uri: str
    created_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


@dataclass
class GoogleUserInfo:
    email: str
    name: str
    picture: str

    @classmethod
    def from_payload(cls, payload: dict) -> "GoogleUserInfo":
        email = payload.get("email")
        if not isinstance(email, str) or not email:
            raise RuntimeError("User info response missing email.")
        return cls(
            email=email,
            name=str(payload.get("name") or ""),
            picture=str(payload.get("picture") or ""),
        )

    def to_payload(self) -> dict:
        return {"email": self.email, "name": self.name, "picture": self.picture}
