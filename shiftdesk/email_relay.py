from __future__ import annotations

from dataclasses import dataclass

import httpx

from .constants import LOGGER

SEND_EMAIL_PATH = "/api/send-email"


@dataclass
class EmailMessage:
    to: str
    subject: str
    html: str
    text: str = ""
    type: str = "reminder"

    def to_payload(self) -> dict:
        return {
            "to": self.to,
            "subject": self.subject,
            "html": self.html,
            "text": self.text,
            "type": self.type,
        }


class EmailRelayError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class EmailRelayClient:
    """Client of the site's email relay endpoint; SMTP happens behind it.

    Retries belong to the client's transport (see ``build_http_client``).
    """

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def send(self, message: EmailMessage) -> None:
        try:
            response = await self._client.post(SEND_EMAIL_PATH, json=message.to_payload())
            response.raise_for_status()
        except httpx.HTTPStatusError as error:
            raise EmailRelayError(
                f"Email relay answered {error.response.status_code}",
                status_code=error.response.status_code,
            ) from error
        except httpx.HTTPError as error:
            raise EmailRelayError(f"Email relay request failed: {error}") from error

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if isinstance(payload, dict) and payload.get("success") is False:
            raise EmailRelayError(str(payload.get("error") or "Email relay refused the message"))
        LOGGER.info("Email (%s) relayed to %s", message.type, message.to)
