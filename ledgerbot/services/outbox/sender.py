"""Outbound send primitive: the outbox's only dependency on the chat transport."""

from typing import Protocol

import httpx

from ledgerbot.common.errors import TransportError


class Sender(Protocol):
    def send(self, destination: str, payload: dict) -> None:
        """Deliver one payload or raise TransportError."""


class TelegramSender:
    """Bot API `sendMessage` over httpx with a hard per-request timeout.

    A timeout is reported as a failure even though the message may have
    arrived; the retry sweep can then deliver it twice (accepted risk).
    """

    def __init__(
        self,
        token: str,
        api_base: str = "https://api.telegram.org",
        timeout_seconds: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.url = f"{api_base.rstrip('/')}/bot{token}/sendMessage"
        self.client = client or httpx.Client(timeout=timeout_seconds)

    def send(self, destination: str, payload: dict) -> None:
        body = {
            "chat_id": destination,
            "text": payload["text"],
            "parse_mode": payload.get("parse_mode", "HTML"),
            "disable_web_page_preview": payload.get("disable_web_page_preview", True),
        }
        try:
            resp = self.client.post(self.url, json=body)
        except httpx.TimeoutException as exc:
            raise TransportError(f"sendMessage timed out: {exc}", kind="timeout") from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"sendMessage failed: {exc}") from exc
        if resp.status_code >= 400:
            raise TransportError(f"sendMessage failed status={resp.status_code} body={resp.text[:200]}", kind="rejected")
        try:
            ok = resp.json().get("ok", False)
        except ValueError:
            ok = False
        if not ok:
            raise TransportError(f"sendMessage not ok body={resp.text[:200]}", kind="rejected")

    def close(self) -> None:
        self.client.close()
