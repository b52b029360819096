"""Outbound message channels (WhatsApp Cloud API, transactional email)."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass

import requests

logger = logging.getLogger(__name__)

_NON_DIGITS_RE = re.compile(r"\D")


@dataclass(frozen=True)
class SendResult:
    success: bool
    error: str | None = None
    message_id: str | None = None


def normalize_phone(phone: str) -> str:
    """Keep digits only (Meta expects the international number without '+')."""
    return _NON_DIGITS_RE.sub("", phone or "")


def build_status_update_text(*, ticket_label: str, title: str, status: str, website_url: str) -> str:
    return (
        "Hello,\n\n"
        f"There is an update on your ticket {ticket_label}.\n"
        f"Title: {title}\n"
        f"Status: {status}\n\n"
        f"Please log in to review and respond: {website_url}\n\n"
        "Thank you."
    )


class WhatsAppSender:
    """Send plain text messages through the WhatsApp Cloud API."""

    def __init__(self, *, base_url: str | None, token: str | None, timeout: float = 10):
        self._base_url = base_url.rstrip("/") if base_url else None
        self._token = token
        self._timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self._base_url and self._token)

    def send(self, destination: str, body: str) -> SendResult:
        if not self.configured:
            return SendResult(success=False, error="WhatsApp API not configured")

        to = normalize_phone(destination)
        if not to:
            return SendResult(success=False, error="Invalid phone number")

        try:
            response = requests.post(
                f"{self._base_url}/messages",
                json={
                    "messaging_product": "whatsapp",
                    "to": to,
                    "type": "text",
                    "text": {"body": body},
                },
                headers={"Authorization": f"Bearer {self._token}"},
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            return SendResult(success=False, error=f"EXCEPTION: {e}")

        if response.status_code in (200, 201):
            data = response.json()
            messages = data.get("messages") or [{}]
            return SendResult(success=True, message_id=messages[0].get("id"))
        return SendResult(success=False, error=f"HTTP_{response.status_code}: {response.text[:200]}")


class EmailSender:
    """Send HTML email through an HTTP transactional email API."""

    def __init__(self, *, api_url: str | None, api_key: str | None, sender: str, timeout: float = 10):
        self._api_url = api_url
        self._api_key = api_key
        self._sender = sender
        self._timeout = timeout

    def send(self, destination: str, subject: str, html: str) -> SendResult:
        if not self._api_url or not self._api_key:
            return SendResult(success=False, error="Email API not configured")

        try:
            response = requests.post(
                self._api_url,
                json={"from": self._sender, "to": [destination], "subject": subject, "html": html},
                headers={"Authorization": f"Bearer {self._api_key}"},
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            return SendResult(success=False, error=f"EXCEPTION: {e}")

        if 200 <= response.status_code < 300:
            return SendResult(success=True, message_id=response.json().get("id"))
        return SendResult(success=False, error=f"HTTP_{response.status_code}: {response.text[:200]}")


def approval_email(*, name: str | None, approved: bool, reason: str | None, website_url: str) -> tuple[str, str]:
    """Return (subject, html) for an account decision email."""
    greeting = f"Hello {name}," if name else "Hello,"
    if approved:
        return (
            "Your account has been approved",
            f"<p>{greeting}</p><p>Your account has been approved. "
            f'You can now <a href="{website_url}">log in</a> and access all features.</p>',
        )
    return (
        "Your account request was rejected",
        f"<p>{greeting}</p><p>Unfortunately, your account request has been rejected.</p>"
        f"<p>Reason: {reason or 'No reason provided'}</p>",
    )
