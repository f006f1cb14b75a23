from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from typing import Any, Iterable, Mapping

import httpx

from ..core.config import settings
from ..core.errors import BillingNotConfigured, ProviderError, WebhookSignatureError

logger = logging.getLogger(__name__)


def _flatten_form(data: Mapping[str, Any], prefix: str = "") -> list[tuple[str, str]]:
    """Encode nested dicts/lists with the bracket syntax the billing API expects.

    ``{"metadata": {"plan": "TRIAL"}, "line_items": [{"price": "p"}]}`` becomes
    ``metadata[plan]=TRIAL`` and ``line_items[0][price]=p``.
    """

    pairs: list[tuple[str, str]] = []
    for key, value in data.items():
        name = f"{prefix}[{key}]" if prefix else str(key)
        if value is None:
            continue
        if isinstance(value, Mapping):
            pairs.extend(_flatten_form(value, name))
        elif isinstance(value, (list, tuple)):
            for index, entry in enumerate(value):
                entry_name = f"{name}[{index}]"
                if isinstance(entry, Mapping):
                    pairs.extend(_flatten_form(entry, entry_name))
                else:
                    pairs.append((entry_name, str(entry)))
        elif isinstance(value, bool):
            pairs.append((name, "true" if value else "false"))
        else:
            pairs.append((name, str(value)))
    return pairs


class BillingClient:
    """Thin synchronous client for the handful of billing endpoints we use."""

    def __init__(
        self,
        *,
        api_key: str,
        api_base: str,
        timeout: float = 15.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls) -> "BillingClient":
        return cls(
            api_key=settings.STRIPE_SECRET_KEY,
            api_base=settings.STRIPE_API_BASE,
            timeout=settings.BILLING_TIMEOUT_SECONDS,
        )

    def _request(self, method: str, path: str, data: Mapping[str, Any] | None = None) -> dict[str, Any]:
        if not self.api_key:
            raise BillingNotConfigured("Billing is not configured")
        url = f"{self.api_base}/{path.lstrip('/')}"
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.request(
                    method,
                    url,
                    data=dict(_flatten_form(data)) if data else None,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
        except httpx.HTTPError as exc:
            logger.error("billing request %s %s failed: %s", method, path, exc)
            raise ProviderError("Billing provider unavailable", details={"message": str(exc)}) from exc

        try:
            body = response.json()
        except ValueError:
            body = None
        if response.is_error or not isinstance(body, dict):
            message = None
            if isinstance(body, dict) and isinstance(body.get("error"), dict):
                message = body["error"].get("message")
            logger.error("billing request %s %s returned %s", method, path, response.status_code)
            raise ProviderError(message or "Billing provider error", details={"status": response.status_code})
        return body

    def create_customer(self, *, email: str | None, name: str | None, metadata: Mapping[str, str]) -> dict[str, Any]:
        return self._request("POST", "customers", {"email": email or None, "name": name or None, "metadata": dict(metadata)})

    def retrieve_customer(self, customer_id: str) -> dict[str, Any]:
        return self._request("GET", f"customers/{customer_id}")

    def create_checkout_session(
        self,
        *,
        customer_id: str,
        price_id: str,
        mode: str,
        metadata: Mapping[str, str],
        success_url: str,
        cancel_url: str,
        subscription_metadata: Mapping[str, str] | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "customer": customer_id,
            "mode": mode,
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": dict(metadata),
        }
        if subscription_metadata:
            payload["subscription_data"] = {"metadata": dict(subscription_metadata)}
        return self._request("POST", "checkout/sessions", payload)

    def create_billing_portal_session(self, *, customer_id: str, return_url: str) -> dict[str, Any]:
        return self._request("POST", "billing_portal/sessions", {"customer": customer_id, "return_url": return_url})


def get_billing_client() -> BillingClient:
    return BillingClient.from_settings()


# ---------- webhook verification ----------


def _parse_signature_header(header: str) -> tuple[int | None, list[str]]:
    timestamp: int | None = None
    signatures: list[str] = []
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                timestamp = None
        elif key == "v1" and value:
            signatures.append(value)
    return timestamp, signatures


def compute_signature(payload: bytes, timestamp: int, secret: str) -> str:
    signed = f"{timestamp}.".encode("utf-8") + payload
    return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()


def sign_payload(payload: bytes, secret: str, timestamp: int | None = None) -> str:
    """Build a signature header for ``payload``; handy for tests and replay tools."""

    ts = int(time.time()) if timestamp is None else timestamp
    return f"t={ts},v1={compute_signature(payload, ts, secret)}"


def _any_match(expected: str, candidates: Iterable[str]) -> bool:
    return any(hmac.compare_digest(expected, candidate) for candidate in candidates)


def construct_event(
    payload: bytes,
    signature_header: str | None,
    secret: str,
    *,
    tolerance: int = 300,
    now: float | None = None,
) -> dict[str, Any]:
    """Authenticate a webhook delivery and return the parsed event."""

    if not secret:
        raise WebhookSignatureError("Webhook secret is not configured")
    if not signature_header:
        raise WebhookSignatureError("Missing signature header")
    timestamp, signatures = _parse_signature_header(signature_header)
    if timestamp is None or not signatures:
        raise WebhookSignatureError("Malformed signature header")
    if not _any_match(compute_signature(payload, timestamp, secret), signatures):
        raise WebhookSignatureError("No matching signature")
    current = time.time() if now is None else now
    if tolerance and abs(current - timestamp) > tolerance:
        raise WebhookSignatureError("Timestamp outside tolerance")
    try:
        event = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise WebhookSignatureError("Payload is not valid JSON") from exc
    if not isinstance(event, dict) or not isinstance(event.get("type"), str):
        raise WebhookSignatureError("Payload is not an event")
    return event
