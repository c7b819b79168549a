import hashlib
import hmac
import logging
import secrets
import time
from dataclasses import dataclass, field

import requests

from app.core.exceptions import ExternalGatewayRejected, ExternalGatewayTimeout

logger = logging.getLogger(__name__)

INTENT_STATUSES = ("pending", "processing", "succeeded", "failed", "canceled")


@dataclass(frozen=True)
class PaymentIntent:
    id: str
    client_secret: str
    amount: int
    currency: str
    status: str  # one of INTENT_STATUSES
    metadata: dict = field(default_factory=dict)


def map_gateway_status(raw: str | None) -> str:
    raw = (raw or "").lower()
    if raw in ("succeeded", "canceled", "processing"):
        return raw
    if raw in ("failed", "requires_payment_method_failed"):
        return "failed"
    # requires_payment_method, requires_confirmation, requires_action, requires_capture
    return "pending"


@dataclass
class StripeConfig:
    secret_key: str
    api_base: str = "https://api.stripe.com"
    timeout: int = 15


class StripeGateway:
    """PaymentGateway over the Stripe PaymentIntents REST API."""

    name = "stripe"

    def __init__(self, cfg: StripeConfig):
        self.cfg = cfg

    def _request(self, method: str, path: str, data: dict | None = None, idempotency_key: str | None = None) -> dict:
        headers = {"Authorization": f"Bearer {self.cfg.secret_key}"}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        url = f"{self.cfg.api_base.rstrip('/')}{path}"
        try:
            r = requests.request(method=method.upper(), url=url, data=data, headers=headers, timeout=self.cfg.timeout)
        except (requests.Timeout, requests.ConnectionError) as e:
            # The request may or may not have reached the gateway.
            raise ExternalGatewayTimeout(f"payment gateway unreachable: {e}") from e
        try:
            body = r.json() if r.text else {}
        except ValueError:
            body = {"raw": r.text}
        if r.status_code >= 500:
            raise ExternalGatewayTimeout(f"payment gateway {r.status_code}: {body}")
        if r.status_code >= 400:
            err = body.get("error") or {}
            raise ExternalGatewayRejected(
                f"payment gateway {r.status_code}: {err.get('message') or body}",
                details={"type": err.get("type"), "code": err.get("code")},
            )
        return body

    def _to_intent(self, data: dict) -> PaymentIntent:
        return PaymentIntent(
            id=str(data.get("id") or ""),
            client_secret=str(data.get("client_secret") or ""),
            amount=int(data.get("amount") or 0),
            currency=str(data.get("currency") or ""),
            status=map_gateway_status(data.get("status")),
            metadata=dict(data.get("metadata") or {}),
        )

    def create_intent(self, amount_cents: int, currency: str, metadata: dict, description: str = "",
                      idempotency_key: str | None = None) -> PaymentIntent:
        form = {
            "amount": str(int(amount_cents)),
            "currency": currency.lower(),
            "automatic_payment_methods[enabled]": "true",
        }
        if description:
            form["description"] = description
        for k, v in (metadata or {}).items():
            form[f"metadata[{k}]"] = "" if v is None else str(v)
        intent = self._to_intent(self._request("POST", "/v1/payment_intents", form, idempotency_key=idempotency_key))
        logger.info("Created payment intent %s (%s %s)", intent.id, amount_cents, currency)
        return intent

    def get_intent(self, intent_id: str) -> PaymentIntent:
        return self._to_intent(self._request("GET", f"/v1/payment_intents/{intent_id}"))

    def cancel_intent(self, intent_id: str) -> PaymentIntent:
        return self._to_intent(self._request("POST", f"/v1/payment_intents/{intent_id}/cancel"))


class SandboxGateway:
    """In-memory gateway for local development and tests; never moves money."""

    name = "sandbox"

    def __init__(self):
        self.intents: dict[str, PaymentIntent] = {}
        self._by_idempotency_key: dict[str, str] = {}

    def create_intent(self, amount_cents: int, currency: str, metadata: dict, description: str = "",
                      idempotency_key: str | None = None) -> PaymentIntent:
        if idempotency_key and idempotency_key in self._by_idempotency_key:
            return self.intents[self._by_idempotency_key[idempotency_key]]
        intent = PaymentIntent(
            id=f"pi_{secrets.token_hex(12)}",
            client_secret=f"pi_secret_{secrets.token_hex(12)}",
            amount=int(amount_cents),
            currency=currency.lower(),
            status="pending",
            metadata={k: "" if v is None else str(v) for k, v in (metadata or {}).items()},
        )
        self.intents[intent.id] = intent
        if idempotency_key:
            self._by_idempotency_key[idempotency_key] = intent.id
        logger.info("Sandbox: created payment intent %s (%s %s)", intent.id, amount_cents, currency)
        return intent

    def get_intent(self, intent_id: str) -> PaymentIntent:
        intent = self.intents.get(intent_id)
        if intent is None:
            raise ExternalGatewayRejected(f"no such payment intent: {intent_id}", details={"code": "resource_missing"})
        return intent

    def cancel_intent(self, intent_id: str) -> PaymentIntent:
        return self._set_status(intent_id, "canceled")

    def mark_succeeded(self, intent_id: str) -> PaymentIntent:
        return self._set_status(intent_id, "succeeded")

    def mark_failed(self, intent_id: str) -> PaymentIntent:
        return self._set_status(intent_id, "failed")

    def _set_status(self, intent_id: str, status: str) -> PaymentIntent:
        intent = self.get_intent(intent_id)
        updated = PaymentIntent(intent.id, intent.client_secret, intent.amount, intent.currency, status, intent.metadata)
        if intent_id in self.intents:
            self.intents[intent_id] = updated
        return updated


def verify_webhook_signature(payload: bytes, signature_header: str | None, secret: str,
                             tolerance_seconds: int = 300, now: float | None = None) -> bool:
    """Verify a ``t=<ts>,v1=<hex hmac>`` webhook signature.

    Signed string is ``"<ts>.<raw body>"``, HMAC-SHA256 with the endpoint secret.
    Rejects timestamps outside the tolerance window to block replays.
    """
    if not signature_header or not secret:
        return False
    parts: dict[str, list[str]] = {}
    for chunk in signature_header.split(","):
        if "=" in chunk:
            k, v = chunk.strip().split("=", 1)
            parts.setdefault(k, []).append(v.strip())
    try:
        ts = int((parts.get("t") or [""])[0])
    except ValueError:
        return False
    if abs((now if now is not None else time.time()) - ts) > tolerance_seconds:
        return False
    signed = f"{ts}.".encode("utf-8") + payload
    expected = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return any(hmac.compare_digest(expected, candidate) for candidate in parts.get("v1", []))


def sign_webhook_payload(payload: bytes, secret: str, timestamp: int | None = None) -> str:
    """Build a signature header for ``payload`` (used by tooling that replays events)."""
    ts = int(timestamp if timestamp is not None else time.time())
    sig = hmac.new(secret.encode("utf-8"), f"{ts}.".encode("utf-8") + payload, hashlib.sha256).hexdigest()
    return f"t={ts},v1={sig}"


def build_gateway(settings) -> "StripeGateway | SandboxGateway":
    if settings.payments_sandbox:
        logger.info("Payments running in SANDBOX mode - no real charges will be made")
        return SandboxGateway()
    return StripeGateway(StripeConfig(
        secret_key=settings.STRIPE_SECRET_KEY,
        api_base=settings.STRIPE_API_BASE,
        timeout=settings.PAYMENTS_TIMEOUT_SECONDS,
    ))
