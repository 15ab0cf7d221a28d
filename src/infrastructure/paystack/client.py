"""
Paystack API client and webhook simulator.

The client is read-only on purpose: it verifies transactions and lists
transfers so an operator can compare Paystack's view with the database.
Money-moving endpoints belong to the web app.

The simulator posts signed webhook events to a running app, exactly as
Paystack would, so webhook handling can be exercised without a real charge.
"""

import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.core.payments import CURRENCY, sign_webhook_payload


logger = logging.getLogger(__name__)


WEBHOOK_PATH = "/api/webhooks/paystack"
SIGNATURE_HEADER = "x-paystack-signature"
SUPPORTED_EVENTS = ("charge.success", "transfer.success", "transfer.failed", "refund.processed")


class PaystackClientError(Exception):
    """Raised when a Paystack API call fails."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass
class PaystackConfig:
    """Configuration for the Paystack client."""
    secret_key: str
    base_url: str = "https://api.paystack.co"
    timeout: float = 10.0

    def __post_init__(self) -> None:
        if not self.secret_key:
            raise ValueError("Paystack secret key is required")
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------

class PaystackEnvelope(BaseModel):
    """Every Paystack response wraps its payload the same way."""
    model_config = ConfigDict(extra="ignore")

    status: bool
    message: str = ""
    data: Any = None


class TransactionVerification(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    reference: str
    status: str
    amount: int = Field(description="Amount in the currency's subunit (cents)")
    currency: str = CURRENCY
    paid_at: Optional[str] = None
    gateway_response: Optional[str] = None

    @property
    def amount_major(self) -> float:
        return self.amount / 100


class TransferRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    reference: Optional[str] = None
    transfer_code: Optional[str] = None
    amount: int
    status: str
    created_at: Optional[str] = Field(default=None, alias="createdAt")


class PaystackClient:
    """Thin wrapper around the Paystack REST API."""

    def __init__(self, config: PaystackConfig, transport: Optional[httpx.BaseTransport] = None) -> None:
        self._config = config
        self._client = httpx.Client(
            base_url=config.base_url,
            timeout=config.timeout,
            transport=transport,
            headers={
                "Authorization": f"Bearer {config.secret_key}",
                "Content-Type": "application/json",
            },
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "PaystackClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _get(self, path: str, params: Optional[dict[str, Any]] = None) -> PaystackEnvelope:
        try:
            response = self._client.get(path, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            message = _error_message(e.response)
            logger.error(
                "Paystack API error",
                extra={"path": path, "status": e.response.status_code, "error": message}
            )
            raise PaystackClientError(f"Paystack API error: {message}", e.response.status_code) from e
        except httpx.HTTPError as e:
            logger.error("Paystack request failed", extra={"path": path, "error": str(e)})
            raise PaystackClientError(f"Paystack request failed: {e}") from e

        try:
            envelope = PaystackEnvelope.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise PaystackClientError(f"Unexpected Paystack response: {e}") from e

        if not envelope.status:
            raise PaystackClientError(envelope.message or "Paystack returned status false")
        return envelope

    def verify_transaction(self, reference: str) -> TransactionVerification:
        envelope = self._get(f"/transaction/verify/{reference}")
        try:
            return TransactionVerification.model_validate(envelope.data)
        except ValidationError as e:
            raise PaystackClientError(f"Unexpected transaction payload: {e}") from e

    def list_transfers(self, per_page: int = 50) -> list[TransferRecord]:
        envelope = self._get("/transfer", params={"perPage": per_page})
        try:
            return [TransferRecord.model_validate(item) for item in envelope.data or []]
        except ValidationError as e:
            raise PaystackClientError(f"Unexpected transfer payload: {e}") from e

    def health_check(self) -> bool:
        """True when the API answers an authenticated request."""
        try:
            self._get("/bank", params={"country": "south africa", "perPage": 1})
            return True
        except PaystackClientError as e:
            logger.warning("Paystack health check failed", extra={"error": str(e)})
            return False


def _error_message(response: httpx.Response) -> str:
    try:
        return response.json().get("message") or response.text
    except ValueError:
        return response.text or f"HTTP {response.status_code}"


# ---------------------------------------------------------------------------
# Webhook simulation
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class WebhookDelivery:
    status_code: int
    body: str
    signature: str


def encode_event(event: dict[str, Any]) -> bytes:
    """Serialise an event exactly once; the signature covers these bytes."""
    return json.dumps(event, separators=(",", ":")).encode("utf-8")


class WebhookSimulator:
    """Builds, signs and delivers Paystack webhook events to the app."""

    def __init__(
        self,
        app_url: str,
        secret: str,
        transport: Optional[httpx.BaseTransport] = None,
        timeout: float = 10.0,
    ) -> None:
        if not secret:
            raise ValueError("Webhook secret is required (PAYSTACK_WEBHOOK_SECRET or PAYSTACK_SECRET_KEY)")
        self._url = app_url.rstrip("/") + WEBHOOK_PATH
        self._secret = secret
        self._transport = transport
        self._timeout = timeout

    @property
    def url(self) -> str:
        return self._url

    @staticmethod
    def build_event(
        event: str,
        reference: str,
        amount: int = 50000,
        extra: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """
        Build an event body. amount is in cents.

        Only the fields the app reads are included.
        """
        if event not in SUPPORTED_EVENTS:
            raise ValueError(f"Unsupported event '{event}'. Choose from: {', '.join(SUPPORTED_EVENTS)}")

        now = datetime.now(timezone.utc).isoformat()
        event_id = int(time.time() * 1000)

        if event == "charge.success":
            data: dict[str, Any] = {
                "id": event_id,
                "reference": reference,
                "amount": amount,
                "currency": CURRENCY,
                "status": "success",
                "paid_at": now,
                "channel": "card",
                "gateway_response": "Successful",
            }
        elif event.startswith("transfer."):
            data = {
                "id": event_id,
                "reference": reference,
                "transfer_code": f"TRF_{event_id}",
                "amount": amount,
                "currency": CURRENCY,
                "status": "success" if event == "transfer.success" else "failed",
            }
        else:
            data = {
                "id": event_id,
                "transaction_reference": reference,
                "amount": amount,
                "currency": CURRENCY,
                "status": "processed",
            }

        if extra:
            data.update(extra)
        return {"event": event, "data": data}

    def sign(self, payload: bytes) -> str:
        return sign_webhook_payload(payload, self._secret)

    def send(self, event: dict[str, Any], tamper: bool = False) -> WebhookDelivery:
        """
        POST the event to the app's webhook endpoint.

        With tamper=True the signature is computed over different bytes, so
        a correctly hardened endpoint must reject the request.
        """
        payload = encode_event(event)
        signature = self.sign(payload + b" " if tamper else payload)

        logger.info(
            "Delivering simulated webhook",
            extra={"url": self._url, "event": event.get("event"), "tampered": tamper}
        )
        with httpx.Client(transport=self._transport, timeout=self._timeout) as client:
            try:
                response = client.post(
                    self._url,
                    content=payload,
                    headers={"Content-Type": "application/json", SIGNATURE_HEADER: signature},
                )
            except httpx.HTTPError as e:
                logger.error("Webhook delivery failed", extra={"url": self._url, "error": str(e)})
                raise PaystackClientError(f"Webhook delivery failed: {e}") from e

        return WebhookDelivery(status_code=response.status_code, body=response.text, signature=signature)
