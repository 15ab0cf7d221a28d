"""
Escrow payment rules.

Mirrors the web app's Paystack integration closely enough to diagnose it:
fee breakdown, reference generation, webhook signatures, and the
conditions under which escrow can be released to a provider.
"""

import hashlib
import hmac
import random
import string
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional

from src.core.models import BookingStatus, PaymentStatus


PLATFORM_FEE_PERCENTAGE = 0.10
AUTO_CONFIRMATION_DAYS = 3
CURRENCY = "ZAR"
MIN_AMOUNT = 10
MAX_AMOUNT = 100000
REFERENCE_PREFIX = "CS"
OVERVIEW_EXAMPLES = 3

_BASE36 = string.digits + string.ascii_lowercase


PAYMENT_STATUS_HINTS = {
    PaymentStatus.PENDING: "Wait for payment confirmation or check webhook processing",
    PaymentStatus.HELD_IN_ESCROW: "Payment is held but not in correct status. Check webhook processing.",
    PaymentStatus.PROCESSING_RELEASE: "Payment is already being processed. Wait for completion.",
    PaymentStatus.RELEASED: "Payment already released. Check payout records.",
    PaymentStatus.REFUNDED: "Payment was refunded. Cannot release.",
    PaymentStatus.FAILED: "Payment failed. Check payment logs.",
}

BOOKING_STATUS_HINTS = {
    BookingStatus.PENDING: "Provider needs to accept the booking first",
    BookingStatus.CONFIRMED: "Client needs to make payment first",
    BookingStatus.PENDING_EXECUTION: "Provider needs to start the job first",
    BookingStatus.IN_PROGRESS: "Provider needs to complete the job first",
    BookingStatus.COMPLETED: "Payment already processed. Check payout records.",
}


@dataclass(frozen=True)
class PaymentBreakdown:
    """How a client payment is split between provider escrow and platform."""
    service_amount: float
    platform_fee: float
    escrow_amount: float
    total_amount: float


def calculate_payment_breakdown(
    service_amount: float,
    fee_percentage: float = PLATFORM_FEE_PERCENTAGE,
) -> PaymentBreakdown:
    """
    Split a service amount into platform fee and escrow.

    The client pays the service amount; the platform keeps the fee and
    the remainder is held in escrow for the provider.
    """
    if service_amount < MIN_AMOUNT or service_amount > MAX_AMOUNT:
        raise ValueError(
            f"Amount must be between R{MIN_AMOUNT} and R{MAX_AMOUNT}, got R{service_amount}"
        )

    platform_fee = round(service_amount * fee_percentage, 2)
    escrow_amount = round(service_amount - platform_fee, 2)
    return PaymentBreakdown(
        service_amount=round(service_amount, 2),
        platform_fee=platform_fee,
        escrow_amount=escrow_amount,
        total_amount=round(service_amount, 2),
    )


def _to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def generate_reference(prefix: str = REFERENCE_PREFIX) -> str:
    """Paystack transaction reference: PREFIX_<millis>_<random>, upper-cased."""
    timestamp = int(time.time() * 1000)
    suffix = _to_base36(random.getrandbits(40))[:9]
    return f"{prefix}_{timestamp}_{suffix}".upper()


def sign_webhook_payload(payload: bytes, secret: str) -> str:
    """Hex HMAC-SHA512 of the raw request body, as sent in x-paystack-signature."""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha512).hexdigest()


def verify_webhook_signature(payload: bytes, signature: Optional[str], secret: str) -> bool:
    if not signature or not secret:
        return False
    expected = sign_webhook_payload(payload, secret)
    return hmac.compare_digest(expected, signature)


# ---------------------------------------------------------------------------
# Release eligibility
# ---------------------------------------------------------------------------

@dataclass
class ReleaseAssessment:
    """Whether escrow for a booking can be released, and what blocks it."""
    payment_status: str
    booking_status: str
    issues: list[str] = field(default_factory=list)
    hints: list[str] = field(default_factory=list)

    @property
    def payment_ok(self) -> bool:
        return self.payment_status == PaymentStatus.ESCROW.value

    @property
    def booking_ok(self) -> bool:
        return self.booking_status == BookingStatus.AWAITING_CONFIRMATION.value

    @property
    def can_release(self) -> bool:
        return self.payment_ok and self.booking_ok


def _hint_for(status: str, hints: Mapping[Any, str], enum_type) -> str:
    try:
        return hints.get(enum_type(status), f"Unknown status '{status}'. Check database.")
    except ValueError:
        return f"Unknown status '{status}'. Check database."


def assess_release_eligibility(payment_status: str, booking_status: str) -> ReleaseAssessment:
    """Escrow release requires payment ESCROW and booking AWAITING_CONFIRMATION."""
    assessment = ReleaseAssessment(payment_status=payment_status, booking_status=booking_status)

    if not assessment.payment_ok:
        assessment.issues.append(
            f"Payment status should be 'ESCROW' but is '{payment_status}'"
        )
        assessment.hints.append(_hint_for(payment_status, PAYMENT_STATUS_HINTS, PaymentStatus))

    if not assessment.booking_ok:
        assessment.issues.append(
            f"Booking status should be 'AWAITING_CONFIRMATION' but is '{booking_status}'"
        )
        assessment.hints.append(_hint_for(booking_status, BOOKING_STATUS_HINTS, BookingStatus))

    return assessment


# ---------------------------------------------------------------------------
# Payment overview
# ---------------------------------------------------------------------------

@dataclass
class PaymentOverview:
    """Payments grouped by status, with a few examples per group."""
    total: int
    groups: "OrderedDict[str, list[Mapping[str, Any]]]"
    issues: list[str] = field(default_factory=list)

    def count(self, status: str) -> int:
        return len(self.groups.get(status, []))

    def examples(self, status: str, limit: int = OVERVIEW_EXAMPLES) -> list[Mapping[str, Any]]:
        return self.groups.get(status, [])[:limit]


def summarise_payment_statuses(rows: Iterable[Mapping[str, Any]]) -> PaymentOverview:
    """
    Group payment rows by their 'status' key and flag suspicious groups.

    Rows are expected newest first; the grouping keeps that order.
    """
    groups: "OrderedDict[str, list[Mapping[str, Any]]]" = OrderedDict()
    total = 0
    for row in rows:
        total += 1
        groups.setdefault(row["status"], []).append(row)

    overview = PaymentOverview(total=total, groups=groups)

    pending = overview.count(PaymentStatus.PENDING.value)
    if pending:
        overview.issues.append(f"⚠️ {pending} payment(s) still pending - check webhook processing")

    escrow = overview.count(PaymentStatus.ESCROW.value)
    if escrow:
        overview.issues.append(f"✅ {escrow} payment(s) in escrow - ready for job completion")

    held = overview.count(PaymentStatus.HELD_IN_ESCROW.value)
    if held:
        overview.issues.append(f"⚠️ {held} payment(s) held in escrow - check status consistency")

    return overview


# ---------------------------------------------------------------------------
# Paystack reconciliation
# ---------------------------------------------------------------------------

# Statuses that mean the client's charge went through.
CHARGED_PAYMENT_STATUSES = frozenset({
    PaymentStatus.ESCROW.value,
    PaymentStatus.HELD_IN_ESCROW.value,
    PaymentStatus.PROCESSING_RELEASE.value,
    PaymentStatus.RELEASED.value,
    PaymentStatus.COMPLETED.value,
})

FAILED_TRANSFER_STATUSES = ("failed", "reversed")


def compare_with_paystack(
    payment_status: str,
    amount: float,
    paystack_status: str,
    paystack_amount: float,
) -> list[str]:
    """Differences between the database's view of a charge and Paystack's."""
    issues = []
    charged = payment_status in CHARGED_PAYMENT_STATUSES

    if paystack_status == "success" and not charged:
        issues.append(
            f"Paystack charged successfully but payment is '{payment_status}'. Check webhook processing."
        )
    elif paystack_status != "success" and charged:
        issues.append(
            f"Payment is '{payment_status}' but Paystack reports '{paystack_status}'"
        )

    if abs(float(amount) - paystack_amount) >= 0.01:
        issues.append(f"Amount differs: database R{float(amount):.2f}, Paystack R{paystack_amount:.2f}")
    return issues


def compare_transfer(payment_status: str, transfer_status: Optional[str]) -> list[str]:
    """Differences between a released payment and its Paystack transfer."""
    if payment_status != PaymentStatus.RELEASED.value:
        return []
    if transfer_status is None:
        return ["Payment is RELEASED but Paystack has no matching transfer"]
    if transfer_status in FAILED_TRANSFER_STATUSES:
        return [f"Payment is RELEASED but the transfer {transfer_status}. It should go back to ESCROW."]
    if transfer_status != "success":
        return [f"Payment is RELEASED but the transfer is still '{transfer_status}'"]
    return []
