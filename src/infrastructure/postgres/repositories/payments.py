"""
Repositories for bookings, payments and the escrow lifecycle.

The column names are Prisma's: quoted camelCase on most tables, with a few
snake_case columns (escrow_amount, platform_fee) added by later migrations.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from src.core.models import BookingStatus, PaymentStatus, PayoutStatus, ProviderStatus, UserRole
from src.core.payments import AUTO_CONFIRMATION_DAYS, CURRENCY, calculate_payment_breakdown
from src.infrastructure.postgres.client import PostgresConnection

logger = logging.getLogger(__name__)


class BookingNotFoundError(Exception):
    """Raised when a requested booking doesn't exist."""
    pass


class EscrowSmokeError(Exception):
    """Raised when a step of the escrow smoke run fails."""

    def __init__(self, step: str, message: str) -> None:
        super().__init__(f"{step}: {message}")
        self.step = step


@dataclass(frozen=True)
class PaymentRecord:
    id: str
    status: str
    amount: float
    escrow_amount: Optional[float]
    platform_fee: Optional[float]
    paystack_ref: str
    created_at: Optional[datetime]
    paid_at: Optional[datetime]


@dataclass(frozen=True)
class PayoutRecord:
    id: str
    status: str
    amount: float
    transfer_code: Optional[str]
    processed_at: Optional[datetime]


@dataclass(frozen=True)
class BookingPaymentRecord:
    """A booking joined with its parties, service and payment."""
    id: str
    status: str
    total_amount: float
    scheduled_date: Optional[datetime]
    client_name: Optional[str]
    client_email: Optional[str]
    provider_name: Optional[str]
    provider_email: Optional[str]
    service_name: Optional[str]
    payment: Optional[PaymentRecord]


class PaymentRepository:
    """Read access for payment diagnostics."""

    def __init__(self, connection: PostgresConnection) -> None:
        self._conn = connection

    def get_booking_with_payment(self, booking_id: str) -> BookingPaymentRecord:
        cursor = self._conn.cursor()
        try:
            cursor.execute(
                """
                SELECT
                    b.id,
                    b.status,
                    b."totalAmount",
                    b."scheduledDate",
                    cu.name,
                    cu.email,
                    pu.name,
                    pu.email,
                    s.name,
                    p.id,
                    p.status,
                    p.amount,
                    p.escrow_amount,
                    p.platform_fee,
                    p."paystackRef",
                    p."createdAt",
                    p."paidAt"
                FROM bookings b
                LEFT JOIN users cu ON cu.id = b."clientId"
                LEFT JOIN providers pr ON pr.id = b."providerId"
                LEFT JOIN users pu ON pu.id = pr."userId"
                LEFT JOIN services s ON s.id = b."serviceId"
                LEFT JOIN payments p ON p."bookingId" = b.id
                WHERE b.id = %s
                """,
                (booking_id,),
            )
            row = cursor.fetchone()
        finally:
            cursor.close()

        if row is None:
            raise BookingNotFoundError(f"Booking not found: {booking_id}")

        payment = None
        if row[9] is not None:
            payment = PaymentRecord(
                id=row[9],
                status=row[10],
                amount=row[11],
                escrow_amount=row[12],
                platform_fee=row[13],
                paystack_ref=row[14],
                created_at=row[15],
                paid_at=row[16],
            )

        return BookingPaymentRecord(
            id=row[0],
            status=row[1],
            total_amount=row[2],
            scheduled_date=row[3],
            client_name=row[4],
            client_email=row[5],
            provider_name=row[6],
            provider_email=row[7],
            service_name=row[8],
            payment=payment,
        )

    def get_payout(self, payment_id: str) -> Optional[PayoutRecord]:
        cursor = self._conn.cursor()
        try:
            cursor.execute(
                """
                SELECT id, status, amount, "paystackTransferCode", "processedAt"
                FROM payouts
                WHERE "paymentId" = %s
                """,
                (payment_id,),
            )
            row = cursor.fetchone()
        finally:
            cursor.close()

        if row is None:
            return None
        return PayoutRecord(id=row[0], status=row[1], amount=row[2], transfer_code=row[3], processed_at=row[4])

    def list_payments(self) -> list[dict[str, Any]]:
        """All payments, newest first, with service and client names."""
        cursor = self._conn.cursor()
        try:
            cursor.execute(
                """
                SELECT p.id, p.status, p.amount, p."createdAt", s.name, cu.name
                FROM payments p
                LEFT JOIN bookings b ON b.id = p."bookingId"
                LEFT JOIN services s ON s.id = b."serviceId"
                LEFT JOIN users cu ON cu.id = b."clientId"
                ORDER BY p."createdAt" DESC
                """
            )
            rows = cursor.fetchall()
        finally:
            cursor.close()

        return [
            {
                "id": row[0],
                "status": row[1],
                "amount": row[2],
                "created_at": row[3],
                "service_name": row[4] or "Unknown service",
                "client_name": row[5] or "Unknown client",
            }
            for row in rows
        ]


# ---------------------------------------------------------------------------
# Escrow smoke run
# ---------------------------------------------------------------------------

@dataclass
class SmokeStep:
    name: str
    detail: str = ""


@dataclass
class EscrowSmokeRun:
    """Identifiers and step log of one smoke run."""
    reference: str
    ids: dict[str, str] = field(default_factory=dict)
    steps: list[SmokeStep] = field(default_factory=list)


def _test_id(kind: str) -> str:
    return f"test_{kind}_{uuid.uuid4().hex[:12]}"


class EscrowSmokeRepository:
    """
    Walks throwaway rows through the whole escrow lifecycle.

    Everything happens in one transaction that is always rolled back, so
    a run leaves no trace even when it succeeds.
    """

    def __init__(self, connection: PostgresConnection) -> None:
        self._conn = connection

    def _scalar(self, cursor, query: str, params: tuple) -> Any:
        cursor.execute(query, params)
        row = cursor.fetchone()
        return row[0] if row else None

    def _expect(self, step: str, actual: Any, expected: str) -> None:
        if actual != expected:
            raise EscrowSmokeError(step, f"expected {expected}, found {actual}")

    def run(
        self,
        reference: str,
        service_amount: float = 500.0,
        on_step: Optional[Callable[[SmokeStep], None]] = None,
    ) -> EscrowSmokeRun:
        breakdown = calculate_payment_breakdown(service_amount)
        result = EscrowSmokeRun(reference=reference)
        ids = result.ids
        cursor = self._conn.cursor()

        def done(name: str, detail: str = "") -> None:
            step = SmokeStep(name, detail)
            result.steps.append(step)
            if on_step:
                on_step(step)

        try:
            ids["client"] = _test_id("client")
            ids["provider_user"] = _test_id("provider_user")
            for user_id, role in (
                (ids["client"], UserRole.CLIENT.value),
                (ids["provider_user"], UserRole.PROVIDER.value),
            ):
                cursor.execute(
                    """
                    INSERT INTO users (id, email, name, role, "emailVerified", "isActive", "createdAt", "updatedAt")
                    VALUES (%s, %s, %s, %s, true, true, NOW(), NOW())
                    """,
                    (user_id, f"{user_id}@example.com", f"Smoke {role.title()}", role),
                )

            ids["provider"] = _test_id("provider")
            cursor.execute(
                """
                INSERT INTO providers (id, "userId", "businessName", status, available, "createdAt", "updatedAt")
                VALUES (%s, %s, %s, %s, true, NOW(), NOW())
                """,
                (ids["provider"], ids["provider_user"], "Smoke Test Services", ProviderStatus.APPROVED.value),
            )

            ids["category"] = _test_id("category")
            ids["service"] = _test_id("service")
            cursor.execute(
                """
                INSERT INTO service_categories (id, name, description, "isActive", "createdAt", "updatedAt")
                VALUES (%s, %s, 'Escrow smoke run', true, NOW(), NOW())
                """,
                (ids["category"], ids["category"]),
            )
            cursor.execute(
                """
                INSERT INTO services (id, name, description, "categoryId", "basePrice", "isActive", "createdAt", "updatedAt")
                VALUES (%s, %s, 'Escrow smoke run', %s, %s, true, NOW(), NOW())
                """,
                (ids["service"], ids["service"], ids["category"], breakdown.service_amount),
            )
            done("Created test users, provider and service")

            ids["booking"] = _test_id("booking")
            cursor.execute(
                """
                INSERT INTO bookings (id, "clientId", "providerId", "serviceId", "scheduledDate", duration,
                                      "totalAmount", "platformFee", address, status, "paymentMethod",
                                      "createdAt", "updatedAt")
                VALUES (%s, %s, %s, %s, NOW() + INTERVAL '1 day', 2, %s, %s, 'Smoke Test Address',
                        'CONFIRMED', 'ONLINE', NOW(), NOW())
                """,
                (ids["booking"], ids["client"], ids["provider"], ids["service"],
                 breakdown.total_amount, breakdown.platform_fee),
            )

            ids["payment"] = _test_id("payment")
            cursor.execute(
                """
                INSERT INTO payments (id, "bookingId", amount, "paystackRef", status, escrow_amount,
                                      platform_fee, currency, user_id, "createdAt", "updatedAt")
                VALUES (%s, %s, %s, %s, 'PENDING', %s, %s, %s, %s, NOW(), NOW())
                """,
                (ids["payment"], ids["booking"], breakdown.total_amount, reference,
                 breakdown.escrow_amount, breakdown.platform_fee, CURRENCY, ids["client"]),
            )
            done("Created booking and pending payment", f"R{breakdown.total_amount} ({reference})")

            # charge.success webhook
            cursor.execute(
                """
                UPDATE payments SET status = %s, "paidAt" = NOW(), "updatedAt" = NOW()
                WHERE "paystackRef" = %s
                """,
                (PaymentStatus.ESCROW.value, reference),
            )
            status = self._scalar(cursor, "SELECT status FROM payments WHERE id = %s", (ids["payment"],))
            self._expect("Payment held in escrow", status, PaymentStatus.ESCROW.value)
            done("Payment held in escrow", f"escrow R{breakdown.escrow_amount}, fee R{breakdown.platform_fee}")

            # Provider works the job and uploads proof
            for booking_status in (BookingStatus.IN_PROGRESS, BookingStatus.AWAITING_CONFIRMATION):
                cursor.execute(
                    'UPDATE bookings SET status = %s, "updatedAt" = NOW() WHERE id = %s',
                    (booking_status.value, ids["booking"]),
                )
            ids["job_proof"] = _test_id("proof")
            cursor.execute(
                f"""
                INSERT INTO job_proofs (id, "bookingId", "providerId", description, images, "completedAt",
                                        "autoConfirmAt", "createdAt", "updatedAt")
                VALUES (%s, %s, %s, 'Smoke test job completed', ARRAY[]::TEXT[], NOW(),
                        NOW() + INTERVAL '{AUTO_CONFIRMATION_DAYS} days', NOW(), NOW())
                """,
                (ids["job_proof"], ids["booking"], ids["provider"]),
            )
            status = self._scalar(cursor, "SELECT status FROM bookings WHERE id = %s", (ids["booking"],))
            self._expect("Job completed", status, BookingStatus.AWAITING_CONFIRMATION.value)
            done("Job completed with proof", f"auto-confirms in {AUTO_CONFIRMATION_DAYS} days")

            # Client confirms, escrow is released and a payout queued
            cursor.execute(
                'UPDATE payments SET status = %s, "updatedAt" = NOW() WHERE id = %s',
                (PaymentStatus.PROCESSING_RELEASE.value, ids["payment"]),
            )
            ids["payout"] = _test_id("payout")
            cursor.execute(
                """
                INSERT INTO payouts (id, "providerId", "paymentId", amount, status, "createdAt", "updatedAt")
                VALUES (%s, %s, %s, %s, %s, NOW(), NOW())
                """,
                (ids["payout"], ids["provider"], ids["payment"], breakdown.escrow_amount, PayoutStatus.PENDING.value),
            )
            cursor.execute(
                'UPDATE payments SET status = %s, "updatedAt" = NOW() WHERE id = %s',
                (PaymentStatus.RELEASED.value, ids["payment"]),
            )
            cursor.execute(
                'UPDATE bookings SET status = %s, "updatedAt" = NOW() WHERE id = %s',
                (BookingStatus.COMPLETED.value, ids["booking"]),
            )
            status = self._scalar(cursor, "SELECT status FROM payments WHERE id = %s", (ids["payment"],))
            self._expect("Escrow released", status, PaymentStatus.RELEASED.value)
            payout_status = self._scalar(cursor, 'SELECT status FROM payouts WHERE "paymentId" = %s', (ids["payment"],))
            self._expect("Payout queued", payout_status, PayoutStatus.PENDING.value)
            done("Escrow released and payout queued", f"payout R{breakdown.escrow_amount}")

            return result
        except EscrowSmokeError:
            raise
        except Exception as e:
            logger.error("Escrow smoke run failed", extra={"error": str(e), "reference": reference})
            step = f"after '{result.steps[-1].name}'" if result.steps else "setup"
            raise EscrowSmokeError(step, str(e)) from e
        finally:
            cursor.close()
            self._conn.rollback()
            logger.info("Rolled back escrow smoke rows", extra={"reference": reference})
