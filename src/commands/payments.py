"""
Payment diagnostics and simulated integration runs.

    diagnose-payment   Explain why a booking's escrow can or cannot be released
    simulate-webhook   Sign and deliver a Paystack webhook to the running app
    escrow-smoke       Walk throwaway rows through the escrow lifecycle
"""

import argparse
import json
import logging

from src.commands.dependencies import CommandContext, create_paystack_client, open_database
from src.commands.output import banner, section
from src.core.models import PaymentStatus
from src.core.payments import (
    assess_release_eligibility,
    compare_transfer,
    compare_with_paystack,
    generate_reference,
    summarise_payment_statuses,
    verify_webhook_signature,
)
from src.core.schema import EXPECTED_TABLES
from src.infrastructure.paystack.client import (
    SUPPORTED_EVENTS,
    PaystackClientError,
    WebhookSimulator,
    encode_event,
)
from src.infrastructure.postgres.repositories.payments import (
    BookingNotFoundError,
    BookingPaymentRecord,
    EscrowSmokeError,
    EscrowSmokeRepository,
    PaymentRecord,
    PaymentRepository,
)
from src.infrastructure.postgres.repositories.schema import SchemaRepository

logger = logging.getLogger(__name__)

SMOKE_TABLES = ("payments", "payouts", "job_proofs")


def register(subparsers: argparse._SubParsersAction) -> None:
    parser = subparsers.add_parser("diagnose-payment", help="Diagnose payment and escrow status")
    parser.add_argument("booking_id", nargs="?", help="Booking to diagnose. Omit for an overview of all payments.")
    parser.set_defaults(handler=diagnose_payment)

    parser = subparsers.add_parser("simulate-webhook", help="Send a signed Paystack webhook to the app")
    parser.add_argument("event", choices=SUPPORTED_EVENTS)
    parser.add_argument("--reference", required=True, help="Payment or transfer reference")
    parser.add_argument("--amount", type=int, default=50000, help="Amount in cents (default: 50000)")
    parser.add_argument("--tamper", action="store_true", help="Send an invalid signature")
    parser.add_argument("--dry-run", action="store_true", help="Print the signed payload without sending it")
    parser.set_defaults(handler=simulate_webhook)

    parser = subparsers.add_parser("escrow-smoke", help="Run the escrow lifecycle against the database and roll back")
    parser.add_argument("--amount", type=float, default=500.0, help="Service amount in rand")
    parser.set_defaults(handler=escrow_smoke)


# ---------------------------------------------------------------------------
# diagnose-payment
# ---------------------------------------------------------------------------

def _fmt_date(value) -> str:
    return value.isoformat() if value else "Not set"


def _print_booking(record: BookingPaymentRecord) -> int:
    print("📋 Booking Details:")
    print(f"   ID: {record.id}")
    print(f"   Status: {record.status}")
    print(f"   Client: {record.client_name or 'Unknown'} ({record.client_email or 'Unknown'})")
    print(f"   Provider: {record.provider_name or 'Unknown'} ({record.provider_email or 'Unknown'})")
    print(f"   Service: {record.service_name or 'Unknown'}")
    print(f"   Amount: R{record.total_amount}")
    print(f"   Scheduled: {_fmt_date(record.scheduled_date)}")

    payment = record.payment
    if payment is None:
        print("\n❌ No payment found for this booking")
        print("💡 This usually means:")
        print("   - Payment was never created")
        print("   - Payment record was deleted")
        print("   - Database relationship issue")
        return 1

    print("\n💰 Payment Details:")
    print(f"   ID: {payment.id}")
    print(f"   Status: {payment.status}")
    print(f"   Amount: R{payment.amount}")
    print(f"   Escrow Amount: R{payment.escrow_amount}")
    print(f"   Platform Fee: R{payment.platform_fee}")
    print(f"   Paystack Ref: {payment.paystack_ref}")
    print(f"   Created: {_fmt_date(payment.created_at)}")
    print(f"   Paid At: {payment.paid_at.isoformat() if payment.paid_at else 'Not paid yet'}")

    assessment = assess_release_eligibility(payment.status, record.status)
    print("\n🔍 Release Eligibility:")
    print(f"   Payment Status Valid: {'✅' if assessment.payment_ok else '❌'} ({payment.status})")
    print(f"   Booking Status Valid: {'✅' if assessment.booking_ok else '❌'} ({record.status})")
    print(f"   Can Release Payment: {'✅' if assessment.can_release else '❌'}")

    if assessment.can_release:
        print("\n✅ All checks passed! Payment can be released.")
        return 0

    print("\n⚠️ Issues Found:")
    for issue, hint in zip(assessment.issues, assessment.hints):
        print(f"   - {issue}")
        print(f"   💡 Fix: {hint}")
    return 0


def _print_paystack_view(ctx: CommandContext, repository: PaymentRepository, payment: PaymentRecord) -> int:
    """Compare the payment (and its payout transfer) with what Paystack recorded."""
    print("\n🏦 Paystack View:")
    if not payment.paystack_ref:
        print("   ⚠️ Payment has no Paystack reference")
        return 1
    try:
        with create_paystack_client(ctx) as client:
            transaction = client.verify_transaction(payment.paystack_ref)
            print(f"   Status: {transaction.status} (database: {payment.status})")
            print(f"   Amount: R{transaction.amount_major:.2f} (database: R{payment.amount})")
            print(f"   Paid At: {transaction.paid_at or 'Not paid'}")
            issues = compare_with_paystack(
                payment.status, payment.amount, transaction.status, transaction.amount_major
            )

            if payment.status == PaymentStatus.RELEASED.value:
                payout = repository.get_payout(payment.id)
                if payout is None:
                    issues.append("Payment is RELEASED but has no payout record")
                else:
                    transfer = next(
                        (t for t in client.list_transfers() if t.transfer_code == payout.transfer_code),
                        None,
                    )
                    transfer_status = transfer.status if transfer else None
                    print(f"   Transfer: {payout.transfer_code or 'none'} ({transfer_status or 'not found'})")
                    issues.extend(compare_transfer(payment.status, transfer_status))
    except PaystackClientError as e:
        print(f"   ❌ Could not reach Paystack: {e}")
        return 1

    if not issues:
        print("   ✅ Database and Paystack agree")
        return 0

    print("\n⚠️ Paystack Mismatches:")
    for issue in issues:
        print(f"   - {issue}")
    return 1


def _print_overview(rows: list) -> int:
    overview = summarise_payment_statuses(rows)
    print(f"📊 Found {overview.total} payments:\n")
    for status, payments in overview.groups.items():
        print(f"{status}: {len(payments)} payment(s)")
        for payment in overview.examples(status):
            print(f"   - {payment['service_name']} ({payment['client_name']}) - R{payment['amount']}")
        if len(payments) > 3:
            print(f"   ... and {len(payments) - 3} more")
        print()

    if overview.issues:
        print("🔍 Potential Issues:")
        for issue in overview.issues:
            print(f"   {issue}")
    return 0


def diagnose_payment(ctx: CommandContext, args: argparse.Namespace) -> int:
    print("🔍 Payment Status Diagnostic Tool\n")
    with open_database(ctx) as conn:
        repository = PaymentRepository(conn)
        if args.booking_id:
            print(f"🔍 Diagnosing specific booking: {args.booking_id}\n")
            try:
                record = repository.get_booking_with_payment(args.booking_id)
            except BookingNotFoundError as e:
                print(f"❌ {e}")
                return 1
            code = _print_booking(record)
            if record.payment is None:
                return code
            if not ctx.settings.paystack_secret_key:
                print("\n💡 Set PAYSTACK_SECRET_KEY to compare with Paystack")
                return code
            return max(code, _print_paystack_view(ctx, repository, record.payment))

        print("📊 Payment Status Overview\n")
        return _print_overview(repository.list_payments())


# ---------------------------------------------------------------------------
# simulate-webhook
# ---------------------------------------------------------------------------

def simulate_webhook(ctx: CommandContext, args: argparse.Namespace) -> int:
    simulator = WebhookSimulator(app_url=ctx.settings.app_url, secret=ctx.settings.webhook_secret)
    event = simulator.build_event(args.event, args.reference, amount=args.amount)
    payload = encode_event(event)

    print(f"📨 Simulating {args.event} → {simulator.url}")
    print(json.dumps(event, indent=2))
    print(f"🔏 Signature: {simulator.sign(payload)[:32]}...")

    if args.dry_run:
        print("\n🔍 DRY RUN - webhook not sent")
        return 0

    delivery = simulator.send(event, tamper=args.tamper)
    print(f"\n📬 Response: HTTP {delivery.status_code}")
    if delivery.body:
        print(delivery.body[:500])

    if args.tamper:
        if delivery.status_code >= 400:
            print("✅ Tampered webhook was rejected")
            return 0
        print("❌ Tampered webhook was ACCEPTED. Signature verification is not enforced.")
        return 1

    if 200 <= delivery.status_code < 300:
        print("✅ Webhook accepted")
        return 0
    print("❌ Webhook rejected")
    return 1


# ---------------------------------------------------------------------------
# escrow-smoke
# ---------------------------------------------------------------------------

def escrow_smoke(ctx: CommandContext, args: argparse.Namespace) -> int:
    banner("🧪 ESCROW PAYMENT SYSTEM SMOKE RUN")

    reference = generate_reference("TEST")
    secret = ctx.settings.webhook_secret
    if secret:
        event = WebhookSimulator.build_event("charge.success", reference)
        payload = encode_event(event)
        signature = WebhookSimulator(ctx.settings.app_url, secret).sign(payload)
        if not verify_webhook_signature(payload, signature, secret):
            print("❌ Webhook signature round-trip failed")
            return 1
        print("✅ Webhook signature round-trip verified")
    else:
        print("⚠️  No webhook secret configured; skipping signature round-trip")

    with open_database(ctx) as conn:
        schema = SchemaRepository(conn)
        schema.ping()
        print("✅ Database connection successful")

        present = schema.existing_tables(list(EXPECTED_TABLES))
        missing = [t for t in SMOKE_TABLES if t not in present]
        if missing:
            print(f"❌ Missing tables: {', '.join(missing)}")
            print("💡 Run `marketplace-ops fix-enums` to create them")
            return 1
        print(f"✅ Escrow tables present: {', '.join(SMOKE_TABLES)}")

        section("Lifecycle")
        try:
            EscrowSmokeRepository(conn).run(
                reference,
                service_amount=args.amount,
                on_step=lambda step: print(f"✅ {step.name}" + (f" ({step.detail})" if step.detail else "")),
            )
        except EscrowSmokeError as e:
            print(f"❌ {e}")
            print("🧹 Test rows rolled back")
            return 1

    print("🧹 Test rows rolled back")
    print("\n🎉 Escrow lifecycle verified")
    return 0
