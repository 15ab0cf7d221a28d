"""
Service catalogue commands.

    verify-services   Report provider coverage for every active service
    sync-catalogue    Bring categories and services in line with the catalogue
"""

import argparse
import logging

from src.commands.dependencies import CommandContext, open_database
from src.commands.output import banner, section
from src.core.catalogue import plan_catalogue_sync
from src.core.safety import is_migration_safe
from src.infrastructure.postgres.repositories.catalogue import (
    CatalogueRepository,
    ServiceProviderSummary,
)

logger = logging.getLogger(__name__)


def register(subparsers: argparse._SubParsersAction) -> None:
    parser = subparsers.add_parser("verify-services", help="Verify services have providers")
    parser.set_defaults(handler=verify_services)

    parser = subparsers.add_parser("sync-catalogue", help="Sync service categories and services")
    parser.add_argument("--dry-run", action="store_true", help="Print the plan without changing the database")
    parser.set_defaults(handler=sync_catalogue)


def _percentage(part: int, total: int) -> str:
    if not total:
        return "0.0%"
    return f"{part / total * 100:.1f}%"


def _print_service(summary: ServiceProviderSummary) -> None:
    print(f"\n🔧 {summary.service_name} ({summary.category_name or 'No category'})")
    print(f"   Providers: {summary.total_providers} total, "
          f"{summary.approved_providers} approved, {summary.available_providers} available")
    print(f"   Bookings: {summary.booking_count}")
    if summary.available_provider_names:
        print(f"   Available: {', '.join(summary.available_provider_names)}")
    elif summary.approved_providers:
        print("   ⚠️  Approved providers exist but none are available")
    else:
        print("   ❌ No approved providers")


def verify_services(ctx: CommandContext, args: argparse.Namespace) -> int:
    banner("🔍 SERVICE PROVIDER VERIFICATION")
    with open_database(ctx) as conn:
        summaries = CatalogueRepository(conn).list_active_services_with_providers()

    if not summaries:
        print("❌ No active services found")
        return 1

    for summary in summaries:
        _print_service(summary)

    total = len(summaries)
    with_providers = sum(1 for s in summaries if s.total_providers)
    with_approved = sum(1 for s in summaries if s.approved_providers)
    with_available = sum(1 for s in summaries if s.available_providers)

    section("Summary")
    print(f"Active services: {total}")
    print(f"With providers: {with_providers} ({_percentage(with_providers, total)})")
    print(f"With approved providers: {with_approved} ({_percentage(with_approved, total)})")
    print(f"With available providers: {with_available} ({_percentage(with_available, total)})")

    uncovered = [s.service_name for s in summaries if not s.available_providers]
    if uncovered:
        print("\n⚠️  Services clients cannot book right now:")
        for name in uncovered:
            print(f"   - {name}")
    else:
        print("\n✅ Every active service has an available provider")
    return 0


def sync_catalogue(ctx: CommandContext, args: argparse.Namespace) -> int:
    banner("🔄 SERVICE CATALOGUE SYNC" + (" (DRY RUN)" if args.dry_run else ""))

    allowed, reason = is_migration_safe(ctx.env, ctx.classifier)
    if not allowed:
        print(f"❌ {reason}")
        return 1

    with open_database(ctx) as conn:
        repository = CatalogueRepository(conn)
        plan = plan_catalogue_sync(repository.list_services(), repository.list_categories())

        section("Plan")
        lines = plan.describe()
        if not lines:
            print("Nothing to change")
        for line in lines:
            print(f"  {line}")

        stats = repository.apply_sync_plan(plan, dry_run=args.dry_run)

    section("Summary")
    print(f"Created: {stats.created}")
    print(f"Updated: {stats.updated}")
    print(f"Renamed: {stats.renamed}")
    print(f"Deleted: {stats.deleted}")
    print(f"Deactivated: {stats.deactivated}")
    print(f"Unchanged: {stats.unchanged}")
    print(f"Skipped: {stats.skipped}")

    if args.dry_run:
        print("\n🔍 DRY RUN - no changes were made")
    else:
        print("\n✅ Catalogue synced")
    return 0
