"""
Repository for service categories, services and their providers.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Optional

from src.core.catalogue import CatalogueSyncPlan, ExistingCategory, ExistingService
from src.core.models import ProviderStatus
from src.infrastructure.postgres.client import PostgresConnection

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceProviderSummary:
    """Provider coverage for one active service."""
    service_id: str
    service_name: str
    category_name: Optional[str]
    total_providers: int
    approved_providers: int
    available_providers: int
    booking_count: int
    available_provider_names: list[str] = field(default_factory=list)


@dataclass
class CatalogueSyncStats:
    created: int = 0
    updated: int = 0
    renamed: int = 0
    deleted: int = 0
    deactivated: int = 0
    unchanged: int = 0
    skipped: int = 0


class CatalogueRepository:
    """Reads and syncs the service catalogue."""

    def __init__(self, connection: PostgresConnection) -> None:
        self._conn = connection

    def list_categories(self) -> list[ExistingCategory]:
        cursor = self._conn.cursor()
        try:
            cursor.execute('SELECT id, name, "isActive" FROM service_categories ORDER BY name')
            return [ExistingCategory(id=r[0], name=r[1], is_active=r[2]) for r in cursor.fetchall()]
        finally:
            cursor.close()

    def list_services(self) -> list[ExistingService]:
        """All services with the relationship counts needed to decide deletions."""
        cursor = self._conn.cursor()
        try:
            cursor.execute(
                """
                SELECT
                    s.id,
                    s.name,
                    s."categoryId",
                    s.description,
                    s."basePrice",
                    s."isActive",
                    (SELECT COUNT(*) FROM provider_services ps WHERE ps."serviceId" = s.id),
                    (SELECT COUNT(*) FROM bookings b WHERE b."serviceId" = s.id)
                FROM services s
                ORDER BY s.name
                """
            )
            return [
                ExistingService(
                    id=r[0],
                    name=r[1],
                    category_id=r[2],
                    description=r[3],
                    base_price=r[4],
                    is_active=r[5],
                    provider_count=int(r[6] or 0),
                    booking_count=int(r[7] or 0),
                )
                for r in cursor.fetchall()
            ]
        finally:
            cursor.close()

    def list_active_services_with_providers(self) -> list[ServiceProviderSummary]:
        cursor = self._conn.cursor()
        try:
            cursor.execute(
                """
                SELECT
                    s.id,
                    s.name,
                    c.name,
                    COUNT(DISTINCT p.id),
                    COUNT(DISTINCT p.id) FILTER (WHERE p.status = %s),
                    COUNT(DISTINCT p.id) FILTER (WHERE p.status = %s AND p.available),
                    (SELECT COUNT(*) FROM bookings b WHERE b."serviceId" = s.id),
                    COALESCE(
                        ARRAY_AGG(DISTINCT COALESCE(p."businessName", u.name))
                            FILTER (WHERE p.status = %s AND p.available),
                        ARRAY[]::TEXT[]
                    )
                FROM services s
                LEFT JOIN service_categories c ON c.id = s."categoryId"
                LEFT JOIN provider_services ps ON ps."serviceId" = s.id
                LEFT JOIN providers p ON p.id = ps."providerId"
                LEFT JOIN users u ON u.id = p."userId"
                WHERE s."isActive" = true
                GROUP BY s.id, s.name, c.name
                ORDER BY s.name
                """,
                (ProviderStatus.APPROVED.value,) * 3,
            )
            return [
                ServiceProviderSummary(
                    service_id=r[0],
                    service_name=r[1],
                    category_name=r[2],
                    total_providers=int(r[3] or 0),
                    approved_providers=int(r[4] or 0),
                    available_providers=int(r[5] or 0),
                    booking_count=int(r[6] or 0),
                    available_provider_names=[n for n in (r[7] or []) if n],
                )
                for r in cursor.fetchall()
            ]
        finally:
            cursor.close()

    def apply_sync_plan(self, plan: CatalogueSyncPlan, dry_run: bool = False) -> CatalogueSyncStats:
        """
        Apply a sync plan in a single transaction.

        In dry-run nothing is executed; the stats describe what would change.
        """
        stats = CatalogueSyncStats(
            created=len(plan.creates) + sum(1 for a in plan.category_actions if a.action == "create"),
            updated=len(plan.updates) + sum(1 for a in plan.category_actions if a.action == "activate"),
            renamed=len(plan.renames),
            deleted=len(plan.deletions),
            deactivated=len(plan.deactivations),
            unchanged=len(plan.unchanged),
            skipped=len(plan.skipped),
        )
        if dry_run or plan.is_empty:
            return stats

        cursor = self._conn.cursor()
        try:
            for action in plan.category_actions:
                if action.action == "create":
                    cursor.execute(
                        """
                        INSERT INTO service_categories (id, name, description, icon, "isActive", "createdAt", "updatedAt")
                        VALUES (%s, %s, %s, %s, true, NOW(), NOW())
                        """,
                        (action.category.id, action.category.name, action.category.description, action.category.icon),
                    )
                else:
                    cursor.execute(
                        'UPDATE service_categories SET "isActive" = true, "updatedAt" = NOW() WHERE id = %s',
                        (action.existing_id,),
                    )

            for rename in plan.renames:
                cursor.execute(
                    """
                    UPDATE services
                    SET name = %s, description = %s, "basePrice" = %s, "isActive" = %s, "updatedAt" = NOW()
                    WHERE id = %s
                    """,
                    (rename.new_name, rename.config.description, rename.config.base_price,
                     rename.config.is_active, rename.service_id),
                )

            for removal in plan.deletions:
                cursor.execute("DELETE FROM services WHERE id = %s", (removal.service_id,))

            for removal in plan.deactivations:
                if removal.new_name:
                    cursor.execute(
                        'UPDATE services SET name = %s, "isActive" = false, "updatedAt" = NOW() WHERE id = %s',
                        (removal.new_name, removal.service_id),
                    )
                else:
                    cursor.execute(
                        'UPDATE services SET "isActive" = false, "updatedAt" = NOW() WHERE id = %s',
                        (removal.service_id,),
                    )

            for upsert in plan.creates:
                cursor.execute(
                    """
                    INSERT INTO services (id, name, description, "categoryId", "basePrice", "isActive", "createdAt", "updatedAt")
                    VALUES (%s, %s, %s, %s, %s, %s, NOW(), NOW())
                    """,
                    (f"svc_{uuid.uuid4().hex[:20]}", upsert.config.name, upsert.config.description,
                     upsert.category_id, upsert.config.base_price, upsert.config.is_active),
                )

            for upsert in plan.updates:
                cursor.execute(
                    """
                    UPDATE services
                    SET description = %s, "basePrice" = %s, "isActive" = %s, "categoryId" = %s, "updatedAt" = NOW()
                    WHERE id = %s
                    """,
                    (upsert.config.description, upsert.config.base_price, upsert.config.is_active,
                     upsert.category_id, upsert.service_id),
                )

            self._conn.commit()
            logger.info(
                "Applied catalogue sync",
                extra={"created": stats.created, "updated": stats.updated, "deactivated": stats.deactivated}
            )
        except Exception as e:
            self._conn.rollback()
            logger.error("Catalogue sync failed, rolled back", extra={"error": str(e)})
            raise
        finally:
            cursor.close()

        return stats
