"""
Service catalogue configuration and sync planning.

The catalogue below is the source of truth for which services the
marketplace offers. Syncing never deletes a service that has providers
or bookings; anything that falls out of the catalogue is deactivated.

Planning is pure: it compares the catalogue with rows already read from
the database and returns a plan. The repository applies it.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Sequence


@dataclass(frozen=True)
class CategoryConfig:
    id: str
    name: str
    description: str
    icon: str


@dataclass(frozen=True)
class ServiceConfig:
    name: str
    category: str
    description: str
    base_price: Decimal
    is_active: bool = True


CATEGORIES: dict[str, CategoryConfig] = {
    "CLEANING": CategoryConfig(
        id="cat_cleaning",
        name="Cleaning Services",
        description="Professional cleaning services for homes and offices",
        icon="🧹",
    ),
    "BEAUTY": CategoryConfig(
        id="cat_beauty",
        name="Beauty & Personal Care",
        description="Professional beauty and personal care services",
        icon="💄",
    ),
}

SERVICES: list[ServiceConfig] = [
    ServiceConfig(
        name="Standard House Cleaning",
        category="CLEANING",
        description="Regular cleaning of living areas, kitchen and bathrooms",
        base_price=Decimal("250.00"),
    ),
    ServiceConfig(
        name="Deep Cleaning",
        category="CLEANING",
        description="Thorough top-to-bottom clean including hard-to-reach areas",
        base_price=Decimal("450.00"),
    ),
    ServiceConfig(
        name="Carpet Cleaning",
        category="CLEANING",
        description="Professional carpet and upholstery cleaning services",
        base_price=Decimal("400.00"),
    ),
    ServiceConfig(
        name="Office Cleaning",
        category="CLEANING",
        description="Cleaning of offices and shared workspaces",
        base_price=Decimal("350.00"),
    ),
    ServiceConfig(
        name="Mobile Car Wash",
        category="CLEANING",
        description="Exterior wash and interior vacuum at your location",
        base_price=Decimal("150.00"),
    ),
    ServiceConfig(
        name="Hairdressing",
        category="BEAUTY",
        description="Cuts, styling and treatments at home",
        base_price=Decimal("200.00"),
    ),
    ServiceConfig(
        name="Makeup",
        category="BEAUTY",
        description="Event and everyday makeup application",
        base_price=Decimal("250.00"),
    ),
    ServiceConfig(
        name="Nails",
        category="BEAUTY",
        description="Manicures, pedicures and nail art",
        base_price=Decimal("150.00"),
    ),
]

# Old names that must be renamed to their catalogue name.
SERVICE_NAME_FIXES: dict[str, str] = {
    "House Cleaning": "Standard House Cleaning",
}

# Category names that were once inserted as services by mistake.
INVALID_SERVICE_NAMES: tuple[str, ...] = ("Cleaning Services",)

INVALID_SUFFIX = " (INVALID - DEACTIVATED)"


@dataclass(frozen=True)
class ExistingCategory:
    id: str
    name: str
    is_active: bool


@dataclass(frozen=True)
class ExistingService:
    id: str
    name: str
    category_id: Optional[str]
    description: Optional[str]
    base_price: Optional[Decimal]
    is_active: bool
    provider_count: int = 0
    booking_count: int = 0

    @property
    def has_relationships(self) -> bool:
        return self.provider_count > 0 or self.booking_count > 0


@dataclass(frozen=True)
class CategoryAction:
    action: str  # "create" or "activate"
    category: CategoryConfig
    existing_id: Optional[str] = None


@dataclass(frozen=True)
class ServiceRename:
    service_id: str
    old_name: str
    new_name: str
    config: ServiceConfig


@dataclass(frozen=True)
class ServiceRemoval:
    service_id: str
    name: str
    reason: str
    new_name: Optional[str] = None  # set when deactivating under a new name


@dataclass(frozen=True)
class ServiceUpsert:
    config: ServiceConfig
    category_id: str
    service_id: Optional[str] = None  # None means create


@dataclass
class CatalogueSyncPlan:
    category_actions: list[CategoryAction] = field(default_factory=list)
    renames: list[ServiceRename] = field(default_factory=list)
    deletions: list[ServiceRemoval] = field(default_factory=list)
    deactivations: list[ServiceRemoval] = field(default_factory=list)
    creates: list[ServiceUpsert] = field(default_factory=list)
    updates: list[ServiceUpsert] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (
            self.category_actions
            or self.renames
            or self.deletions
            or self.deactivations
            or self.creates
            or self.updates
        )

    def describe(self) -> list[str]:
        """Human-readable plan lines."""
        lines = []
        for action in self.category_actions:
            lines.append(f"{action.action.upper()} category '{action.category.name}'")
        for rename in self.renames:
            lines.append(f"RENAME '{rename.old_name}' → '{rename.new_name}'")
        for removal in self.deletions:
            lines.append(f"DELETE '{removal.name}' ({removal.reason})")
        for removal in self.deactivations:
            target = f" as '{removal.new_name}'" if removal.new_name else ""
            lines.append(f"DEACTIVATE '{removal.name}'{target} ({removal.reason})")
        for upsert in self.creates:
            lines.append(f"CREATE '{upsert.config.name}' (R{upsert.config.base_price})")
        for upsert in self.updates:
            lines.append(f"UPDATE '{upsert.config.name}'")
        for name in self.skipped:
            lines.append(f"SKIP '{name}' (invalid configuration)")
        return lines


def _needs_update(existing: ExistingService, config: ServiceConfig, category_id: str) -> bool:
    price = Decimal(str(existing.base_price)) if existing.base_price is not None else None
    return (
        existing.description != config.description
        or price != config.base_price
        or existing.is_active != config.is_active
        or existing.category_id != category_id
    )


def plan_catalogue_sync(
    existing_services: Sequence[ExistingService],
    existing_categories: Sequence[ExistingCategory],
    services: Sequence[ServiceConfig] = SERVICES,
    categories: dict[str, CategoryConfig] = CATEGORIES,
    name_fixes: dict[str, str] = SERVICE_NAME_FIXES,
    invalid_names: Sequence[str] = INVALID_SERVICE_NAMES,
) -> CatalogueSyncPlan:
    """
    Compare the catalogue with the database and plan the changes.

    Steps, in the order they are applied:
    1. Create or re-activate categories
    2. Rename services listed in name_fixes
    3. Remove services that carry a category's name
    4. Create or update every configured service
    5. Deactivate active services that are not in the catalogue
    """
    plan = CatalogueSyncPlan()

    # 1. Categories, matched by name
    categories_by_name = {c.name: c for c in existing_categories}
    category_ids: dict[str, str] = {}
    for key, category in categories.items():
        found = categories_by_name.get(category.name)
        if found is None:
            plan.category_actions.append(CategoryAction("create", category))
            category_ids[key] = category.id
        else:
            if not found.is_active:
                plan.category_actions.append(CategoryAction("activate", category, found.id))
            category_ids[key] = found.id

    by_name: dict[str, ExistingService] = {s.name: s for s in existing_services}
    handled: set[str] = set()
    configs_by_name = {s.name: s for s in services}

    # 2. Name fixes
    for old_name, new_name in name_fixes.items():
        old = by_name.get(old_name)
        if old is None:
            continue
        if new_name in by_name:
            handled.add(old.id)
            if not old.has_relationships:
                plan.deletions.append(ServiceRemoval(old.id, old_name, f"duplicate of '{new_name}'"))
            else:
                plan.deactivations.append(
                    ServiceRemoval(old.id, old_name, f"duplicate of '{new_name}' with relationships")
                )
            continue
        config = configs_by_name.get(new_name)
        if config is None:
            # Left unhandled so step 5 deactivates it.
            continue
        handled.add(old.id)
        plan.renames.append(ServiceRename(old.id, old_name, new_name, config))
        by_name[new_name] = old
        del by_name[old_name]

    # 3. Category names inserted as services
    for invalid_name in invalid_names:
        invalid = by_name.get(invalid_name)
        if invalid is None:
            continue
        handled.add(invalid.id)
        if invalid.has_relationships:
            plan.deactivations.append(
                ServiceRemoval(
                    invalid.id,
                    invalid_name,
                    "category name used as service",
                    new_name=f"{invalid_name}{INVALID_SUFFIX}",
                )
            )
        else:
            plan.deletions.append(ServiceRemoval(invalid.id, invalid_name, "category name used as service"))
        del by_name[invalid_name]

    # 4. Upsert configured services
    renamed_ids = {r.service_id for r in plan.renames}
    for config in services:
        if not config.name or config.category not in category_ids:
            plan.skipped.append(config.name or "(unnamed)")
            continue
        category_id = category_ids[config.category]
        existing = by_name.get(config.name)
        if existing is None:
            plan.creates.append(ServiceUpsert(config, category_id))
            continue
        handled.add(existing.id)
        if existing.id in renamed_ids:
            # The rename writes the config fields; only the category may still differ.
            if existing.category_id != category_id:
                plan.updates.append(ServiceUpsert(config, category_id, existing.id))
            continue
        if _needs_update(existing, config, category_id):
            plan.updates.append(ServiceUpsert(config, category_id, existing.id))
        else:
            plan.unchanged.append(config.name)

    # 5. Deactivate everything else
    for service in existing_services:
        if service.id in handled or not service.is_active:
            continue
        plan.deactivations.append(ServiceRemoval(service.id, service.name, "not in catalogue"))

    return plan
