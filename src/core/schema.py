"""
Comparing the Prisma schema with the live database.
"""

import re
from dataclasses import dataclass, field


ENUM_BLOCK_PATTERN = re.compile(r"^\s*enum\s+(\w+)\s*\{(.*?)^\s*\}", re.MULTILINE | re.DOTALL)

# Tables the escrow flow cannot run without.
EXPECTED_TABLES: tuple[str, ...] = (
    "bookings",
    "payments",
    "payouts",
    "job_proofs",
    "webhook_events",
)


def parse_prisma_enums(schema_text: str) -> dict[str, list[str]]:
    """
    Parse every `enum Name { ... }` block in a Prisma schema.

    Comments and attributes such as @map are ignored; only the value
    names are returned, in declaration order.
    """
    enums: dict[str, list[str]] = {}
    for match in ENUM_BLOCK_PATTERN.finditer(schema_text):
        name, body = match.group(1), match.group(2)
        values = []
        for line in body.splitlines():
            line = line.split("//", 1)[0].strip()
            if not line or line.startswith("@@"):
                continue
            token = line.split()[0]
            if re.fullmatch(r"\w+", token):
                values.append(token)
        enums[name] = values
    return enums


@dataclass
class EnumDiff:
    name: str
    common: list[str] = field(default_factory=list)
    missing_in_database: list[str] = field(default_factory=list)
    missing_in_schema: list[str] = field(default_factory=list)

    @property
    def in_sync(self) -> bool:
        return not self.missing_in_database and not self.missing_in_schema


def compare_enum_values(name: str, schema_values: list[str], database_values: list[str]) -> EnumDiff:
    """Diff enum values declared in the schema against pg_enum labels."""
    database_set = set(database_values)
    schema_set = set(schema_values)
    return EnumDiff(
        name=name,
        common=[v for v in schema_values if v in database_set],
        missing_in_database=[v for v in schema_values if v not in database_set],
        missing_in_schema=[v for v in database_values if v not in schema_set],
    )
