"""
Domain models shared by every check and report.

The marketplace schema itself is owned by the web application. We only
mirror the enum values the toolkit reasons about, plus the small report
types that every command prints and turns into an exit code.
"""

from dataclasses import dataclass, field
from enum import Enum


class UserRole(str, Enum):
    CLIENT = "CLIENT"
    PROVIDER = "PROVIDER"
    ADMIN = "ADMIN"


class ProviderStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    SUSPENDED = "SUSPENDED"
    INCOMPLETE = "INCOMPLETE"


class BookingStatus(str, Enum):
    """Lifecycle of a booking, from request to completion."""
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PENDING_EXECUTION = "PENDING_EXECUTION"
    IN_PROGRESS = "IN_PROGRESS"
    AWAITING_CONFIRMATION = "AWAITING_CONFIRMATION"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    PAYMENT_PROCESSING = "PAYMENT_PROCESSING"
    DISPUTED = "DISPUTED"


class PaymentStatus(str, Enum):
    """
    Payment states across online escrow and cash flows.

    Online payments move PENDING -> ESCROW -> PROCESSING_RELEASE -> RELEASED.
    HELD_IN_ESCROW is a legacy alias of ESCROW that still exists in data.
    """
    PENDING = "PENDING"
    ESCROW = "ESCROW"
    HELD_IN_ESCROW = "HELD_IN_ESCROW"
    PROCESSING_RELEASE = "PROCESSING_RELEASE"
    RELEASED = "RELEASED"
    REFUNDED = "REFUNDED"
    FAILED = "FAILED"
    COMPLETED = "COMPLETED"
    CASH_PENDING = "CASH_PENDING"
    CASH_PAID = "CASH_PAID"
    CASH_RECEIVED = "CASH_RECEIVED"
    CASH_VERIFIED = "CASH_VERIFIED"


class PayoutStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class Environment(str, Enum):
    """Deployment environment a database belongs to."""
    DEV = "dev"
    STAGING = "staging"
    PROD = "prod"


class CheckStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    WARNING = "warning"
    SKIPPED = "skipped"


STATUS_ICONS = {
    CheckStatus.PASSED: "✅",
    CheckStatus.FAILED: "❌",
    CheckStatus.WARNING: "⚠️ ",
    CheckStatus.SKIPPED: "⏭️ ",
}


@dataclass
class CheckResult:
    """Outcome of a single check."""
    name: str
    status: CheckStatus
    message: str = ""
    details: list[str] = field(default_factory=list)

    @property
    def icon(self) -> str:
        return STATUS_ICONS[self.status]

    def format(self) -> str:
        line = f"{self.icon} {self.name}"
        if self.message:
            line += f": {self.message}"
        for detail in self.details:
            line += f"\n     {detail}"
        return line


@dataclass
class Report:
    """
    A titled collection of check results.

    Warnings are reported but never fail a report; a single failed
    check turns the exit code to 1.
    """
    title: str
    results: list[CheckResult] = field(default_factory=list)

    def add(self, result: CheckResult) -> CheckResult:
        self.results.append(result)
        return result

    def passed(self, name: str, message: str = "", details: list[str] | None = None) -> CheckResult:
        return self.add(CheckResult(name, CheckStatus.PASSED, message, details or []))

    def failed(self, name: str, message: str = "", details: list[str] | None = None) -> CheckResult:
        return self.add(CheckResult(name, CheckStatus.FAILED, message, details or []))

    def warn(self, name: str, message: str = "", details: list[str] | None = None) -> CheckResult:
        return self.add(CheckResult(name, CheckStatus.WARNING, message, details or []))

    def skip(self, name: str, message: str = "", details: list[str] | None = None) -> CheckResult:
        return self.add(CheckResult(name, CheckStatus.SKIPPED, message, details or []))

    def extend(self, other: "Report") -> None:
        """Merge another report's results into this one."""
        self.results.extend(other.results)

    def _count(self, status: CheckStatus) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def passed_count(self) -> int:
        return self._count(CheckStatus.PASSED)

    @property
    def failed_count(self) -> int:
        return self._count(CheckStatus.FAILED)

    @property
    def warning_count(self) -> int:
        return self._count(CheckStatus.WARNING)

    @property
    def errors(self) -> list[CheckResult]:
        return [r for r in self.results if r.status == CheckStatus.FAILED]

    @property
    def warnings(self) -> list[CheckResult]:
        return [r for r in self.results if r.status == CheckStatus.WARNING]

    @property
    def ok(self) -> bool:
        return self.failed_count == 0

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1

    def render(self) -> str:
        """Render the report for console output."""
        lines = [f"\n{self.title}", "=" * 60]
        lines.extend(r.format() for r in self.results)
        lines.append("-" * 60)
        lines.append(
            f"✅ Passed: {self.passed_count}  "
            f"❌ Failed: {self.failed_count}  "
            f"⚠️  Warnings: {self.warning_count}"
        )
        return "\n".join(lines)
