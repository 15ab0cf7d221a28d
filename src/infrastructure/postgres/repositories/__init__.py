"""
Repositories, one per use case. Each takes an open DB-API connection.
"""

from .catalogue import CatalogueRepository, CatalogueSyncStats, ServiceProviderSummary
from .payments import (
    BookingNotFoundError,
    BookingPaymentRecord,
    EscrowSmokeError,
    EscrowSmokeRepository,
    PaymentRepository,
    PayoutRecord,
)
from .schema import ColumnInfo, Fingerprint, SchemaRepository

__all__ = [
    "BookingNotFoundError",
    "BookingPaymentRecord",
    "CatalogueRepository",
    "CatalogueSyncStats",
    "ColumnInfo",
    "EscrowSmokeError",
    "EscrowSmokeRepository",
    "Fingerprint",
    "PaymentRepository",
    "PayoutRecord",
    "SchemaRepository",
    "ServiceProviderSummary",
]
