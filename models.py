"""Status vocabularies and read-only row snapshots for the rental tables."""

import datetime
from dataclasses import dataclass
from typing import Optional, Tuple

ROLE_LANDLORD = "landlord"
ROLE_TENANT = "tenant"
ROLES = (ROLE_LANDLORD, ROLE_TENANT)

PROPERTY_STATUSES = ("available", "occupied", "maintenance")
LEASE_STATUSES = ("active", "expired", "terminated")

# Payment statuses that still count as money owed on the landlord dashboard.
OUTSTANDING_PAYMENT_STATUSES = ("pending", "overdue")

CATALOG_PAGE_SIZE = 12
MESSAGE_MAX_LENGTH = 500

UNKNOWN_NAME = "Unknown"


def _money(value):
    if value is None or value == "":
        return None
    return float(value)


def _date(value):
    if not value:
        return None
    if isinstance(value, datetime.date):
        return value
    # Supabase returns DATE as YYYY-MM-DD and timestamps as ISO strings.
    return datetime.date.fromisoformat(str(value)[:10])


@dataclass(frozen=True)
class Property:
    id: str
    landlord_id: str
    name: str
    address: str
    unit_number: Optional[str]
    rent_amount: float
    deposit_amount: Optional[float]
    status: str
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row):
        return cls(
            id=row["id"],
            landlord_id=row.get("landlord_id"),
            name=row.get("name") or "",
            address=row.get("address") or "",
            unit_number=row.get("unit_number") or None,
            rent_amount=_money(row.get("rent_amount")) or 0.0,
            deposit_amount=_money(row.get("deposit_amount")),
            status=row.get("status") or "available",
            created_at=row.get("created_at"),
        )


@dataclass(frozen=True)
class Lease:
    id: str
    property_id: str
    tenant_id: str
    start_date: Optional[datetime.date]
    end_date: Optional[datetime.date]
    rent_amount: float
    deposit_amount: Optional[float]
    payment_due_day: int
    status: str
    property_name: str = ""
    property_address: str = ""
    property_unit: Optional[str] = None
    tenant_name: str = UNKNOWN_NAME
    tenant_email: str = ""

    @classmethod
    def from_row(cls, row):
        # Embedded rows from PostgREST joins may be missing when RLS hides them.
        prop = row.get("properties") or {}
        profile = row.get("profiles") or {}
        return cls(
            id=row["id"],
            property_id=row.get("property_id"),
            tenant_id=row.get("tenant_id"),
            start_date=_date(row.get("start_date")),
            end_date=_date(row.get("end_date")),
            rent_amount=_money(row.get("rent_amount")) or 0.0,
            deposit_amount=_money(row.get("deposit_amount")),
            payment_due_day=int(row.get("payment_due_day") or 1),
            status=row.get("status") or "active",
            property_name=prop.get("name") or "",
            property_address=prop.get("address") or "",
            property_unit=prop.get("unit_number") or None,
            tenant_name=profile.get("full_name") or UNKNOWN_NAME,
            tenant_email=profile.get("email") or "",
        )


@dataclass(frozen=True)
class Payment:
    id: str
    lease_id: str
    amount: float
    due_date: Optional[datetime.date]
    paid_date: Optional[datetime.date]
    late_fee: float
    status: str
    notes: Optional[str] = None
    property_name: str = ""
    tenant_name: str = UNKNOWN_NAME

    @property
    def total_due(self):
        return self.amount + self.late_fee

    @classmethod
    def from_row(cls, row):
        lease = row.get("leases") or {}
        prop = lease.get("properties") or {}
        profile = lease.get("profiles") or {}
        return cls(
            id=row["id"],
            lease_id=row.get("lease_id"),
            amount=_money(row.get("amount")) or 0.0,
            due_date=_date(row.get("due_date")),
            paid_date=_date(row.get("paid_date")),
            late_fee=_money(row.get("late_fee")) or 0.0,
            status=row.get("status") or "pending",
            notes=row.get("notes"),
            property_name=prop.get("name") or "",
            tenant_name=profile.get("full_name") or UNKNOWN_NAME,
        )


@dataclass(frozen=True)
class Message:
    id: str
    property_id: str
    landlord_id: str
    sender_id: str
    message: str
    status: str
    created_at: Optional[str] = None
    property_name: str = ""

    @classmethod
    def from_row(cls, row):
        prop = row.get("properties") or {}
        return cls(
            id=row["id"],
            property_id=row.get("property_id"),
            landlord_id=row.get("landlord_id"),
            sender_id=row.get("sender_id"),
            message=row.get("message") or "",
            status=row.get("status") or "new",
            created_at=row.get("created_at"),
            property_name=prop.get("name") or "",
        )


@dataclass(frozen=True)
class TenantLease:
    """A tenant's active lease together with its payment history."""

    lease: Lease
    payments: Tuple[Payment, ...]


@dataclass(frozen=True)
class CatalogPage:
    items: Tuple[Property, ...]
    page_index: int
    page_size: int = CATALOG_PAGE_SIZE

    @property
    def offset(self):
        return self.page_index * self.page_size

    @property
    def has_previous(self):
        return self.page_index > 0

    @property
    def has_next(self):
        # Only a full page hints at more rows; an exactly-full last page
        # reports a next page that turns out empty.
        return len(self.items) == self.page_size


@dataclass(frozen=True)
class LandlordStats:
    properties: int = 0
    active_leases: int = 0
    pending_payments: int = 0
    total_revenue: float = 0.0
