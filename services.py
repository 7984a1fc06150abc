"""
Role-scoped data access on top of a user-authenticated Supabase client.

Every service works on the client of the signed-in user, so row-level
security decides what each query can see or change. Services return
frozen snapshots from models.py; callers re-fetch to refresh.
"""

import datetime
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

from models import (
    CATALOG_PAGE_SIZE,
    OUTSTANDING_PAYMENT_STATUSES,
    CatalogPage,
    LandlordStats,
    Lease,
    Message,
    Payment,
    Property,
    TenantLease,
)
from validation import (
    TenantNotFound,
    ValidationError,
    persistence_error,
    validate_lease_form,
    validate_message,
    validate_payment_form,
    validate_property_form,
)

logger = logging.getLogger(__name__)

# Shared by all stats refreshes; each refresh submits three reads.
stats_executor = ThreadPoolExecutor(max_workers=5)


# -----------------------
# Change notifications
# -----------------------

class ChangeNotifier:
    """Publishes (entity, action) after each successful mutation."""

    def __init__(self):
        self._subscribers = []

    def subscribe(self, callback):
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def notify(self, entity, action):
        logger.debug("Change notification: %s %s", entity, action)
        for callback in list(self._subscribers):
            callback(entity, action)


# -----------------------
# Property catalog (tenant browsing)
# -----------------------

class PropertyCatalog:
    """Paginated listing of properties marked available, newest first."""

    COLUMNS = "id, name, address, unit_number, landlord_id, created_at, rent_amount, status"

    def __init__(self, client, page_size=CATALOG_PAGE_SIZE):
        self.client = client
        self.page_size = page_size

    def page(self, page_index=0) -> CatalogPage:
        page_index = max(0, int(page_index))
        offset = page_index * self.page_size
        logger.debug("Loading available properties page=%s offset=%s", page_index, offset)
        try:
            resp = (
                self.client.table("properties")
                .select(self.COLUMNS)
                .eq("status", "available")
                .order("created_at", desc=True)
                .range(offset, offset + self.page_size - 1)
                .execute()
            )
        except Exception as e:
            raise persistence_error(e, "load available properties") from e
        items = tuple(Property.from_row(row) for row in (resp.data or []))
        logger.debug("Loaded %d available properties for page=%s", len(items), page_index)
        return CatalogPage(items=items, page_index=page_index, page_size=self.page_size)


# -----------------------
# Landlord statistics
# -----------------------

def summarize_payments(rows):
    """Return (pending_count, total_revenue) for a set of payment rows."""
    pending = 0
    revenue = 0.0
    for row in rows:
        status = row.get("status")
        if status in OUTSTANDING_PAYMENT_STATUSES:
            pending += 1
        elif status == "paid":
            revenue += float(row.get("amount") or 0) + float(row.get("late_fee") or 0)
    return pending, revenue


class LandlordStatsAggregator:
    """
    Dashboard counters for one landlord. Any property/lease/payment change
    published on the notifier marks the stats stale, and the next read does
    a full re-fetch. Fetch failures reset everything to zero so the
    dashboard stays usable.
    """

    def __init__(self, client, landlord_id, notifier=None):
        self.client = client
        self.landlord_id = landlord_id
        self._stats = LandlordStats()
        self._stale = True
        if notifier is not None:
            notifier.subscribe(self._on_change)

    def _on_change(self, entity, action):
        if entity in ("property", "lease", "payment"):
            self._stale = True

    @property
    def stats(self) -> LandlordStats:
        if self._stale:
            self.refresh()
        return self._stats

    def _count_properties(self):
        resp = (
            self.client.table("properties")
            .select("id", count="exact")
            .eq("landlord_id", self.landlord_id)
            .execute()
        )
        return resp.count or 0

    def _count_active_leases(self):
        resp = (
            self.client.table("leases")
            .select("id", count="exact")
            .eq("landlord_id", self.landlord_id)
            .eq("status", "active")
            .execute()
        )
        return resp.count or 0

    def _fetch_payments(self):
        resp = (
            self.client.table("rent_payments")
            .select("amount, late_fee, status, leases!inner(landlord_id)")
            .eq("leases.landlord_id", self.landlord_id)
            .execute()
        )
        return resp.data or []

    def refresh(self) -> LandlordStats:
        logger.debug("Refreshing landlord stats for landlord id=%s", self.landlord_id)
        try:
            # Build the lazy PostgREST client before the workers share it.
            self.client.postgrest
            properties = stats_executor.submit(self._count_properties)
            leases = stats_executor.submit(self._count_active_leases)
            payments = stats_executor.submit(self._fetch_payments)
            property_count = properties.result()
            lease_count = leases.result()
            payment_rows = payments.result()
        except Exception as e:
            logger.exception("Error loading stats for landlord id=%s: %s", self.landlord_id, e)
            self._stats = LandlordStats()
            self._stale = False
            return self._stats

        pending, revenue = summarize_payments(payment_rows)
        self._stats = LandlordStats(
            properties=property_count,
            active_leases=lease_count,
            pending_payments=pending,
            total_revenue=revenue,
        )
        self._stale = False
        logger.debug("Landlord id=%s stats: %s", self.landlord_id, self._stats)
        return self._stats


# -----------------------
# Landlord CRUD managers
# -----------------------

class _LandlordRecords:
    table = None
    entity = None

    def __init__(self, client, landlord_id, notifier=None):
        self.client = client
        self.landlord_id = landlord_id
        self.notifier = notifier or ChangeNotifier()

    def _changed(self, action):
        self.notifier.notify(self.entity, action)

    def _execute(self, query, action):
        try:
            return query.execute()
        except Exception as e:
            raise persistence_error(e, action) from e


class PropertyManager(_LandlordRecords):
    table = "properties"
    entity = "property"

    def list(self):
        resp = self._execute(
            self.client.table(self.table)
            .select("*")
            .eq("landlord_id", self.landlord_id)
            .order("created_at", desc=True),
            "load properties",
        )
        return tuple(Property.from_row(row) for row in (resp.data or []))

    def get(self, property_id):
        resp = self._execute(
            self.client.table(self.table)
            .select("*")
            .eq("id", property_id)
            .eq("landlord_id", self.landlord_id)
            .limit(1),
            "load property",
        )
        rows = resp.data or []
        return Property.from_row(rows[0]) if rows else None

    def create(self, form):
        values = validate_property_form(form)
        values["landlord_id"] = self.landlord_id
        self._execute(self.client.table(self.table).insert(values), "create property")
        logger.info("Property '%s' created by landlord id=%s", values["name"], self.landlord_id)
        self._changed("created")

    def update(self, property_id, form):
        """Replace every editable column of the property."""
        values = validate_property_form(form)
        values["landlord_id"] = self.landlord_id
        self._execute(
            self.client.table(self.table)
            .update(values)
            .eq("id", property_id)
            .eq("landlord_id", self.landlord_id),
            "update property",
        )
        logger.info("Property id=%s updated by landlord id=%s", property_id, self.landlord_id)
        self._changed("updated")

    def delete(self, property_id):
        self._execute(
            self.client.table(self.table)
            .delete()
            .eq("id", property_id)
            .eq("landlord_id", self.landlord_id),
            "delete property",
        )
        logger.info("Property id=%s deleted by landlord id=%s", property_id, self.landlord_id)
        self._changed("deleted")


class LeaseManager(_LandlordRecords):
    table = "leases"
    entity = "lease"

    def list(self):
        resp = self._execute(
            self.client.table(self.table)
            .select("*, properties(name, address), profiles:tenant_id(full_name, email)")
            .eq("landlord_id", self.landlord_id)
            .order("created_at", desc=True),
            "load leases",
        )
        return tuple(Lease.from_row(row) for row in (resp.data or []))

    def property_choices(self):
        resp = self._execute(
            self.client.table("properties")
            .select("id, name")
            .eq("landlord_id", self.landlord_id),
            "load properties",
        )
        return tuple((row["id"], row.get("name") or "") for row in (resp.data or []))

    def find_tenant_id(self, email):
        resp = self._execute(
            self.client.table("profiles").select("id").eq("email", email).limit(1),
            "look up tenant",
        )
        rows = resp.data or []
        if not rows:
            logger.warning("No tenant profile found for email=%s", email)
            raise TenantNotFound(email)
        return rows[0]["id"]

    def create(self, form):
        # Not atomic: the profile could disappear between lookup and insert.
        tenant_email, values = validate_lease_form(form)
        values["tenant_id"] = self.find_tenant_id(tenant_email)
        values["landlord_id"] = self.landlord_id
        self._execute(self.client.table(self.table).insert(values), "create lease")
        logger.info(
            "Lease created by landlord id=%s for tenant id=%s on property id=%s",
            self.landlord_id, values["tenant_id"], values["property_id"],
        )
        self._changed("created")

    def delete(self, lease_id):
        self._execute(
            self.client.table(self.table)
            .delete()
            .eq("id", lease_id)
            .eq("landlord_id", self.landlord_id),
            "delete lease",
        )
        logger.info("Lease id=%s deleted by landlord id=%s", lease_id, self.landlord_id)
        self._changed("deleted")


class PaymentManager(_LandlordRecords):
    table = "rent_payments"
    entity = "payment"

    def list(self):
        resp = self._execute(
            self.client.table(self.table)
            .select(
                "*, leases!inner(landlord_id, tenant_id, properties(name), "
                "profiles:tenant_id(full_name))"
            )
            .eq("leases.landlord_id", self.landlord_id)
            .order("due_date", desc=True),
            "load payments",
        )
        return tuple(Payment.from_row(row) for row in (resp.data or []))

    def active_leases(self):
        """Active leases the landlord can bill, for the new-payment form."""
        resp = self._execute(
            self.client.table("leases")
            .select("id, rent_amount, tenant_id, properties(name), profiles:tenant_id(full_name)")
            .eq("landlord_id", self.landlord_id)
            .eq("status", "active"),
            "load leases",
        )
        return tuple(Lease.from_row(row) for row in (resp.data or []))

    def create(self, form):
        values = validate_payment_form(form)
        values["status"] = "pending"
        values["late_fee"] = 0
        self._execute(self.client.table(self.table).insert(values), "create payment")
        logger.info(
            "Payment of %.2f created on lease id=%s by landlord id=%s",
            values["amount"], values["lease_id"], self.landlord_id,
        )
        self._changed("created")

    def mark_paid(self, payment_id, paid_on=None):
        paid_on = paid_on or datetime.date.today()
        self._execute(
            self.client.table(self.table)
            .update({"status": "paid", "paid_date": paid_on.isoformat()})
            .eq("id", payment_id),
            "update payment",
        )
        logger.info("Payment id=%s marked paid by landlord id=%s", payment_id, self.landlord_id)
        self._changed("updated")

    def delete(self, payment_id):
        self._execute(
            self.client.table(self.table).delete().eq("id", payment_id),
            "delete payment",
        )
        logger.info("Payment id=%s deleted by landlord id=%s", payment_id, self.landlord_id)
        self._changed("deleted")


@dataclass
class LandlordServices:
    notifier: ChangeNotifier
    properties: PropertyManager
    leases: LeaseManager
    payments: PaymentManager
    stats: LandlordStatsAggregator


def landlord_services(client, landlord_id):
    """Wire the landlord managers and the stats aggregator to one notifier."""
    notifier = ChangeNotifier()
    return LandlordServices(
        notifier=notifier,
        properties=PropertyManager(client, landlord_id, notifier),
        leases=LeaseManager(client, landlord_id, notifier),
        payments=PaymentManager(client, landlord_id, notifier),
        stats=LandlordStatsAggregator(client, landlord_id, notifier),
    )


# -----------------------
# Tenant lease
# -----------------------

def load_tenant_lease(client, tenant_id):
    """Return the tenant's active lease with its payments, or None."""
    logger.debug("Loading active lease for tenant id=%s", tenant_id)
    try:
        resp = (
            client.table("leases")
            .select("*, properties(*)")
            .eq("tenant_id", tenant_id)
            .eq("status", "active")
            .limit(1)
            .execute()
        )
        rows = resp.data or []
        if not rows:
            logger.debug("No active lease found for tenant id=%s", tenant_id)
            return None
        lease = Lease.from_row(rows[0])

        payments_resp = (
            client.table("rent_payments")
            .select("*")
            .eq("lease_id", lease.id)
            .order("due_date", desc=True)
            .execute()
        )
    except Exception as e:
        raise persistence_error(e, "load your lease") from e

    payments = tuple(Payment.from_row(row) for row in (payments_resp.data or []))
    logger.debug("Loaded lease id=%s with %d payments for tenant id=%s", lease.id, len(payments), tenant_id)
    return TenantLease(lease=lease, payments=payments)


# -----------------------
# Messaging
# -----------------------

class MessageChannel:
    """Messages from a prospective tenant to a property's landlord."""

    def __init__(self, client, user_id):
        self.client = client
        self.user_id = user_id

    def send(self, property_id, landlord_id, raw_message):
        text = validate_message(raw_message)
        if not property_id or not landlord_id:
            raise ValidationError("property_id", "Unknown property.")
        if landlord_id == self.user_id:
            raise ValidationError("message", "You can't send a message to yourself.")

        logger.debug(
            "User id=%s sending message about property id=%s to landlord id=%s",
            self.user_id, property_id, landlord_id,
        )
        try:
            (
                self.client.table("messages")
                .insert({
                    "property_id": property_id,
                    "landlord_id": landlord_id,
                    "sender_id": self.user_id,
                    "message": text,
                })
                .execute()
            )
        except Exception as e:
            raise persistence_error(e, "send this message") from e
        logger.info("Message sent by user id=%s for property id=%s", self.user_id, property_id)
        return text

    def inbox(self):
        """Messages addressed to this user as landlord, newest first."""
        try:
            resp = (
                self.client.table("messages")
                .select("*, properties(name)")
                .eq("landlord_id", self.user_id)
                .order("created_at", desc=True)
                .execute()
            )
        except Exception as e:
            raise persistence_error(e, "load messages") from e
        return tuple(Message.from_row(row) for row in (resp.data or []))
