import datetime
import threading

import pytest
from postgrest.exceptions import APIError

from conftest import FakeResponse
from models import LandlordStats, Lease
from services import (
    ChangeNotifier,
    LandlordStatsAggregator,
    MessageChannel,
    PropertyCatalog,
    landlord_services,
    load_tenant_lease,
    summarize_payments,
)
from validation import PermissionDenied, PersistenceError, TenantNotFound, ValidationError

LANDLORD = "landlord-1"


def property_rows(n):
    return [
        {"id": f"p{i}", "landlord_id": LANDLORD, "name": f"Unit {i}", "address": "Main St",
         "rent_amount": 1000, "status": "available"}
        for i in range(n)
    ]


def lease_form(**overrides):
    form = {
        "tenant_email": "tenant@example.com",
        "property_id": "p1",
        "start_date": "2025-01-01",
        "end_date": "2025-12-31",
        "rent_amount": "1200",
        "payment_due_day": "5",
    }
    form.update(overrides)
    return form


# -----------------------
# Catalog
# -----------------------

@pytest.mark.parametrize("page", [0, 1, 2, 7])
def test_catalog_requests_offset_and_limit(fake_supabase, page):
    PropertyCatalog(fake_supabase).page(page)

    query = fake_supabase.executed("properties")[0]
    assert query.range_args == (page * 12, page * 12 + 11)
    assert ("eq", "status", "available") in query.filters
    assert query.order_by == [("created_at", True)]


def test_catalog_full_page_reports_next(fake_supabase):
    fake_supabase.respond("properties", property_rows(12))
    page = PropertyCatalog(fake_supabase).page(0)
    assert page.has_next is True
    assert page.has_previous is False
    assert len(page.items) == 12


def test_catalog_short_page_reports_no_next(fake_supabase):
    fake_supabase.respond("properties", property_rows(5))
    page = PropertyCatalog(fake_supabase).page(3)
    assert page.has_next is False
    assert page.has_previous is True
    assert page.offset == 36


def test_catalog_negative_page_clamped(fake_supabase):
    page = PropertyCatalog(fake_supabase).page(-4)
    assert page.page_index == 0
    assert fake_supabase.executed("properties")[0].range_args == (0, 11)


def test_catalog_failure_raises_persistence_error(fake_supabase):
    fake_supabase.fail("properties", APIError({"message": "down", "code": "500"}))
    with pytest.raises(PersistenceError):
        PropertyCatalog(fake_supabase).page(0)


# -----------------------
# Stats
# -----------------------

def test_summarize_payments_counts_pending_and_overdue():
    rows = [
        {"amount": 100, "late_fee": 0, "status": "paid"},
        {"amount": 200, "late_fee": 25, "status": "paid"},
        {"amount": 150, "late_fee": 0, "status": "pending"},
        {"amount": 150, "late_fee": 10, "status": "overdue"},
        {"amount": 80, "late_fee": None, "status": "partial"},
    ]
    assert summarize_payments(rows) == (2, 325.0)


def test_paid_payment_without_late_fee_counts_amount_only():
    assert summarize_payments([{"amount": "99.5", "late_fee": None, "status": "paid"}]) == (0, 99.5)


def test_aggregator_example(fake_supabase):
    fake_supabase.respond("properties", count=2)
    fake_supabase.respond("leases", count=1)
    fake_supabase.respond("rent_payments", [
        {"amount": 100, "late_fee": 0, "status": "paid"},
        {"amount": 150, "late_fee": 0, "status": "pending"},
    ])

    stats = LandlordStatsAggregator(fake_supabase, LANDLORD).refresh()

    assert stats == LandlordStats(properties=2, active_leases=1, pending_payments=1, total_revenue=100.0)
    leases_query = fake_supabase.executed("leases")[0]
    assert ("eq", "status", "active") in leases_query.filters
    assert leases_query.count == "exact"
    payments_query = fake_supabase.executed("rent_payments")[0]
    assert ("eq", "leases.landlord_id", LANDLORD) in payments_query.filters


def test_aggregator_fails_soft(fake_supabase):
    fake_supabase.respond("properties", count=4)
    fake_supabase.respond("leases", count=3)
    fake_supabase.fail("rent_payments", APIError({"message": "timeout", "code": "57014"}))

    aggregator = LandlordStatsAggregator(fake_supabase, LANDLORD)
    assert aggregator.stats == LandlordStats()


def test_aggregator_reads_run_concurrently(fake_supabase):
    # Each read only completes once all three are in flight together.
    barrier = threading.Barrier(3, timeout=2)

    def answer(response):
        def wait_for_others(query):
            barrier.wait()
            return response
        return wait_for_others

    fake_supabase.responses["properties"] = answer(FakeResponse(count=2))
    fake_supabase.responses["leases"] = answer(FakeResponse(count=1))
    fake_supabase.responses["rent_payments"] = answer(FakeResponse([
        {"amount": 100, "late_fee": 0, "status": "paid"},
    ]))

    stats = LandlordStatsAggregator(fake_supabase, LANDLORD).refresh()

    assert stats == LandlordStats(properties=2, active_leases=1, pending_payments=0, total_revenue=100.0)
    assert not barrier.broken
    # The shared PostgREST client is built on the calling thread, before the fan-out.
    assert fake_supabase.postgrest_threads == [threading.current_thread()]


def test_mutations_trigger_full_stats_refetch(fake_supabase):
    fake_supabase.respond("properties", count=1)
    svc = landlord_services(fake_supabase, LANDLORD)

    assert svc.stats.stats.properties == 1
    assert svc.stats.stats.properties == 1
    assert len(fake_supabase.executed("properties", "select")) == 1

    svc.properties.create({"name": "New", "address": "2 Elm", "rent_amount": "700"})
    fake_supabase.respond("properties", count=2)

    assert svc.stats.stats.properties == 2
    assert len(fake_supabase.executed("properties", "select")) == 2
    assert len(fake_supabase.executed("rent_payments")) == 2


def test_failed_mutation_does_not_notify(fake_supabase):
    events = []
    svc = landlord_services(fake_supabase, LANDLORD)
    svc.notifier.subscribe(lambda entity, action: events.append((entity, action)))

    fake_supabase.fail("properties", APIError({"message": "denied", "code": "42501"}))
    with pytest.raises(PermissionDenied):
        svc.properties.delete("p1")
    assert events == []


def test_notifier_unsubscribe():
    notifier = ChangeNotifier()
    events = []
    unsubscribe = notifier.subscribe(lambda entity, action: events.append(entity))
    notifier.notify("lease", "created")
    unsubscribe()
    notifier.notify("lease", "deleted")
    assert events == ["lease"]


# -----------------------
# Properties
# -----------------------

def test_property_create_sets_owner(fake_supabase):
    svc = landlord_services(fake_supabase, LANDLORD)
    svc.properties.create({"name": "A", "address": "B", "rent_amount": "100", "status": "occupied"})

    insert = fake_supabase.executed("properties", "insert")[0]
    assert insert.payload["landlord_id"] == LANDLORD
    assert insert.payload["status"] == "occupied"


def test_property_create_invalid_rent_never_reaches_supabase(fake_supabase):
    svc = landlord_services(fake_supabase, LANDLORD)
    with pytest.raises(ValidationError) as excinfo:
        svc.properties.create({"name": "A", "address": "B", "rent_amount": "-1"})
    assert excinfo.value.field == "rent_amount"
    assert fake_supabase.queries == []


def test_property_update_replaces_record_scoped_to_owner(fake_supabase):
    svc = landlord_services(fake_supabase, LANDLORD)
    svc.properties.update("p9", {"name": "A", "address": "B", "rent_amount": "100"})

    update = fake_supabase.executed("properties", "update")[0]
    assert set(update.payload) == {
        "name", "address", "unit_number", "rent_amount", "deposit_amount", "status", "landlord_id",
    }
    assert ("eq", "id", "p9") in update.filters
    assert ("eq", "landlord_id", LANDLORD) in update.filters


def test_property_list_newest_first(fake_supabase):
    fake_supabase.respond("properties", property_rows(2))
    props = landlord_services(fake_supabase, LANDLORD).properties.list()

    assert [p.id for p in props] == ["p0", "p1"]
    query = fake_supabase.executed("properties")[0]
    assert query.order_by == [("created_at", True)]
    assert ("eq", "landlord_id", LANDLORD) in query.filters


# -----------------------
# Leases
# -----------------------

def test_lease_create_resolves_tenant_by_email(fake_supabase):
    fake_supabase.respond("profiles", [{"id": "tenant-7"}])
    landlord_services(fake_supabase, LANDLORD).leases.create(lease_form())

    lookup = fake_supabase.executed("profiles")[0]
    assert ("eq", "email", "tenant@example.com") in lookup.filters
    insert = fake_supabase.executed("leases", "insert")[0]
    assert insert.payload["tenant_id"] == "tenant-7"
    assert insert.payload["landlord_id"] == LANDLORD
    assert insert.payload["payment_due_day"] == 5
    assert insert.payload["status"] == "active"


def test_lease_create_unknown_tenant(fake_supabase):
    fake_supabase.respond("profiles", [])
    with pytest.raises(TenantNotFound) as excinfo:
        landlord_services(fake_supabase, LANDLORD).leases.create(lease_form())
    assert excinfo.value.field == "tenant_email"
    assert fake_supabase.executed("leases", "insert") == []


@pytest.mark.parametrize("overrides,field", [
    ({"rent_amount": "0"}, "rent_amount"),
    ({"payment_due_day": "32"}, "payment_due_day"),
    ({"payment_due_day": "0"}, "payment_due_day"),
])
def test_lease_create_rejects_before_tenant_lookup(fake_supabase, overrides, field):
    with pytest.raises(ValidationError) as excinfo:
        landlord_services(fake_supabase, LANDLORD).leases.create(lease_form(**overrides))
    assert excinfo.value.field == field
    assert fake_supabase.queries == []


def test_lease_list_fills_unknown_tenant(fake_supabase):
    fake_supabase.respond("leases", [{
        "id": "l1", "property_id": "p1", "tenant_id": "t1",
        "start_date": "2025-01-01", "end_date": "2025-12-31",
        "rent_amount": "1200.00", "payment_due_day": 3, "status": "active",
        "properties": {"name": "Maple", "address": "1 Maple St"}, "profiles": None,
    }])
    (lease,) = landlord_services(fake_supabase, LANDLORD).leases.list()

    assert lease.tenant_name == "Unknown"
    assert lease.property_name == "Maple"
    assert lease.start_date == datetime.date(2025, 1, 1)
    assert lease.rent_amount == 1200.0


# -----------------------
# Payments
# -----------------------

def test_payment_create_defaults(fake_supabase):
    landlord_services(fake_supabase, LANDLORD).payments.create(
        {"lease_id": "l1", "amount": "750", "due_date": "2025-03-01"}
    )
    insert = fake_supabase.executed("rent_payments", "insert")[0]
    assert insert.payload == {
        "lease_id": "l1", "amount": 750.0, "due_date": "2025-03-01", "status": "pending", "late_fee": 0,
    }


def test_payment_mark_paid(fake_supabase):
    landlord_services(fake_supabase, LANDLORD).payments.mark_paid("pay-1", datetime.date(2025, 3, 2))
    update = fake_supabase.executed("rent_payments", "update")[0]
    assert update.payload == {"status": "paid", "paid_date": "2025-03-02"}
    assert ("eq", "id", "pay-1") in update.filters


def test_payment_list_joins_lease_details(fake_supabase):
    fake_supabase.respond("rent_payments", [{
        "id": "pay-1", "lease_id": "l1", "amount": 100, "late_fee": 5, "status": "overdue",
        "due_date": "2025-02-01", "paid_date": None,
        "leases": {"landlord_id": LANDLORD, "properties": {"name": "Maple"},
                   "profiles": {"full_name": "Pat Doe"}},
    }])
    (payment,) = landlord_services(fake_supabase, LANDLORD).payments.list()
    assert payment.property_name == "Maple"
    assert payment.tenant_name == "Pat Doe"
    assert payment.total_due == 105.0
    query = fake_supabase.executed("rent_payments")[0]
    assert query.order_by == [("due_date", True)]


# -----------------------
# Tenant lease
# -----------------------

def test_load_tenant_lease_none(fake_supabase):
    assert load_tenant_lease(fake_supabase, "t1") is None
    assert fake_supabase.executed("rent_payments") == []


def test_load_tenant_lease_with_payments(fake_supabase):
    fake_supabase.respond("leases", [{
        "id": "l1", "property_id": "p1", "tenant_id": "t1",
        "start_date": "2025-01-01", "end_date": "2025-12-31",
        "rent_amount": 900, "payment_due_day": 1, "status": "active",
        "properties": {"name": "Maple", "address": "1 Maple St", "unit_number": "2B"},
    }])
    fake_supabase.respond("rent_payments", [
        {"id": "pay-2", "lease_id": "l1", "amount": 900, "status": "pending", "due_date": "2025-02-01"},
        {"id": "pay-1", "lease_id": "l1", "amount": 900, "status": "paid", "due_date": "2025-01-01"},
    ])

    result = load_tenant_lease(fake_supabase, "t1")

    assert isinstance(result.lease, Lease)
    assert result.lease.property_unit == "2B"
    assert [p.id for p in result.payments] == ["pay-2", "pay-1"]
    assert ("eq", "lease_id", "l1") in fake_supabase.executed("rent_payments")[0].filters


# -----------------------
# Messaging
# -----------------------

def test_send_message_inserts_trimmed_text(fake_supabase):
    MessageChannel(fake_supabase, "tenant-1").send("p1", LANDLORD, "  Is it still available?  ")

    insert = fake_supabase.executed("messages", "insert")[0]
    assert insert.payload == {
        "property_id": "p1",
        "landlord_id": LANDLORD,
        "sender_id": "tenant-1",
        "message": "Is it still available?",
    }


def test_send_message_validates_before_insert(fake_supabase):
    channel = MessageChannel(fake_supabase, "tenant-1")
    with pytest.raises(ValidationError):
        channel.send("p1", LANDLORD, "   ")
    with pytest.raises(ValidationError):
        channel.send("p1", LANDLORD, "x" * 501)
    assert fake_supabase.queries == []


def test_send_message_to_self_rejected(fake_supabase):
    with pytest.raises(ValidationError):
        MessageChannel(fake_supabase, LANDLORD).send("p1", LANDLORD, "hello")


def test_send_message_permission_denied(fake_supabase):
    fake_supabase.fail("messages", APIError({"message": "rls", "code": "42501"}))
    with pytest.raises(PermissionDenied):
        MessageChannel(fake_supabase, "tenant-1").send("p1", LANDLORD, "hello")


def test_send_message_generic_failure(fake_supabase):
    fake_supabase.fail("messages", APIError({"message": "Property does not belong", "code": "P0001"}))
    with pytest.raises(PersistenceError) as excinfo:
        MessageChannel(fake_supabase, "tenant-1").send("p1", LANDLORD, "hello")
    assert not isinstance(excinfo.value, PermissionDenied)


def test_inbox_lists_messages_for_landlord(fake_supabase):
    fake_supabase.respond("messages", [{
        "id": "m1", "property_id": "p1", "landlord_id": LANDLORD, "sender_id": "tenant-1",
        "message": "Hi", "status": "new", "created_at": "2025-05-01T10:00:00Z",
        "properties": {"name": "Maple"},
    }])
    (message,) = MessageChannel(fake_supabase, LANDLORD).inbox()
    assert message.property_name == "Maple"
    query = fake_supabase.executed("messages")[0]
    assert ("eq", "landlord_id", LANDLORD) in query.filters
    assert query.order_by == [("created_at", True)]
