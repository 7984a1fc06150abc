"""
Errors raised by the rental services and the local form checks that run
before anything is sent to Supabase.

The database constraints and row-level security stay authoritative; these
checks only catch obvious mistakes early so the user gets a field-level
message instead of a generic failure.
"""

import datetime
import logging
import math
import re

from postgrest.exceptions import APIError

from models import (
    LEASE_STATUSES,
    MESSAGE_MAX_LENGTH,
    PROPERTY_STATUSES,
)

logger = logging.getLogger(__name__)

# Postgres "insufficient_privilege", what PostgREST reports on an RLS rejection.
PERMISSION_DENIED_CODE = "42501"

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class RentalError(Exception):
    """Base class for errors surfaced to the user."""


class ValidationError(RentalError):
    def __init__(self, field, message):
        super().__init__(message)
        self.field = field
        self.message = message


class TenantNotFound(ValidationError):
    def __init__(self, email):
        super().__init__("tenant_email", "Tenant not found with this email.")
        self.email = email


class PersistenceError(RentalError):
    def __init__(self, message, code=None):
        super().__init__(message)
        self.message = message
        self.code = code


class PermissionDenied(PersistenceError):
    pass


def persistence_error(exc, action):
    """Translate a Supabase/PostgREST failure into a PersistenceError."""
    code = getattr(exc, "code", None) if isinstance(exc, APIError) else None
    if code == PERMISSION_DENIED_CODE:
        logger.warning("Permission denied while trying to %s: %s", action, exc)
        return PermissionDenied(f"You don't have permission to {action}.", code=code)
    logger.error("Supabase error while trying to %s: %s", action, exc)
    return PersistenceError(f"Failed to {action}. Please try again.", code=code)


# -----------------------
# Field parsers
# -----------------------

def _clean(raw):
    if raw is None:
        return ""
    return str(raw).strip()


def require_text(raw, field, label):
    value = _clean(raw)
    if not value:
        raise ValidationError(field, f"{label} is required.")
    return value


def optional_text(raw):
    return _clean(raw) or None


def parse_amount(raw, field, label, required=True, allow_zero=True):
    """
    Parse a money field. Values must be finite numbers, >= 0, and > 0 when
    allow_zero is False. Returns None for an empty optional field.
    """
    value = _clean(raw)
    if not value:
        if required:
            raise ValidationError(field, f"Please provide a valid {label}.")
        return None
    try:
        amount = float(value)
    except ValueError:
        raise ValidationError(field, f"Please provide a valid {label}.")
    if not math.isfinite(amount) or amount < 0 or (amount == 0 and not allow_zero):
        if allow_zero:
            raise ValidationError(field, f"Please provide a valid {label}.")
        raise ValidationError(field, f"Please provide a valid {label} greater than 0.")
    return amount


def parse_due_day(raw):
    value = _clean(raw)
    try:
        day = int(value)
    except ValueError:
        raise ValidationError("payment_due_day", "Payment due day must be between 1 and 31.")
    if day < 1 or day > 31:
        raise ValidationError("payment_due_day", "Payment due day must be between 1 and 31.")
    return day


def parse_date(raw, field, label):
    value = require_text(raw, field, label)
    try:
        return datetime.date.fromisoformat(value)
    except ValueError:
        raise ValidationError(field, f"{label} must be a date (YYYY-MM-DD).")


def parse_choice(raw, field, choices, default):
    value = _clean(raw) or default
    if value not in choices:
        raise ValidationError(field, f"Invalid {field.replace('_', ' ')}.")
    return value


def parse_email(raw, field="tenant_email"):
    value = _clean(raw)
    if not value or not EMAIL_RE.match(value):
        raise ValidationError(field, "Please provide a valid tenant email.")
    return value


# -----------------------
# Form validators
# -----------------------

def validate_property_form(form):
    """Return the column values for a properties insert/update."""
    return {
        "name": require_text(form.get("name"), "name", "Property name"),
        "address": require_text(form.get("address"), "address", "Address"),
        "unit_number": optional_text(form.get("unit_number")),
        "rent_amount": parse_amount(form.get("rent_amount"), "rent_amount", "rent amount"),
        "deposit_amount": parse_amount(
            form.get("deposit_amount"), "deposit_amount", "deposit amount", required=False
        ),
        "status": parse_choice(form.get("status"), "status", PROPERTY_STATUSES, "available"),
    }


def validate_lease_form(form):
    """
    Return the lease column values (without tenant/landlord ids) plus the
    tenant email that still has to be resolved to a profile.
    """
    tenant_email = parse_email(form.get("tenant_email"))
    property_id = require_text(form.get("property_id"), "property_id", "Property")
    start_date = parse_date(form.get("start_date"), "start_date", "Start date")
    end_date = parse_date(form.get("end_date"), "end_date", "End date")
    if end_date <= start_date:
        raise ValidationError("end_date", "End date must be after the start date.")

    values = {
        "property_id": property_id,
        "start_date": start_date.isoformat(),
        "end_date": end_date.isoformat(),
        "rent_amount": parse_amount(
            form.get("rent_amount"), "rent_amount", "rent amount", allow_zero=False
        ),
        "deposit_amount": parse_amount(
            form.get("deposit_amount"), "deposit_amount", "deposit amount", required=False
        ),
        "payment_due_day": parse_due_day(form.get("payment_due_day")),
        "status": parse_choice(form.get("status"), "status", LEASE_STATUSES, "active"),
    }
    return tenant_email, values


def validate_payment_form(form):
    return {
        "lease_id": require_text(form.get("lease_id"), "lease_id", "Lease"),
        "amount": parse_amount(form.get("amount"), "amount", "amount", allow_zero=False),
        "due_date": parse_date(form.get("due_date"), "due_date", "Due date").isoformat(),
    }


def validate_message(raw):
    """Trim the message body and enforce 1..MESSAGE_MAX_LENGTH characters."""
    text = _clean(raw)
    if not text:
        raise ValidationError("message", "Please write a message.")
    if len(text) > MESSAGE_MAX_LENGTH:
        raise ValidationError(
            "message", f"Messages are limited to {MESSAGE_MAX_LENGTH} characters."
        )
    return text
