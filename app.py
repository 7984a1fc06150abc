import os
import logging
import datetime

from flask import Flask, render_template, request, redirect, url_for, session, flash, g

import auth
from auth import AuthError, get_current_user, login_required
from i18n import SUPPORTED_LANGS, get_lang, translate_messages, translate_ui
from models import (
    CATALOG_PAGE_SIZE,
    LEASE_STATUSES,
    MESSAGE_MAX_LENGTH,
    PROPERTY_STATUSES,
    ROLE_LANDLORD,
    ROLE_TENANT,
)
from services import MessageChannel, PropertyCatalog, landlord_services, load_tenant_lease
from validation import PermissionDenied, PersistenceError, ValidationError


# -----------------------
# App & Logging Setup
# -----------------------

app = Flask(__name__)
app.config["SECRET_KEY"] = os.environ.get("SECRET_KEY", "change-me-in-production")

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "DEBUG").upper(),
    format="[%(asctime)s] %(levelname)s in %(module)s: %(message)s",
)
logger = logging.getLogger(__name__)

app.teardown_request(auth.close_auth_subscription)


@app.context_processor
def inject_i18n():
    """Make translation helper and language info available in all templates."""
    return {"t": translate_ui, "current_lang": get_lang(), "supported_langs": SUPPORTED_LANGS}


@app.context_processor
def inject_user():
    return {"current_user": g.get("current_user")}


@app.route("/set-language/<lang>")
def set_language(lang):
    logger.debug("set_language called with lang=%s", lang)
    if lang not in SUPPORTED_LANGS:
        logger.warning("Unsupported language requested: %s", lang)
        flash("Language not supported.", "warning")
        return redirect(url_for("dashboard"))

    session["lang"] = lang
    logger.info("Language set to %s for current session.", lang)
    ref = request.referrer
    if ref:
        return redirect(ref)
    return redirect(url_for("dashboard"))


def _flash_failure(e):
    """Show a local validation failure inline-style, a remote one as an error."""
    if isinstance(e, ValidationError):
        flash(e.message, "warning")
    else:
        flash(e.message, "danger")


# -----------------------
# Routes: Core / Auth
# -----------------------

@app.route("/")
@login_required()
def dashboard():
    user = get_current_user()
    logger.debug("Dashboard requested by user id=%s role=%s", user.id, user.role)
    if user.is_landlord:
        return redirect(url_for("landlord_dashboard"))
    if user.is_tenant:
        return redirect(url_for("tenant_dashboard"))
    logger.warning("User id=%s has no role assigned yet.", user.id)
    return render_template("role_pending.html")


@app.route("/login", methods=["GET", "POST"])
def login():
    logger.debug("Login route accessed with method=%s", request.method)
    if request.method == "POST":
        email = request.form.get("email", "").strip()
        password = request.form.get("password", "")
        if not email or not password:
            flash("Please enter your email and password.", "warning")
            return render_template("login.html", email=email)
        try:
            signed_in = auth.sign_in(email, password)
        except AuthError as e:
            flash(str(e), "danger")
            return render_template("login.html", email=email)
        except RuntimeError as e:
            flash(str(e), "danger")
            return render_template("login.html", email=email)

        if signed_in:
            next_page = request.args.get("next")
            if not next_page or not next_page.startswith("/"):
                next_page = url_for("dashboard")
            return redirect(next_page)

        flash("Invalid email or password.", "danger")
        return render_template("login.html", email=email)

    return render_template("login.html")


@app.route("/signup", methods=["GET", "POST"])
def signup():
    logger.debug("Signup route accessed with method=%s", request.method)
    if request.method == "POST":
        email = request.form.get("email", "").strip()
        password = request.form.get("password", "")
        full_name = request.form.get("full_name", "").strip()
        role = request.form.get("role", "").strip()

        if not email or not password or not full_name:
            flash("Please fill in all required fields.", "warning")
            return render_template("signup.html", email=email, full_name=full_name, role=role)

        try:
            signed_in = auth.sign_up(email, password, full_name, role)
        except AuthError as e:
            flash(str(e), "danger")
            return render_template("signup.html", email=email, full_name=full_name, role=role)
        except PersistenceError as e:
            flash(e.message, "danger")
            flash("Your account was created. Sign in to finish setting it up.", "info")
            return redirect(url_for("login"))
        except RuntimeError as e:
            flash(str(e), "danger")
            return render_template("signup.html", email=email, full_name=full_name, role=role)

        if signed_in:
            flash("Account created.", "success")
            return redirect(url_for("dashboard"))
        flash("Check your email to confirm your account, then sign in.", "info")
        return redirect(url_for("login"))

    return render_template("signup.html")


@app.route("/logout")
def logout():
    logger.debug("Logout route called.")
    auth.sign_out()
    flash("You have been signed out.", "info")
    return redirect(url_for("login"))


# -----------------------
# Landlord Views
# -----------------------

def _landlord_services():
    user = get_current_user()
    return landlord_services(user.client, user.id)


@app.route("/landlord")
@login_required(role=ROLE_LANDLORD)
def landlord_dashboard():
    user = get_current_user()
    logger.debug("Loading landlord dashboard for landlord id=%s", user.id)
    svc = _landlord_services()

    properties, leases, payments, billable_leases = (), (), (), ()
    property_choices = ()
    try:
        properties = svc.properties.list()
        leases = svc.leases.list()
        property_choices = svc.leases.property_choices()
        payments = svc.payments.list()
        billable_leases = svc.payments.active_leases()
    except PersistenceError as e:
        logger.error("Error loading landlord dashboard for id=%s: %s", user.id, e)
        _flash_failure(e)

    return render_template(
        "landlord_dashboard.html",
        stats=svc.stats.stats,
        properties=properties,
        leases=leases,
        property_choices=property_choices,
        payments=payments,
        billable_leases=billable_leases,
        property_statuses=PROPERTY_STATUSES,
        lease_statuses=LEASE_STATUSES,
        today=datetime.date.today().isoformat(),
    )


@app.route("/landlord/properties", methods=["POST"])
@login_required(role=ROLE_LANDLORD)
def landlord_create_property():
    try:
        _landlord_services().properties.create(request.form)
        flash("Property created successfully.", "success")
    except (ValidationError, PersistenceError) as e:
        _flash_failure(e)
    return redirect(url_for("landlord_dashboard"))


@app.route("/landlord/properties/<property_id>/edit")
@login_required(role=ROLE_LANDLORD)
def landlord_edit_property(property_id):
    try:
        prop = _landlord_services().properties.get(property_id)
    except PersistenceError as e:
        _flash_failure(e)
        return redirect(url_for("landlord_dashboard"))
    if prop is None:
        flash("Property not found.", "danger")
        return redirect(url_for("landlord_dashboard"))
    return render_template("property_form.html", prop=prop, property_statuses=PROPERTY_STATUSES)


@app.route("/landlord/properties/<property_id>", methods=["POST"])
@login_required(role=ROLE_LANDLORD)
def landlord_update_property(property_id):
    try:
        _landlord_services().properties.update(property_id, request.form)
        flash("Property updated successfully.", "success")
    except ValidationError as e:
        _flash_failure(e)
        return redirect(url_for("landlord_edit_property", property_id=property_id))
    except PersistenceError as e:
        _flash_failure(e)
    return redirect(url_for("landlord_dashboard"))


@app.route("/landlord/properties/<property_id>/delete", methods=["POST"])
@login_required(role=ROLE_LANDLORD)
def landlord_delete_property(property_id):
    try:
        _landlord_services().properties.delete(property_id)
        flash("Property deleted successfully.", "success")
    except PersistenceError as e:
        _flash_failure(e)
    return redirect(url_for("landlord_dashboard"))


@app.route("/landlord/leases", methods=["POST"])
@login_required(role=ROLE_LANDLORD)
def landlord_create_lease():
    try:
        _landlord_services().leases.create(request.form)
        flash("Lease created successfully.", "success")
    except (ValidationError, PersistenceError) as e:
        _flash_failure(e)
    return redirect(url_for("landlord_dashboard"))


@app.route("/landlord/leases/<lease_id>/delete", methods=["POST"])
@login_required(role=ROLE_LANDLORD)
def landlord_delete_lease(lease_id):
    try:
        _landlord_services().leases.delete(lease_id)
        flash("Lease deleted successfully.", "success")
    except PersistenceError as e:
        _flash_failure(e)
    return redirect(url_for("landlord_dashboard"))


@app.route("/landlord/payments", methods=["POST"])
@login_required(role=ROLE_LANDLORD)
def landlord_create_payment():
    try:
        _landlord_services().payments.create(request.form)
        flash("Payment record created successfully.", "success")
    except (ValidationError, PersistenceError) as e:
        _flash_failure(e)
    return redirect(url_for("landlord_dashboard"))


@app.route("/landlord/payments/<payment_id>/paid", methods=["POST"])
@login_required(role=ROLE_LANDLORD)
def landlord_mark_payment_paid(payment_id):
    try:
        _landlord_services().payments.mark_paid(payment_id)
        flash("Payment marked as paid.", "success")
    except PersistenceError as e:
        _flash_failure(e)
    return redirect(url_for("landlord_dashboard"))


@app.route("/landlord/payments/<payment_id>/delete", methods=["POST"])
@login_required(role=ROLE_LANDLORD)
def landlord_delete_payment(payment_id):
    try:
        _landlord_services().payments.delete(payment_id)
        flash("Payment deleted successfully.", "success")
    except PersistenceError as e:
        _flash_failure(e)
    return redirect(url_for("landlord_dashboard"))


@app.route("/landlord/messages")
@login_required(role=ROLE_LANDLORD)
def landlord_messages():
    user = get_current_user()
    logger.debug("Messages inbox for landlord id=%s", user.id)
    try:
        messages = MessageChannel(user.client, user.id).inbox()
    except PersistenceError as e:
        _flash_failure(e)
        return redirect(url_for("landlord_dashboard"))
    return render_template(
        "landlord_messages.html",
        messages=messages,
        translations=translate_messages(messages),
    )


# -----------------------
# Tenant Views
# -----------------------

@app.route("/tenant")
@login_required(role=ROLE_TENANT)
def tenant_dashboard():
    user = get_current_user()
    page_index = max(0, request.args.get("page", 0, type=int))
    logger.debug("Loading tenant dashboard for tenant id=%s page=%s", user.id, page_index)

    catalog_page, catalog_error = None, False
    try:
        catalog_page = PropertyCatalog(user.client).page(page_index)
    except PersistenceError as e:
        logger.error("Error loading available properties: %s", e)
        catalog_error = True

    tenant_lease = None
    try:
        tenant_lease = load_tenant_lease(user.client, user.id)
    except PersistenceError as e:
        _flash_failure(e)

    return render_template(
        "tenant_dashboard.html",
        catalog=catalog_page,
        catalog_error=catalog_error,
        page_index=page_index,
        page_size=CATALOG_PAGE_SIZE,
        tenant_lease=tenant_lease,
    )


@app.route("/properties/<property_id>/contact", methods=["GET", "POST"])
@login_required(role=ROLE_TENANT)
def contact_landlord(property_id):
    user = get_current_user()
    landlord_id = request.values.get("landlord_id", "").strip()
    property_name = request.values.get("property_name", "").strip()

    if request.method == "POST":
        raw_message = request.form.get("message", "")
        try:
            MessageChannel(user.client, user.id).send(property_id, landlord_id, raw_message)
        except ValidationError as e:
            return render_template(
                "contact_landlord.html",
                property_id=property_id,
                landlord_id=landlord_id,
                property_name=property_name,
                message=raw_message,
                error=e.message,
                max_length=MESSAGE_MAX_LENGTH,
            )
        except PermissionDenied:
            flash("Permission denied: you don't have permission to send this message.", "danger")
            return redirect(url_for("tenant_dashboard"))
        except PersistenceError:
            flash("Failed to send message. An error occurred, please try again later.", "danger")
            return redirect(url_for("tenant_dashboard"))

        flash("Message sent. The landlord will receive your message.", "success")
        return redirect(url_for("tenant_dashboard"))

    return render_template(
        "contact_landlord.html",
        property_id=property_id,
        landlord_id=landlord_id,
        property_name=property_name,
        message="",
        error=None,
        max_length=MESSAGE_MAX_LENGTH,
    )


# -----------------------
# App Entry
# -----------------------

if __name__ == "__main__":
    logger.debug("Starting app in debug mode on localhost.")
    app.run(debug=True)
