import logging
import os

import requests
from flask import session

logger = logging.getLogger(__name__)

SUPPORTED_LANGS = ["en", "es"]
DEFAULT_LANG = "en"

TRANSLATIONS = {
    # ----------------------
    # Navigation / auth
    # ----------------------
    "app_title": {"en": "Rental Management", "es": "Gestión de Alquileres"},
    "portal_landlord": {"en": "Landlord Portal", "es": "Portal del propietario"},
    "portal_tenant": {"en": "Tenant Portal", "es": "Portal del inquilino"},
    "nav_sign_out": {"en": "Sign Out", "es": "Cerrar sesión"},
    "nav_messages": {"en": "Messages", "es": "Mensajes"},
    "nav_dashboard": {"en": "Dashboard", "es": "Panel"},
    "auth_sign_in": {"en": "Sign in", "es": "Iniciar sesión"},
    "auth_sign_up": {"en": "Create account", "es": "Crear cuenta"},
    "auth_email": {"en": "Email", "es": "Correo electrónico"},
    "auth_password": {"en": "Password", "es": "Contraseña"},
    "auth_full_name": {"en": "Full name", "es": "Nombre completo"},
    "auth_role": {"en": "I am a", "es": "Soy"},
    "auth_no_account": {"en": "No account yet?", "es": "¿Aún no tienes cuenta?"},
    "auth_have_account": {"en": "Already have an account?", "es": "¿Ya tienes cuenta?"},
    "role_landlord": {"en": "Landlord", "es": "Propietario"},
    "role_tenant": {"en": "Tenant", "es": "Inquilino"},
    "role_pending": {
        "en": "Your account does not have a role yet.",
        "es": "Tu cuenta todavía no tiene un rol.",
    },

    # ----------------------
    # Landlord dashboard
    # ----------------------
    "stats_properties": {"en": "Total Properties", "es": "Propiedades"},
    "stats_active_leases": {"en": "Active Leases", "es": "Contratos activos"},
    "stats_pending_payments": {"en": "Pending Payments", "es": "Pagos pendientes"},
    "stats_total_revenue": {"en": "Total Revenue", "es": "Ingresos totales"},
    "properties_title": {"en": "Properties", "es": "Propiedades"},
    "properties_subtitle": {
        "en": "Manage your rental properties and units",
        "es": "Administra tus propiedades y unidades",
    },
    "properties_add": {"en": "Add Property", "es": "Añadir propiedad"},
    "properties_edit": {"en": "Edit Property", "es": "Editar propiedad"},
    "properties_update": {"en": "Update Property", "es": "Actualizar propiedad"},
    "properties_none": {"en": "No properties yet.", "es": "Todavía no hay propiedades."},
    "properties_delete_confirm": {
        "en": "Are you sure you want to delete this property?",
        "es": "¿Seguro que quieres eliminar esta propiedad?",
    },
    "leases_title": {"en": "Leases", "es": "Contratos"},
    "leases_add": {"en": "Add Lease", "es": "Añadir contrato"},
    "leases_none": {"en": "No leases yet.", "es": "Todavía no hay contratos."},
    "leases_tenant_email": {"en": "Tenant email", "es": "Correo del inquilino"},
    "leases_delete_confirm": {
        "en": "Are you sure you want to delete this lease?",
        "es": "¿Seguro que quieres eliminar este contrato?",
    },
    "payments_title": {"en": "Rent Payments", "es": "Pagos de alquiler"},
    "payments_add": {"en": "Record Payment", "es": "Registrar pago"},
    "payments_none": {"en": "No payments yet.", "es": "Todavía no hay pagos."},
    "payments_mark_paid": {"en": "Mark paid", "es": "Marcar pagado"},
    "payments_delete_confirm": {
        "en": "Are you sure you want to delete this payment?",
        "es": "¿Seguro que quieres eliminar este pago?",
    },
    "messages_title": {"en": "Messages", "es": "Mensajes"},
    "messages_none": {"en": "No messages yet.", "es": "Todavía no hay mensajes."},

    # ----------------------
    # Common fields
    # ----------------------
    "field_name": {"en": "Property Name", "es": "Nombre"},
    "field_address": {"en": "Address", "es": "Dirección"},
    "field_unit": {"en": "Unit Number (optional)", "es": "Unidad (opcional)"},
    "field_rent": {"en": "Monthly Rent", "es": "Alquiler mensual"},
    "field_deposit": {"en": "Deposit Amount", "es": "Depósito"},
    "field_status": {"en": "Status", "es": "Estado"},
    "field_property": {"en": "Property", "es": "Propiedad"},
    "field_tenant": {"en": "Tenant", "es": "Inquilino"},
    "field_start": {"en": "Start date", "es": "Fecha de inicio"},
    "field_end": {"en": "End date", "es": "Fecha de fin"},
    "field_due_day": {"en": "Payment due day", "es": "Día de pago"},
    "field_lease": {"en": "Lease", "es": "Contrato"},
    "field_amount": {"en": "Amount", "es": "Importe"},
    "field_due_date": {"en": "Due date", "es": "Vencimiento"},
    "field_paid_date": {"en": "Paid date", "es": "Fecha de pago"},
    "field_late_fee": {"en": "Late fee", "es": "Recargo"},
    "field_message": {"en": "Message", "es": "Mensaje"},
    "field_received": {"en": "Received", "es": "Recibido"},
    "save": {"en": "Save", "es": "Guardar"},
    "delete": {"en": "Delete", "es": "Eliminar"},
    "edit": {"en": "Edit", "es": "Editar"},
    "cancel": {"en": "Cancel", "es": "Cancelar"},

    # ----------------------
    # Tenant dashboard
    # ----------------------
    "catalog_title": {"en": "Available Properties", "es": "Propiedades disponibles"},
    "catalog_subtitle": {
        "en": "Browse rental properties available for lease",
        "es": "Explora propiedades disponibles para alquilar",
    },
    "catalog_none": {
        "en": "No properties are available right now.",
        "es": "No hay propiedades disponibles ahora mismo.",
    },
    "catalog_error": {
        "en": "Failed to load properties. Please try again later.",
        "es": "No se pudieron cargar las propiedades. Inténtalo más tarde.",
    },
    "catalog_previous": {"en": "Previous", "es": "Anterior"},
    "catalog_next": {"en": "Next", "es": "Siguiente"},
    "catalog_page": {"en": "Page", "es": "Página"},
    "catalog_per_month": {"en": "/month", "es": "/mes"},
    "contact_landlord": {"en": "Contact Landlord", "es": "Contactar al propietario"},
    "contact_send": {"en": "Send message", "es": "Enviar mensaje"},
    "contact_remaining": {"en": "characters remaining", "es": "caracteres restantes"},
    "lease_yours": {"en": "Your Lease", "es": "Tu contrato"},
    "lease_none_title": {"en": "No Active Lease", "es": "Sin contrato activo"},
    "lease_none": {
        "en": "You don't have an active lease at the moment. Contact your landlord for more information.",
        "es": "No tienes un contrato activo en este momento. Contacta a tu propietario para más información.",
    },
    "payment_history": {"en": "Payment History", "es": "Historial de pagos"},
}


def get_lang():
    lang = session.get("lang") or DEFAULT_LANG
    if lang not in SUPPORTED_LANGS:
        lang = DEFAULT_LANG
    return lang


def translate_ui(key):
    """Return translated UI string for current language."""
    lang = get_lang()
    value = TRANSLATIONS.get(key, {})
    return value.get(lang) or value.get(DEFAULT_LANG) or key


# DeepL configuration
DEEPL_API_KEY = os.environ.get("DEEPL_API_KEY")
DEEPL_API_URL = os.environ.get(
    "DEEPL_API_URL", "https://api-free.deepl.com/v2/translate"
)


def translate_texts_deepl(texts, target_lang):
    """
    Translate free texts (e.g. tenants' messages) using DeepL in a single
    request. Returns a list aligned with ``texts``, or None when DeepL is
    not configured or the call fails.
    """
    if not texts:
        return []
    if not DEEPL_API_KEY:
        logger.debug("DeepL API key not configured, skipping translation.")
        return None

    deepl_lang = target_lang.upper()
    logger.debug("DeepL translation requested to %s for %d texts", deepl_lang, len(texts))
    # DeepL accepts the text field repeated once per text.
    payload = [("auth_key", DEEPL_API_KEY), ("target_lang", deepl_lang)]
    payload.extend(("text", text) for text in texts)
    try:
        resp = requests.post(DEEPL_API_URL, data=payload, timeout=10)
        logger.debug("DeepL response status=%s", resp.status_code)
        resp.raise_for_status()
        data = resp.json()
        translations = data.get("translations") or []
        if len(translations) == len(texts):
            return [t.get("text") for t in translations]
        logger.error(
            "DeepL returned %d translations for %d texts: %s",
            len(translations), len(texts), data,
        )
    except requests.RequestException:
        logger.exception("DeepL translation failed.")
    except ValueError:
        logger.exception("DeepL returned a non-JSON response.")
    return None


def translate_messages(messages):
    """
    Map message id -> translated body for the current UI language.
    Only non-default languages are translated.
    """
    lang = get_lang()
    if lang == DEFAULT_LANG:
        return {}
    pending = [m for m in messages if m.message]
    texts = translate_texts_deepl([m.message for m in pending], target_lang=lang)
    if not texts:
        return {}
    translated = {m.id: text for m, text in zip(pending, texts) if text}
    logger.debug("Translated %d of %d messages to %s", len(translated), len(messages), lang)
    return translated
