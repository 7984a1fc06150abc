"""
Session and role resolution.

Supabase tokens live in the signed Flask session. Each request builds a
fresh client, listens for session changes (token refresh, sign-out) while
the stored tokens are applied, reads the identity and then its single
role from user_roles.
"""

import logging
from dataclasses import dataclass
from functools import wraps
from typing import Any, Optional

from flask import flash, g, has_request_context, redirect, request, session, url_for
from supabase import AuthApiError

import supabase_client
from models import ROLE_LANDLORD, ROLE_TENANT, ROLES
from validation import RentalError, persistence_error

logger = logging.getLogger(__name__)


class AuthError(RentalError):
    pass


@dataclass
class CurrentUser:
    id: str
    email: Optional[str]
    role: Optional[str]
    client: Any

    @property
    def is_landlord(self):
        return self.role == ROLE_LANDLORD

    @property
    def is_tenant(self):
        return self.role == ROLE_TENANT


def _store_tokens(auth_session):
    session["access_token"] = auth_session.access_token
    session["refresh_token"] = auth_session.refresh_token


def _sync_session(event, auth_session):
    """Keep the Flask session in step with Supabase session changes."""
    if not has_request_context():
        return
    logger.debug("Auth state change: %s", event)
    if event == "SIGNED_OUT":
        session.pop("access_token", None)
        session.pop("refresh_token", None)
        g.pop("current_user", None)
    elif event == "TOKEN_REFRESHED" and auth_session is not None:
        _store_tokens(auth_session)


def fetch_role(client, user_id):
    """Return the user's role, or None if it has not been assigned yet."""
    resp = (
        client.table("user_roles")
        .select("role")
        .eq("user_id", user_id)
        .limit(1)
        .execute()
    )
    rows = resp.data or []
    role = rows[0].get("role") if rows else None
    logger.debug("Resolved role for user id=%s -> %s", user_id, role)
    return role


def assign_role(client, user_id, role):
    if role not in ROLES:
        raise AuthError("Please choose landlord or tenant.")
    client.table("user_roles").insert({"user_id": user_id, "role": role}).execute()
    logger.info("Assigned role %s to user id=%s", role, user_id)


def ensure_role(client, user):
    """
    Insert the role picked at sign-up when the account was confirmed by
    email and is signing in for the first time.
    """
    if fetch_role(client, user.id):
        return
    wanted = (getattr(user, "user_metadata", None) or {}).get("role")
    if wanted in ROLES:
        assign_role(client, user.id, wanted)


def sign_in(email, password):
    """
    Sign in with email/password and store the tokens. Returns True on
    success, False for rejected credentials. Raises AuthError when the
    auth service cannot be reached.
    """
    client = supabase_client.require_supabase()
    logger.debug("Sign in attempt for email=%s", email)
    try:
        resp = client.auth.sign_in_with_password({"email": email, "password": password})
    except AuthApiError as e:
        logger.warning("Sign in rejected for email=%s: %s", email, e)
        return False
    except Exception as e:
        logger.exception("Sign in request failed for email=%s: %s", email, e)
        raise AuthError("Sign in is unavailable right now. Please try again later.") from e
    if resp.session is None:
        logger.warning("Sign in for email=%s returned no session.", email)
        return False

    session.clear()
    _store_tokens(resp.session)
    try:
        ensure_role(client, resp.user)
    except Exception as e:
        logger.exception("Could not assign pending role for user id=%s: %s", resp.user.id, e)
    logger.info("User id=%s signed in.", resp.user.id)
    return True


def sign_up(email, password, full_name, role):
    """
    Create an account. Returns True when the user is signed in right away,
    False when the email address must be confirmed first.
    """
    if role not in ROLES:
        raise AuthError("Please choose landlord or tenant.")
    client = supabase_client.require_supabase()
    logger.debug("Sign up attempt for email=%s role=%s", email, role)
    try:
        resp = client.auth.sign_up({
            "email": email,
            "password": password,
            "options": {"data": {"full_name": full_name, "role": role}},
        })
    except Exception as e:
        logger.warning("Sign up failed for email=%s: %s", email, e)
        raise AuthError("Could not create the account. The email may already be registered.") from e

    if resp.session is None:
        logger.info("Sign up for email=%s awaiting email confirmation.", email)
        return False

    session.clear()
    _store_tokens(resp.session)
    try:
        assign_role(client, resp.user.id, role)
    except Exception as e:
        # The role stays in user_metadata; ensure_role applies it on the next sign in.
        logger.exception("Could not assign role for new user id=%s: %s", resp.user.id, e)
        session.clear()
        raise persistence_error(e, "assign your role") from e
    logger.info("User id=%s signed up as %s.", resp.user.id, role)
    return True


def sign_out():
    user = get_current_user()
    if user is not None:
        try:
            user.client.auth.sign_out()
        except Exception as e:
            logger.warning("Supabase sign out failed for user id=%s: %s", user.id, e)
        logger.info("User id=%s signed out.", user.id)
    session.clear()
    g.pop("current_user", None)


def get_current_user():
    """Resolve the signed-in user and role for this request, cached on g."""
    if "current_user" in g:
        return g.current_user

    access_token = session.get("access_token")
    refresh_token = session.get("refresh_token")
    if not access_token:
        logger.debug("No Supabase session in Flask session.")
        g.current_user = None
        return None

    client = supabase_client.create_anon_client()
    if client is None:
        g.current_user = None
        return None

    g.auth_subscription = client.auth.on_auth_state_change(_sync_session)
    try:
        client.auth.set_session(access_token, refresh_token)
        user_resp = client.auth.get_user()
    except Exception as e:
        logger.warning("Stored Supabase session is no longer valid: %s", e)
        session.clear()
        g.current_user = None
        return None

    if not user_resp or not user_resp.user:
        logger.warning("Supabase returned no user for the stored session; clearing it.")
        session.clear()
        g.current_user = None
        return None

    auth_user = user_resp.user
    try:
        role = fetch_role(client, auth_user.id)
    except Exception as e:
        logger.exception("Error fetching role for user id=%s: %s", auth_user.id, e)
        role = None

    g.current_user = CurrentUser(id=auth_user.id, email=auth_user.email, role=role, client=client)
    return g.current_user


def close_auth_subscription(exc=None):
    subscription = g.pop("auth_subscription", None)
    if subscription is not None:
        subscription.unsubscribe()


def login_required(role=None):
    def decorator(view):
        @wraps(view)
        def wrapped_view(*args, **kwargs):
            user = get_current_user()
            if user is None:
                flash("Please sign in first.", "warning")
                logger.warning("Unauthenticated access attempt to %s", request.path)
                return redirect(url_for("login", next=request.path))
            if role is not None and user.role != role:
                flash("You do not have access to that page.", "danger")
                logger.warning(
                    "User id=%s with role %s tried to access %s-only page %s",
                    user.id, user.role, role, request.path,
                )
                return redirect(url_for("dashboard"))
            return view(*args, **kwargs)

        return wrapped_view

    return decorator
