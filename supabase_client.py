import logging
import os
from typing import Optional

from supabase import Client, ClientOptions, create_client

logger = logging.getLogger(__name__)

# We support both NEXT_PUBLIC_* (shared with the web frontend) and backend-style names.
SUPABASE_URL = (
    os.environ.get("SUPABASE_URL")
    or os.environ.get("NEXT_PUBLIC_SUPABASE_URL")
)
SUPABASE_ANON_KEY = (
    # Queries run under the signed-in user's JWT so row-level security applies.
    os.environ.get("SUPABASE_ANON_KEY")
    or os.environ.get("NEXT_PUBLIC_SUPABASE_ANON_KEY")
)


def create_anon_client() -> Optional[Client]:
    """
    Create a fresh Supabase client using the anon key.

    A new client is built for every request: the auth session lives on the
    client, so sharing one between users would leak identities.
    This logs useful debug info but never logs your keys.
    """
    if not SUPABASE_URL:
        logger.error("SUPABASE_URL / NEXT_PUBLIC_SUPABASE_URL is not set.")
        return None

    if not SUPABASE_ANON_KEY:
        logger.error(
            "Supabase key is not set. "
            "Set SUPABASE_ANON_KEY or NEXT_PUBLIC_SUPABASE_ANON_KEY."
        )
        return None

    try:
        logger.debug("Creating Supabase client for %s", SUPABASE_URL)
        return create_client(
            SUPABASE_URL,
            SUPABASE_ANON_KEY,
            options=ClientOptions(persist_session=False, auto_refresh_token=False),
        )
    except Exception as e:
        logger.exception("Failed to initialize Supabase client: %s", e)
        return None


def require_supabase() -> Client:
    """Get a Supabase client or raise an error."""
    client = create_anon_client()
    if client is None:
        logger.error("Supabase client not available. Check environment variables.")
        raise RuntimeError(
            "Supabase is not configured. Please set SUPABASE_URL and SUPABASE_ANON_KEY."
        )
    return client
