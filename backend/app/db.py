"""
Database client configuration.
Uses Supabase (PostgREST) for the submissions table.
"""

import os
from functools import lru_cache

from supabase import create_client, Client

from app.config import get_service_key


@lru_cache(maxsize=1)
def get_supabase_admin() -> Client:
    """
    Return the admin client for service-level operations (bypasses RLS).

    Built lazily so that importing the app never requires credentials; the
    inbound webhook checks SUPABASE_SERVICE_KEY before ingestion is reached.

    Raises ValueError when SUPABASE_URL or SUPABASE_SERVICE_KEY is missing.
    """
    supabase_url = os.getenv("SUPABASE_URL")
    service_key = get_service_key()
    if not supabase_url or not service_key:
        raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set in environment variables")
    return create_client(supabase_url, service_key)
