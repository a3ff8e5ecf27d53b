"""
Supabase client for remote session records
"""
import os
from typing import Optional

from dotenv import load_dotenv
from supabase import Client, create_client

load_dotenv()

_supabase_client: Optional[Client] = None


def get_supabase_client(url: Optional[str] = None, key: Optional[str] = None) -> Client:
    """Get or create the Supabase client singleton"""
    global _supabase_client

    if _supabase_client is None:
        url = url or os.getenv("SUPABASE_URL")
        # Anon key acts for the signed-in learner; service key is accepted for tooling
        key = key or os.getenv("SUPABASE_KEY") or os.getenv("SUPABASE_SERVICE_KEY")

        if not url or not key:
            raise ValueError("SUPABASE_URL and SUPABASE_KEY must be set in environment")

        _supabase_client = create_client(url, key)

    return _supabase_client


def reset_supabase_client():
    """Drop the cached client (used by tests and after credential changes)."""
    global _supabase_client
    _supabase_client = None
