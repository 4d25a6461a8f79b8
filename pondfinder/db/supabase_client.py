"""Supabase client for the jobs table (service-role key, server side only)."""

from typing import Dict, Tuple

from loguru import logger
from supabase import Client, create_client

from pondfinder.config import Settings

# One client per (url, key) so rotated credentials get a fresh connection
_clients: Dict[Tuple[str, str], Client] = {}


def get_supabase(settings: Settings) -> Client:
    url, key = settings.supabase_url, settings.supabase_service_role_key
    if not url or not key:
        raise RuntimeError(
            "job_store_mode=supabase needs SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY"
        )
    client = _clients.get((url, key))
    if client is None:
        logger.info(f"Connecting job store to Supabase at {url}")
        client = create_client(url, key)
        _clients[(url, key)] = client
    return client
