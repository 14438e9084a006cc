from __future__ import annotations

from functools import lru_cache
from typing import Any

from declarant import config


@lru_cache(maxsize=1)
def get_client() -> Any:
    """Shared Supabase client, built on first use so memory mode never imports it."""
    url, key = config.supabase_url(), config.supabase_key()
    if not url or not key:
        raise RuntimeError("SUPABASE_URL and SUPABASE_KEY must be set when DECLARANT_STORAGE_BACKEND=supabase")
    try:
        from supabase import create_client
    except ImportError as exc:  # pragma: no cover - only reachable without the supabase distribution
        raise RuntimeError("supabase package is required for DECLARANT_STORAGE_BACKEND=supabase") from exc
    return create_client(url, key)
