from typing import Optional

from supabase import AsyncClient, create_async_client

from lesson_engine.core.settings import settings


async def create_supabase_client(
    url: Optional[str] = None, key: Optional[str] = None
) -> AsyncClient:
    """
    Builds an Async Supabase Client from explicit credentials or settings.
    The container owns the instance; there is no module-level cache.
    """
    url = url or settings.SUPABASE_URL
    key = key or settings.SUPABASE_SERVICE_KEY
    if not url or not key:
        raise ValueError(
            "SUPABASE_URL and SUPABASE_SERVICE_KEY (or SERVICE_ROLE) must be set in settings."
        )
    return await create_async_client(url, key)
