from supabase import acreate_client, AsyncClient
from recruitboard.core.config import Settings


async def create_supabase_client(settings: Settings) -> AsyncClient:
    """Create a Supabase client using the service role key (server-side reads of every profile)."""
    return await acreate_client(
        settings.SUPABASE_URL,
        settings.SUPABASE_SERVICE_KEY
    )
