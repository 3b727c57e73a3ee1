import logging

from recruitboard.core.config import Settings
from recruitboard.stores.base import ChangeNotifier, SubmissionStore
from recruitboard.stores.memory import MemorySubmissionStore

logger = logging.getLogger(__name__)


async def create_store(settings: Settings) -> SubmissionStore:
    """Build the Submission Store named by ``STORE_BACKEND``."""
    backend = settings.STORE_BACKEND.lower()
    if backend == "memory":
        store = MemorySubmissionStore()
    elif backend == "sql":
        from recruitboard.db.session import init_db, make_engine, make_session_factory
        from recruitboard.stores.sql import SqlSubmissionStore

        engine = make_engine(settings.DATABASE_URL)
        init_db(engine)
        store = SqlSubmissionStore(make_session_factory(engine))
    elif backend == "supabase":
        from recruitboard.core.client import create_supabase_client
        from recruitboard.stores.supabase import SupabaseSubmissionStore

        client = await create_supabase_client(settings)
        store = SupabaseSubmissionStore(client, schema=settings.SUPABASE_SCHEMA)
        await store.listen()
    else:
        raise ValueError(f"Unknown STORE_BACKEND {settings.STORE_BACKEND!r}")
    logger.info(f"Using {backend} submission store", extra={"backend": backend})
    return store


__all__ = ["ChangeNotifier", "MemorySubmissionStore", "SubmissionStore", "create_store"]
