import os
import logging
from functools import lru_cache

from dotenv import load_dotenv
from supabase import create_client, acreate_client, Client, AsyncClient, ClientOptions


load_dotenv()
logger = logging.getLogger(__name__)


# Postgres unique_violation, as reported by PostgREST
UNIQUE_VIOLATION = "23505"


@lru_cache(maxsize=1)
def get_supabase() -> Client:
    """Shared sync client for table, auth and storage calls."""
    supabase_url = os.getenv("PUBLIC_SUPABASE_URL")
    supabase_key = os.getenv("SECRET_API_KEY")

    return create_client(supabase_url, supabase_key)


async def create_realtime_client() -> AsyncClient:
    """Async client used only for Realtime channels (the sync client has none)."""
    supabase_url = os.getenv("PUBLIC_SUPABASE_URL")
    supabase_key = os.getenv("SECRET_API_KEY")

    client = await acreate_client(supabase_url, supabase_key)
    logger.info(f"realtime_client_ready url={supabase_url}")
    return client


async def close_realtime_client(client: AsyncClient) -> None:
    try:
        await client.remove_all_channels()
    except Exception:
        logger.exception("realtime_client_close_failed")


def get_auth_client() -> Client:
    """
    Throwaway client for sign-up, sign-in and refresh.

    Signing in sets a session on the client it runs on; doing that on the
    shared client would make later queries run as the last user to log in.
    """
    supabase_url = os.getenv("PUBLIC_SUPABASE_URL")
    supabase_key = os.getenv("SECRET_API_KEY")

    return create_client(
        supabase_url,
        supabase_key,
        options=ClientOptions(auto_refresh_token=False, persist_session=False),
    )
