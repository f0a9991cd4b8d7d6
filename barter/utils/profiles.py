import logging
from typing import Iterable, Optional

from supabase import Client


logger = logging.getLogger(__name__)

PROFILE_SUMMARY_FIELDS = "id, full_name, avatar_url"


def get_profile(client: Client, user_id: str) -> Optional[dict]:
    """Get a profile summary by user id, or None if there is no such row."""
    response = (
        client.table("profiles")
        .select(PROFILE_SUMMARY_FIELDS)
        .eq("id", str(user_id))
        .limit(1)
        .execute()
    )

    return response.data[0] if response.data else None


def get_profiles(client: Client, user_ids: Iterable[str]) -> dict[str, dict]:
    """Profile summaries for several users, keyed by id. Missing ids are absent."""
    ids = sorted({str(uid) for uid in user_ids if uid})
    if not ids:
        return {}

    response = (
        client.table("profiles")
        .select(PROFILE_SUMMARY_FIELDS)
        .in_("id", ids)
        .execute()
    )

    profiles = {row["id"]: row for row in response.data or []}

    missing = set(ids) - profiles.keys()
    if missing:
        logger.warning(f"profiles_missing ids={sorted(missing)}")

    return profiles
