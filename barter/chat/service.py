import logging
from bisect import insort
from datetime import datetime, timezone
from typing import Optional

import httpx
from fastapi import HTTPException
from postgrest.exceptions import APIError
from pydantic import TypeAdapter, ValidationError
from supabase import Client

from barter.core.realtime import change_type, extract_record
from barter.core.supabase_client import UNIQUE_VIOLATION
from barter.utils.profiles import get_profiles


logger = logging.getLogger(__name__)

CONVERSATION_FIELDS = "id, user1_id, user2_id, created_at, last_message, last_message_at"

CONVERSATION_LIST_SELECT = (
    f"{CONVERSATION_FIELDS}, "
    "user1:user1_id(id, full_name, avatar_url), "
    "user2:user2_id(id, full_name, avatar_url)"
)

MESSAGE_FIELDS = "id, conversation_id, sender_id, content, created_at"

# Failures a view survives by keeping its previous state
BACKEND_ERRORS = (APIError, httpx.HTTPError)

_datetime = TypeAdapter(datetime)


def chat_path(conversation_id) -> str:
    """Where a client opens the chat for a conversation."""
    return f"/chat/conversations/{conversation_id}"


def other_participant_id(conversation: dict, user_id: str) -> str:
    user_id = str(user_id)
    if str(conversation["user1_id"]) == user_id:
        return str(conversation["user2_id"])
    return str(conversation["user1_id"])


def is_participant(conversation: dict, user_id: str) -> bool:
    return str(user_id) in (str(conversation["user1_id"]), str(conversation["user2_id"]))


def parse_timestamp(value) -> Optional[datetime]:
    if value is None:
        return None
    try:
        parsed = _datetime.validate_python(value)
    except ValidationError:
        logger.warning(f"unparseable_timestamp value={value!r}")
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def message_sort_key(message: dict) -> datetime:
    # Rows without a timestamp sort last
    return parse_timestamp(message.get("created_at")) or datetime.max.replace(
        tzinfo=timezone.utc
    )


# --- Conversation list ---


def build_list_entry(row: dict, user_id: str) -> dict:
    """Normalize one joined conversation row from the caller's point of view."""
    other_key = "user2" if str(row["user1_id"]) == str(user_id) else "user1"
    other = row.get(other_key)

    if other is None:
        logger.warning(f"conversation_missing_profile conversation_id={row['id']}")

    last_message = None
    if row.get("last_message"):
        last_message = {
            "content": row["last_message"],
            "timestamp": row.get("last_message_at"),
            # No sender is stored with the preview
            "is_from_me": False,
        }

    return {
        "conversation_id": row["id"],
        "other_user": (
            {
                "id": other["id"],
                "full_name": other.get("full_name"),
                "avatar_url": other.get("avatar_url"),
            }
            if other
            else None
        ),
        "last_message": last_message,
        "timestamp": last_message["timestamp"] if last_message else row.get("created_at"),
        "path": chat_path(row["id"]),
    }


def aggregate_conversations(client: Client, user_id: str) -> list[dict]:
    """
    Every conversation the user takes part in, newest first, each joined to
    the other participant's profile and a last-message preview.
    """
    response = (
        client.table("conversations")
        .select(CONVERSATION_LIST_SELECT)
        .or_(f"user1_id.eq.{user_id},user2_id.eq.{user_id}")
        .order("created_at", desc=True)
        .execute()
    )

    return [build_list_entry(row, user_id) for row in response.data or []]


class ConversationInbox:
    """
    Conversation list kept for one live view.

    A failed refresh is logged and leaves the previous entries in place;
    `loading` is cleared whatever the outcome.
    """

    def __init__(self, client: Client, user_id: str):
        self.client = client
        self.user_id = str(user_id)
        self.entries: list[dict] = []
        self.loading = False
        self.error: Optional[str] = None

    def refresh(self) -> list[dict]:
        self.loading = True
        try:
            self.entries = aggregate_conversations(self.client, self.user_id)
            self.error = None
        except BACKEND_ERRORS as e:
            logger.error(f"conversation_refresh_failed user_id={self.user_id} error={e}")
            self.error = "Failed to fetch conversations"
        finally:
            self.loading = False
        return self.entries


# --- Conversation lookup / creation ---


def fetch_conversation(client: Client, conversation_id: str) -> dict:
    response = (
        client.table("conversations")
        .select(CONVERSATION_FIELDS)
        .eq("id", str(conversation_id))
        .limit(1)
        .execute()
    )

    if not response.data:
        raise HTTPException(status_code=404, detail="Conversation not found")

    return response.data[0]


def find_conversation(client: Client, user_id: str, other_id: str) -> Optional[dict]:
    """Best-effort lookup of a pair's conversation, in either column order."""
    a, b = str(user_id), str(other_id)
    response = (
        client.table("conversations")
        .select(CONVERSATION_FIELDS)
        .or_(
            f"and(user1_id.eq.{a},user2_id.eq.{b}),"
            f"and(user1_id.eq.{b},user2_id.eq.{a})"
        )
        .order("created_at")
        .limit(1)
        .execute()
    )

    return response.data[0] if response.data else None


def get_or_create_conversation(
    client: Client, user_id: str, other_id: str
) -> tuple[dict, bool]:
    """
    Return the pair's conversation and whether it was created by this call.

    New rows store the pair in canonical order, which the table's unique
    constraint keys on. Losing an insert race to the other participant
    surfaces as a unique violation and is resolved by reading the winner.
    """
    if str(user_id) == str(other_id):
        raise HTTPException(
            status_code=400, detail="Cannot start a conversation with yourself."
        )

    existing = find_conversation(client, user_id, other_id)
    if existing:
        return existing, False

    u1, u2 = sorted([str(user_id), str(other_id)])

    try:
        created = (
            client.table("conversations")
            .insert({"user1_id": u1, "user2_id": u2})
            .execute()
        )
    except APIError as e:
        if e.code != UNIQUE_VIOLATION:
            raise
        logger.info(f"conversation_insert_raced user1_id={u1} user2_id={u2}")
        existing = find_conversation(client, user_id, other_id)
        if existing is None:
            raise
        return existing, False

    conversation = created.data[0]
    logger.info(f"conversation_created conversation_id={conversation['id']}")
    return conversation, True


# --- Messages ---


def fetch_messages(client: Client, conversation_id: str) -> list[dict]:
    response = (
        client.table("messages")
        .select(MESSAGE_FIELDS)
        .eq("conversation_id", str(conversation_id))
        .order("created_at", desc=False)
        .execute()
    )

    # Stable sort keeps the backend order for equal timestamps
    return sorted(response.data or [], key=message_sort_key)


def send_message(
    client: Client, conversation_id: str, sender_id: str, content: str
) -> Optional[dict]:
    """
    Insert a message with trimmed content. Blank content inserts nothing and
    returns None.
    """
    text = (content or "").strip()
    if not text:
        return None

    response = (
        client.table("messages")
        .insert(
            {
                "conversation_id": str(conversation_id),
                "sender_id": str(sender_id),
                "content": text,
            }
        )
        .execute()
    )

    message = response.data[0] if response.data else None
    logger.info(
        f"message_sent conversation_id={conversation_id} sender_id={sender_id}"
    )
    return message


class ChatSession:
    """
    State behind one open chat: the conversation, both participants, the
    other user relative to the caller, and the ordered message history.

    Sent messages are not appended here; they come back through the live
    stream and `apply_change`.
    """

    def __init__(self, client: Client, conversation_id: str, user_id: str):
        self.client = client
        self.conversation_id = str(conversation_id)
        self.user_id = str(user_id)

        self.conversation: Optional[dict] = None
        self.participants: list[dict] = []
        self.other_user: Optional[dict] = None
        self.messages: list[dict] = []
        self._message_ids: set[str] = set()

    def ensure_member(self) -> dict:
        """Fetch the conversation; 404 if it is missing, 403 if the caller is not in it."""
        conversation = fetch_conversation(self.client, self.conversation_id)

        if not is_participant(conversation, self.user_id):
            raise HTTPException(
                status_code=403, detail="You are not a member of this conversation"
            )

        self.conversation = conversation
        return conversation

    def load(self) -> "ChatSession":
        conversation = self.ensure_member()

        user1_id, user2_id = str(conversation["user1_id"]), str(conversation["user2_id"])
        profiles = get_profiles(self.client, [user1_id, user2_id])

        self.participants = [profiles[uid] for uid in (user1_id, user2_id) if uid in profiles]
        self.other_user = profiles.get(other_participant_id(conversation, self.user_id))

        self.messages = fetch_messages(self.client, self.conversation_id)
        self._message_ids = {str(m["id"]) for m in self.messages}
        return self

    def apply_change(self, payload: dict) -> Optional[dict]:
        """
        Merge a live `messages` change. Returns the message if it was added,
        None when the event is not a new message of this conversation or the
        message is already known.
        """
        kind = change_type(payload)
        if kind is not None and kind != "INSERT":
            return None

        record = extract_record(payload)
        if not record or str(record.get("conversation_id")) != self.conversation_id:
            return None

        return record if self._add(record) else None

    def merge(self, messages: list[dict]) -> list[dict]:
        """Add fetched messages not seen yet; returns the ones added."""
        return [m for m in messages if self._add(m)]

    def _add(self, message: dict) -> bool:
        message_id = str(message.get("id"))
        if message_id in self._message_ids:
            return False

        # Arrival order is not creation order; ties keep arrival order
        insort(self.messages, message, key=message_sort_key)
        self._message_ids.add(message_id)
        return True

    def position(self, message: dict) -> int:
        """Index of a known message in the ordered history."""
        message_id = str(message["id"])
        for index, existing in enumerate(self.messages):
            if str(existing["id"]) == message_id:
                return index
        raise ValueError(f"message {message_id} is not in this session")

    def send(self, content: str) -> Optional[dict]:
        return send_message(self.client, self.conversation_id, self.user_id, content)

    def snapshot(self) -> dict:
        return {
            "conversation": self.conversation,
            "participants": self.participants,
            "other_user": self.other_user,
            "messages": list(self.messages),
        }
