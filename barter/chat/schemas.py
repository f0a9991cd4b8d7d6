from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from uuid import UUID
from datetime import datetime
from typing import List, Optional


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Profiles
class ProfileSummary(BaseModel):
    id: UUID
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None


# Conversation list
class OtherUser(CamelModel):
    id: UUID
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None


class LastMessagePreview(CamelModel):
    content: str
    timestamp: Optional[datetime] = None
    is_from_me: bool = False


class ConversationListEntry(CamelModel):
    conversation_id: UUID
    other_user: Optional[OtherUser] = None
    last_message: Optional[LastMessagePreview] = None
    timestamp: Optional[datetime] = None
    path: str


class GetConversationsResponseModel(BaseModel):
    conversations: List[ConversationListEntry]


# Chat session
class ConversationData(BaseModel):
    id: UUID
    user1_id: UUID
    user2_id: UUID
    created_at: datetime
    last_message: Optional[str] = None
    last_message_at: Optional[datetime] = None


class MessageData(BaseModel):
    id: UUID
    conversation_id: UUID
    sender_id: UUID
    content: str
    created_at: datetime


class ChatSessionResponseModel(BaseModel):
    conversation: ConversationData
    participants: List[ProfileSummary]
    other_user: Optional[ProfileSummary] = None
    messages: List[MessageData]


# Send messages
class SendMessageModel(BaseModel):
    content: str


class SendMessageResponseModel(BaseModel):
    sent: bool
    message: Optional[MessageData] = None


# Direct conversations
class CreateDirectConversationModel(BaseModel):
    receiver_id: UUID


class CreateDirectConversationResponseModel(BaseModel):
    conversation_id: UUID
    is_new: bool
    path: str
