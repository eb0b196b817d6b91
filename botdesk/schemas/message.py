# botdesk/schemas/message.py
"""
Pydantic schemas for the live inbox: messages, conversation summaries and
the realtime payloads delivered by the backend.
Handles validation and camelCase <-> snake_case mapping.
"""
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

OPTIMISTIC_PREFIX = "optimistic-"


# ────────────────────────────────────────────
# Enums
# ────────────────────────────────────────────

class Sender(str, Enum):
    """Who authored a message"""
    CUSTOMER = "customer"
    BUSINESS = "business"


class MessageStatus(str, Enum):
    """Delivery status reported by WhatsApp"""
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


class Presence(str, Enum):
    """Inferred customer activity in the open chat"""
    OFFLINE = "offline"
    ONLINE = "online"
    TYPING = "typing"


class _Schema(BaseModel):
    class Config:
        populate_by_name = True


# ────────────────────────────────────────────
# Messages
# ────────────────────────────────────────────

class MessageContent(_Schema):
    body: str = ""
    media_url: Optional[str] = Field(None, alias="mediaUrl")
    media_type: Optional[str] = Field(None, alias="mediaType")
    caption: Optional[str] = None

    @field_validator("body", mode="before")
    @classmethod
    def validate_body(cls, v):
        return "" if v is None else v


class Message(_Schema):
    """One chat message as stored by the backend"""
    id: Optional[str] = Field(None, alias="_id")
    message_id: Optional[str] = Field(None, alias="messageId")
    content: MessageContent = Field(default_factory=MessageContent)
    timestamp: Optional[str] = None
    sender: Sender = Field(..., alias="from")
    type: str = "text"
    customer_wa_id: Optional[str] = Field(None, alias="customerWaId")
    whats_app_number_id: Optional[str] = Field(None, alias="whatsAppNumberId")
    status: Optional[MessageStatus] = None
    customer_profile_pic: Optional[str] = Field(None, alias="customerProfilePic")

    @field_validator("content", mode="before")
    @classmethod
    def validate_content(cls, v):
        # some events carry the text directly
        if v is None:
            return {}
        if isinstance(v, str):
            return {"body": v}
        return v

    @property
    def is_optimistic(self) -> bool:
        return bool(self.message_id and self.message_id.startswith(OPTIMISTIC_PREFIX))

    def belongs_to(self, customer_wa_id: Optional[str], whats_app_number_id: Optional[str]) -> bool:
        return (
            self.customer_wa_id == customer_wa_id and
            self.whats_app_number_id == whats_app_number_id
        )


# ────────────────────────────────────────────
# Conversations
# ────────────────────────────────────────────

class Conversation(_Schema):
    """Conversation list entry"""
    customer_wa_id: str = Field(..., alias="customerWaId")
    customer_name: str = Field("", alias="customerName")
    customer_phone: str = Field("", alias="customerPhone")
    display_name: str = Field("", alias="displayName")
    last_message: str = Field("", alias="lastMessage")
    last_message_time: Optional[str] = Field(None, alias="lastMessageTime")
    last_message_from: Optional[Sender] = Field(None, alias="lastMessageFrom")
    last_message_status: Optional[MessageStatus] = Field(None, alias="lastMessageStatus")
    message_count: int = Field(0, alias="messageCount")
    pending_reply: bool = Field(False, alias="pendingReply")
    customer_profile_pic: Optional[str] = Field(None, alias="customerProfilePic")
    unread_count: int = Field(0, ge=0, alias="unreadCount")

    @field_validator("customer_name", "customer_phone", "display_name", "last_message", mode="before")
    @classmethod
    def none_to_blank(cls, v):
        return "" if v is None else v

    @field_validator("unread_count", "message_count", mode="before")
    @classmethod
    def none_to_zero(cls, v):
        return v or 0


class WhatsAppNumber(_Schema):
    """Business WhatsApp number connected to the account"""
    id: str = Field(..., alias="_id")
    display_name: str = Field("", alias="displayName")
    whatsapp_number: str = Field("", alias="whatsappNumber")
    phone_number_id: Optional[str] = Field(None, alias="phoneNumberId")
    is_active: bool = Field(True, alias="isActive")


# ────────────────────────────────────────────
# Realtime payloads
# ────────────────────────────────────────────

class StatusUpdateEvent(_Schema):
    """``message-status-update`` payload"""
    message_id: Optional[str] = Field(None, alias="messageId")
    status: MessageStatus
    timestamp: Optional[str] = None
    customer_wa_id: Optional[str] = Field(None, alias="customerWaId")
    whats_app_number_id: Optional[str] = Field(None, alias="whatsAppNumberId")


class TypingEvent(_Schema):
    """``customer-typing`` payload"""
    customer_wa_id: str = Field(..., alias="customerWaId")
    whats_app_number_id: str = Field(..., alias="whatsAppNumberId")
    typing: bool


class RoomPayload(_Schema):
    """Payload of join/leave-conversation"""
    user_id: str = Field(..., alias="userId")
    customer_wa_id: str = Field(..., alias="customerWaId")
    whats_app_number_id: str = Field(..., alias="whatsAppNumberId")


# ────────────────────────────────────────────
# Requests
# ────────────────────────────────────────────

class SendManualRequest(_Schema):
    """Body of POST /messages/send-manual"""
    whats_app_number_id: str = Field(..., alias="whatsAppNumberId")
    customer_wa_id: str = Field(..., alias="customerWaId")
    message: str = Field(..., min_length=1, max_length=4096)

    @field_validator("message")
    @classmethod
    def validate_message(cls, v):
        """Reject whitespace-only text"""
        if not v.strip():
            raise ValueError("Message text must not be blank")
        return v.strip()
