from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from beamchat.domain.models import Contact, Message, SessionSnapshot, User


class _IdentityForm(BaseModel):
    nickname: str = Field(default="", max_length=64)
    phone: str = Field(default="", max_length=32)

    @field_validator("nickname", "phone", mode="before")
    @classmethod
    def _strip(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value


class RegisterRequest(_IdentityForm):
    pass


class AddContactRequest(_IdentityForm):
    pass


class SendMessageRequest(BaseModel):
    text: str = Field(default="", max_length=4000)


class UserView(BaseModel):
    nickname: str
    phone: str
    registered_at: datetime

    @classmethod
    def from_user(cls, user: User) -> "UserView":
        return cls(nickname=user.nickname, phone=user.phone, registered_at=user.registered_at)


class ContactView(BaseModel):
    nickname: str
    phone: str
    added_at: datetime

    @classmethod
    def from_contact(cls, contact: Contact) -> "ContactView":
        return cls(nickname=contact.nickname, phone=contact.phone, added_at=contact.added_at)


class MessageView(BaseModel):
    id: str
    sender: str = Field(serialization_alias="from")
    recipient: str = Field(serialization_alias="to")
    text: str
    timestamp: datetime
    outgoing: bool

    @classmethod
    def from_message(cls, message: Message) -> "MessageView":
        return cls(
            id=message.id,
            sender=message.sender,
            recipient=message.recipient,
            text=message.text,
            timestamp=message.timestamp,
            outgoing=message.outgoing,
        )


class SessionResponse(BaseModel):
    view: Literal["register", "main", "chat"]
    current_user: UserView | None = None
    contacts: list[ContactView] = Field(default_factory=list)
    current_chat_contact: ContactView | None = None
    open_thread: list[MessageView] = Field(default_factory=list)

    @classmethod
    def from_snapshot(cls, snapshot: SessionSnapshot) -> "SessionResponse":
        chat = snapshot.current_chat_contact
        return cls(
            view=snapshot.view.value,
            current_user=UserView.from_user(snapshot.current_user) if snapshot.current_user else None,
            contacts=[ContactView.from_contact(contact) for contact in snapshot.contacts],
            current_chat_contact=ContactView.from_contact(chat) if chat else None,
            open_thread=(
                [MessageView.from_message(message) for message in snapshot.thread(chat.phone)]
                if chat
                else []
            ),
        )


class ThreadResponse(BaseModel):
    contact_phone: str
    messages: list[MessageView]
