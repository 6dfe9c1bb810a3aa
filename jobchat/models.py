import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import expression, func

from jobchat.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands timestamps back naive; treat those as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Role(str, enum.Enum):
    CANDIDATE = "CANDIDATE"
    RECRUITER = "RECRUITER"
    ADMIN = "ADMIN"


class User(Base):
    """Portal account. Rows are owned by the portal's user service."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    email = Column(String(255), unique=True, nullable=False)
    first_name = Column(String(100))
    last_name = Column(String(100))
    role = Column(Enum(Role, name="user_role"), nullable=False)

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)


class ChatRoom(Base):
    __tablename__ = "chat_rooms"
    __table_args__ = (
        # One room per recruiter/candidate pair, enforced by the database so
        # racing initiates from separate workers cannot both insert.
        UniqueConstraint("recruiter_id", "candidate_id", name="uq_chat_rooms_pair"),
        CheckConstraint("recruiter_id <> candidate_id", name="ck_chat_rooms_distinct"),
    )

    id = Column(Integer, primary_key=True)
    recruiter_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    candidate_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )

    recruiter = relationship("User", foreign_keys=[recruiter_id], lazy="raise")
    candidate = relationship("User", foreign_keys=[candidate_id], lazy="raise")

    def has_member(self, user_id: int) -> bool:
        return user_id in (self.recruiter_id, self.candidate_id)


class ChatMessage(Base):
    __tablename__ = "chat_messages"
    __table_args__ = (
        Index("ix_chat_messages_room_order", "chat_room_id", "created_at", "id"),
        Index("ix_chat_messages_room_unread", "chat_room_id", "is_read"),
    )

    # Auto-increment id doubles as the append sequence inside a room.
    id = Column(Integer, primary_key=True, autoincrement=True)
    chat_room_id = Column(Integer, ForeignKey("chat_rooms.id"), nullable=False)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    content = Column(Text, nullable=False)
    is_read = Column(Boolean, nullable=False, default=False, server_default=expression.false())
    created_at = Column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )
