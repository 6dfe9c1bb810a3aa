import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from jobchat.auth import Identity
from jobchat.errors import ConversationNotStarted, Unauthorized
from jobchat.models import ChatMessage, as_utc, utcnow
from jobchat.services.conversation_access import require_room
from jobchat.services.read_tracker import mark_read

logger = logging.getLogger(__name__)

HISTORY_ORDER = (ChatMessage.created_at.asc(), ChatMessage.id.asc())


async def latest_message(session: AsyncSession, room_id: int) -> Optional[ChatMessage]:
    result = await session.execute(
        select(ChatMessage)
        .where(ChatMessage.chat_room_id == room_id)
        .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def has_message_from(session: AsyncSession, room_id: int, sender_id: int) -> bool:
    result = await session.execute(
        select(ChatMessage.id)
        .where(ChatMessage.chat_room_id == room_id, ChatMessage.sender_id == sender_id)
        .limit(1)
    )
    return result.first() is not None


async def send_message(
    session: AsyncSession,
    identity: Optional[Identity],
    room_id: int,
    content: str,
) -> ChatMessage:
    if identity is None:
        raise Unauthorized("Authentication required")

    room = await require_room(session, room_id)

    if not room.has_member(identity.user_id):
        logger.info("User %s tried to post into room %s", identity.user_id, room_id)
        raise Unauthorized("Sender is not part of this chat room")

    # Candidates may only reply once the recruiter has opened the conversation.
    if identity.is_candidate and not await has_message_from(session, room_id, room.recruiter_id):
        raise ConversationNotStarted(
            "Candidate cannot reply until recruiter sends the first message"
        )

    created_at = utcnow()
    previous = await latest_message(session, room_id)
    if previous is not None and as_utc(previous.created_at) > created_at:
        created_at = as_utc(previous.created_at)

    msg = ChatMessage(
        chat_room_id=room_id,
        sender_id=identity.user_id,
        content=content,
        is_read=False,
        created_at=created_at,
    )
    session.add(msg)
    await session.commit()

    logger.info("Message %s saved in room %s by user %s", msg.id, room_id, identity.user_id)
    return msg


async def list_messages(session: AsyncSession, room_id: int) -> List[ChatMessage]:
    result = await session.execute(
        select(ChatMessage)
        .where(ChatMessage.chat_room_id == room_id)
        .order_by(*HISTORY_ORDER)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def get_history(
    session: AsyncSession,
    identity: Optional[Identity],
    room_id: int,
) -> List[ChatMessage]:
    """Messages oldest first. Opening the history counts as reading it."""
    # mark_read enforces membership.
    await mark_read(session, identity, room_id)
    return await list_messages(session, room_id)
