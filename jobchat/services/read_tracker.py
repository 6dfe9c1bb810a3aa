import logging

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from jobchat.auth import Identity
from jobchat.models import ChatMessage, ChatRoom
from jobchat.services.conversation_access import require_room_member

logger = logging.getLogger(__name__)


async def mark_read(session: AsyncSession, identity: Identity, room_id: int) -> int:
    """Mark every counterpart message in the room as read.

    A single UPDATE statement, so a message inserted concurrently is either
    fully inside or fully outside the batch.
    """
    await require_room_member(session, room_id, identity)

    result = await session.execute(
        update(ChatMessage)
        .where(
            ChatMessage.chat_room_id == room_id,
            ChatMessage.sender_id != identity.user_id,
            ChatMessage.is_read.is_(False),
        )
        .values(is_read=True)
        .execution_options(synchronize_session=False)
    )
    await session.commit()

    updated = result.rowcount or 0
    if updated:
        logger.debug("User %s read %s message(s) in room %s", identity.user_id, updated, room_id)
    return updated


async def count_room_unread(session: AsyncSession, room_id: int, viewer_id: int) -> int:
    result = await session.execute(
        select(func.count(ChatMessage.id)).where(
            ChatMessage.chat_room_id == room_id,
            ChatMessage.sender_id != viewer_id,
            ChatMessage.is_read.is_(False),
        )
    )
    return result.scalar_one()


async def count_unread(session: AsyncSession, identity: Identity) -> int:
    viewer_id = identity.user_id
    result = await session.execute(
        select(func.count(ChatMessage.id))
        .join(ChatRoom, ChatRoom.id == ChatMessage.chat_room_id)
        .where(
            or_(ChatRoom.recruiter_id == viewer_id, ChatRoom.candidate_id == viewer_id),
            ChatMessage.sender_id != viewer_id,
            ChatMessage.is_read.is_(False),
        )
    )
    return result.scalar_one()
