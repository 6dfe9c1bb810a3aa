import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from jobchat.auth import Identity
from jobchat.errors import NotFound, Unauthorized
from jobchat.models import ChatRoom

logger = logging.getLogger(__name__)


async def get_room(session: AsyncSession, room_id: int) -> Optional[ChatRoom]:
    result = await session.execute(select(ChatRoom).where(ChatRoom.id == room_id))
    return result.scalar_one_or_none()


async def validate_conversation_access(
    session: AsyncSession,
    room_id: int,
    user_id: int,
) -> bool:
    room = await get_room(session, room_id)

    if not room:
        return False

    return room.has_member(user_id)


async def require_room(session: AsyncSession, room_id: int) -> ChatRoom:
    room = await get_room(session, room_id)
    if room is None:
        raise NotFound("Chat room not found")
    return room


async def require_room_member(
    session: AsyncSession,
    room_id: int,
    identity: Optional[Identity],
) -> ChatRoom:
    """Return the room, or fail with Unauthorized.

    A missing room and a room the caller is not part of look the same from
    outside, so room ids cannot be probed.
    """
    if identity is None:
        raise Unauthorized("Authentication required")

    room = await get_room(session, room_id)
    if room is None or not room.has_member(identity.user_id):
        logger.info("Denied user %s access to chat room %s", identity.user_id, room_id)
        raise Unauthorized("You are not a member of this chat room")
    return room
