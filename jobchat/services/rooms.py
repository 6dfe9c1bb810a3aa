import logging
from typing import List, Optional

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from jobchat.auth import Identity
from jobchat.errors import Forbidden, NotFound
from jobchat.models import ChatRoom, Role, User
from jobchat.schemas import ChatRoomSummary
from jobchat.services.messages import latest_message
from jobchat.services.read_tracker import count_room_unread

logger = logging.getLogger(__name__)


def _with_members(stmt):
    return stmt.options(joinedload(ChatRoom.recruiter), joinedload(ChatRoom.candidate))


async def _find_room(session: AsyncSession, recruiter_id: int, candidate_id: int) -> Optional[ChatRoom]:
    result = await session.execute(
        _with_members(select(ChatRoom)).where(
            ChatRoom.recruiter_id == recruiter_id,
            ChatRoom.candidate_id == candidate_id,
        )
    )
    return result.scalar_one_or_none()


async def initiate_room(session: AsyncSession, identity: Identity, candidate_id: int) -> ChatRoom:
    """Get or create the room between the calling recruiter and a candidate."""
    if not identity.is_recruiter:
        raise Forbidden("Only recruiters can initiate chat")

    if await session.get(User, identity.user_id) is None:
        raise NotFound("User not found")

    candidate = await session.get(User, candidate_id)
    if candidate is None or candidate.role != Role.CANDIDATE:
        raise NotFound("Candidate not found")

    room = await _find_room(session, identity.user_id, candidate_id)
    if room is not None:
        return room

    session.add(ChatRoom(recruiter_id=identity.user_id, candidate_id=candidate_id))
    try:
        await session.commit()
    except IntegrityError:
        # Another connection created the same pair first; use its room.
        await session.rollback()
        logger.info(
            "Room for recruiter %s and candidate %s was created concurrently",
            identity.user_id,
            candidate_id,
        )
    else:
        logger.info("Created chat room for recruiter %s and candidate %s", identity.user_id, candidate_id)

    room = await _find_room(session, identity.user_id, candidate_id)
    if room is None:
        raise NotFound("Chat room not found")
    return room


async def list_rooms(session: AsyncSession, identity: Identity) -> List[ChatRoom]:
    result = await session.execute(
        _with_members(select(ChatRoom))
        .where(
            or_(
                ChatRoom.recruiter_id == identity.user_id,
                ChatRoom.candidate_id == identity.user_id,
            )
        )
        .order_by(ChatRoom.id)
    )
    return list(result.scalars().all())


async def build_room_summary(session: AsyncSession, room: ChatRoom, viewer_id: int) -> ChatRoomSummary:
    summary = ChatRoomSummary(
        id=room.id,
        recruiter_id=room.recruiter_id,
        recruiter_name=room.recruiter.full_name,
        candidate_id=room.candidate_id,
        candidate_name=room.candidate.full_name,
        unread_count=await count_room_unread(session, room.id, viewer_id),
    )

    last = await latest_message(session, room.id)
    if last is not None:
        summary.last_message = last.content
        summary.last_message_timestamp = last.created_at

    return summary
