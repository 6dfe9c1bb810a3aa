import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, Path, Request, Response, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from jobchat import config
from jobchat import models  # noqa: F401  registers tables on Base.metadata
from jobchat.auth import Identity, extract_token, verify_token
from jobchat.broker import ChannelBroker, notification_channel
from jobchat.database import AsyncSessionLocal, build_engine, build_session_factory, create_tables, engine
from jobchat.errors import ChatError, Unauthenticated
from jobchat.gateway import ChatGateway, ConnectionAuthenticator, DestinationAuthorizer
from jobchat.schemas import (
    MAX_ID,
    ChatMessageOut,
    ChatRoomSummary,
    InitiateChatRequest,
    UnreadCount,
    dump,
)
from jobchat.services import messages, read_tracker, rooms

logger = logging.getLogger(__name__)


def create_app(
    database_url: Optional[str] = None,
    secret_key: Optional[str] = None,
    algorithm: Optional[str] = None,
    cors_origins: Optional[List[str]] = None,
) -> FastAPI:
    if database_url:
        app_engine = build_engine(database_url)
        session_factory = build_session_factory(app_engine)
    else:
        app_engine = engine
        session_factory = AsyncSessionLocal

    secret_key = secret_key or config.SECRET_KEY
    algorithm = algorithm or config.ALGORITHM

    broker = ChannelBroker()
    gateway = ChatGateway(
        session_factory=session_factory,
        broker=broker,
        authenticator=ConnectionAuthenticator(secret_key, algorithm),
        authorizer=DestinationAuthorizer(session_factory),
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        await create_tables(app_engine)
        logger.info("Chat service ready")
        yield
        await app_engine.dispose()

    app = FastAPI(title="jobchat", lifespan=lifespan)
    app.state.session_factory = session_factory
    app.state.broker = broker
    app.state.gateway = gateway

    # ---------------- CORS ----------------
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins if cors_origins is not None else config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ---------------- DEPENDENCIES ----------------
    async def get_session():
        async with session_factory() as session:
            yield session

    def get_identity(request: Request) -> Identity:
        token = extract_token(request.headers, request.query_params)
        if token is None:
            raise Unauthenticated("Authentication required")
        return verify_token(token, secret_key, algorithm)

    # ---------------- ERRORS ----------------
    @app.exception_handler(ChatError)
    async def chat_error_handler(request: Request, exc: ChatError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(SQLAlchemyError)
    async def database_error_handler(request: Request, exc: SQLAlchemyError):
        logger.exception("Database error on %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={"error": "InternalError", "message": "An unexpected error occurred"},
        )

    # ---------------- ROOT ----------------
    @app.get("/health")
    def health():
        return {"status": "ok", "service": "jobchat"}

    # ---------------- CHAT ROOMS ----------------
    @app.post("/chat/initiate", response_model=ChatRoomSummary)
    async def initiate_chat(
        payload: InitiateChatRequest,
        identity: Identity = Depends(get_identity),
        session: AsyncSession = Depends(get_session),
    ):
        room = await rooms.initiate_room(session, identity, payload.candidate_id)

        # The candidate sees the room from their side, unread count included.
        candidate_view = await rooms.build_room_summary(session, room, room.candidate_id)
        await broker.publish(notification_channel(room.candidate_id), dump(candidate_view))

        return await rooms.build_room_summary(session, room, identity.user_id)

    @app.get("/chat/rooms", response_model=List[ChatRoomSummary])
    async def get_my_chat_rooms(
        identity: Identity = Depends(get_identity),
        session: AsyncSession = Depends(get_session),
    ):
        return [
            await rooms.build_room_summary(session, room, identity.user_id)
            for room in await rooms.list_rooms(session, identity)
        ]

    @app.get("/chat/rooms/{room_id}/history", response_model=List[ChatMessageOut])
    async def get_chat_history(
        room_id: int = Path(..., ge=1, le=MAX_ID),
        identity: Identity = Depends(get_identity),
        session: AsyncSession = Depends(get_session),
    ):
        history = await messages.get_history(session, identity, room_id)
        return [ChatMessageOut.from_message(m) for m in history]

    @app.post("/chat/rooms/{room_id}/read", status_code=204)
    async def mark_as_read(
        room_id: int = Path(..., ge=1, le=MAX_ID),
        identity: Identity = Depends(get_identity),
        session: AsyncSession = Depends(get_session),
    ):
        await read_tracker.mark_read(session, identity, room_id)
        return Response(status_code=204)

    @app.get("/chat/unread-count", response_model=UnreadCount)
    async def get_unread_count(
        identity: Identity = Depends(get_identity),
        session: AsyncSession = Depends(get_session),
    ):
        return UnreadCount(count=await read_tracker.count_unread(session, identity))

    # ---------------- WEBSOCKET CHAT ----------------
    @app.websocket("/ws")
    async def websocket_chat(websocket: WebSocket):
        await gateway.serve(websocket)

    return app


app = create_app()
