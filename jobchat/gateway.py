"""
WebSocket gateway: one long-lived connection carries many subscriptions and
sends.

The caller is authenticated once, when the socket is opened, and the result is
kept in an immutable ConnectionSession owned by the coroutine serving that
socket. Every frame handler receives the identity as an explicit argument;
there is no "current user" stored anywhere that another connection or a later
frame could observe.
"""

import logging
import re
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from jobchat.auth import Identity, extract_token, verify_token
from jobchat.broker import ChannelBroker, room_channel
from jobchat.errors import BadRequest, ChatError, InvalidCredentials, Unauthorized
from jobchat.schemas import MAX_ID, ChatMessageIn, ChatMessageOut, ClientFrame, dump
from jobchat.services.conversation_access import validate_conversation_access
from jobchat.services.messages import send_message

logger = logging.getLogger(__name__)

SEND_DESTINATION = "chat"
ROOM_DESTINATION = re.compile(r"^room/(\d{1,19})$")
USER_DESTINATION = re.compile(r"^user/(\d{1,19})/notifications$")


@dataclass(frozen=True)
class ConnectionSession:
    connection_id: str
    identity: Optional[Identity] = None


@dataclass
class Connection:
    session: ConnectionSession
    send: Callable[[Any], Awaitable[None]]

    @property
    def connection_id(self) -> str:
        return self.session.connection_id


class ConnectionAuthenticator:
    """Resolve the caller once per connection. Never rejects the socket."""

    def __init__(self, secret_key: str = None, algorithm: str = None):
        self.secret_key = secret_key
        self.algorithm = algorithm

    def authenticate(
        self,
        headers: Mapping[str, str],
        query_params: Mapping[str, str],
        connection_id: str = None,
    ) -> ConnectionSession:
        connection_id = connection_id or uuid.uuid4().hex
        token = extract_token(headers, query_params)

        if token is None:
            return ConnectionSession(connection_id=connection_id)

        try:
            identity = verify_token(token, self.secret_key, self.algorithm)
        except InvalidCredentials as exc:
            logger.warning("Connection %s continues anonymously: %s", connection_id, exc.message)
            return ConnectionSession(connection_id=connection_id)

        return ConnectionSession(connection_id=connection_id, identity=identity)


class DestinationAuthorizer:
    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def authorize(self, identity: Optional[Identity], destination: str) -> None:
        room_match = ROOM_DESTINATION.match(destination)
        if room_match:
            await self._authorize_room(identity, _parse_id(room_match.group(1), destination))
            return

        user_match = USER_DESTINATION.match(destination)
        if user_match:
            self._authorize_user(identity, _parse_id(user_match.group(1), destination))
            return

        if destination.startswith(("room/", "user/")):
            raise BadRequest(f"Malformed destination: {destination}")

    async def _authorize_room(self, identity: Optional[Identity], room_id: int) -> None:
        if identity is None:
            raise Unauthorized("Authentication required")

        async with self.session_factory() as session:
            allowed = await validate_conversation_access(session, room_id, identity.user_id)

        if not allowed:
            logger.info("Denied user %s on room/%s", identity.user_id, room_id)
            raise Unauthorized("You are not a member of this chat room")

    @staticmethod
    def _authorize_user(identity: Optional[Identity], user_id: int) -> None:
        if identity is None:
            raise Unauthorized("Authentication required")
        if identity.user_id != user_id:
            logger.info("Denied user %s on notifications of user %s", identity.user_id, user_id)
            raise Unauthorized("You can only subscribe to your own notifications")


class ChatGateway:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        broker: ChannelBroker,
        authenticator: ConnectionAuthenticator,
        authorizer: DestinationAuthorizer,
    ):
        self.session_factory = session_factory
        self.broker = broker
        self.authenticator = authenticator
        self.authorizer = authorizer
        self.handlers: Dict[str, Callable[..., Awaitable[None]]] = {
            "SUBSCRIBE": self.handle_subscribe,
            "UNSUBSCRIBE": self.handle_unsubscribe,
            "SEND": self.handle_send,
        }

    async def serve(self, websocket: WebSocket):
        session = self.authenticator.authenticate(websocket.headers, websocket.query_params)
        await websocket.accept()

        connection = Connection(session=session, send=websocket.send_json)
        user_id = session.identity.user_id if session.identity else None
        logger.info("Connection %s opened for user %s", session.connection_id, user_id)

        try:
            await connection.send({"type": "CONNECTED", "userId": user_id})
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(message.get("code", 1000))

                raw = message.get("text")
                if raw is None:
                    await self._send_error(connection, BadRequest("Only text frames are supported"))
                    continue
                await self.dispatch(connection, raw)
        except WebSocketDisconnect:
            logger.info("Connection %s closed", session.connection_id)
        finally:
            self.broker.disconnect(session.connection_id)

    async def dispatch(self, connection: Connection, raw: str):
        try:
            frame = ClientFrame.model_validate_json(raw)
        except ValidationError:
            await self._send_error(connection, BadRequest("Malformed frame"))
            return

        handler = self.handlers.get(frame.command.upper())
        if handler is None:
            await self._send_error(connection, BadRequest(f"Unsupported command: {frame.command}"), frame.id)
            return

        try:
            await handler(connection.session.identity, frame, connection)
        except ChatError as exc:
            await self._send_error(connection, exc, frame.id)
        except ValidationError as exc:
            await self._send_error(connection, BadRequest(_first_error(exc)), frame.id)
        except SQLAlchemyError:
            logger.exception("Database error while handling %s on %s", frame.command, connection.connection_id)
            await connection.send(
                {"type": "ERROR", "kind": "InternalError", "message": "Internal error", "receiptId": frame.id}
            )
        else:
            if frame.id:
                await connection.send({"type": "RECEIPT", "receiptId": frame.id})

    async def handle_subscribe(self, identity: Optional[Identity], frame: ClientFrame, connection: Connection):
        if not frame.destination or not frame.id:
            raise BadRequest("SUBSCRIBE needs a destination and an id")

        await self.authorizer.authorize(identity, frame.destination)
        self.broker.subscribe(frame.destination, connection.connection_id, frame.id, connection.send)

    async def handle_unsubscribe(self, identity: Optional[Identity], frame: ClientFrame, connection: Connection):
        if not frame.id:
            raise BadRequest("UNSUBSCRIBE needs an id")
        self.broker.unsubscribe(connection.connection_id, frame.id)

    async def handle_send(self, identity: Optional[Identity], frame: ClientFrame, connection: Connection):
        destination = frame.destination or SEND_DESTINATION
        await self.authorizer.authorize(identity, destination)
        if destination != SEND_DESTINATION:
            raise BadRequest(f"Messages can only be sent to '{SEND_DESTINATION}'")

        if identity is None:
            raise Unauthorized("Authentication required")

        payload = ChatMessageIn.model_validate(frame.body or {})
        async with self.session_factory() as session:
            message = await send_message(session, identity, payload.chat_room_id, payload.content)

        await self.broker.publish(room_channel(message.chat_room_id), dump(ChatMessageOut.from_message(message)))

    @staticmethod
    async def _send_error(connection: Connection, exc: ChatError, receipt_id: Optional[str] = None):
        await connection.send(
            {"type": "ERROR", "kind": exc.kind, "message": exc.message, "receiptId": receipt_id}
        )


def _parse_id(raw: str, destination: str) -> int:
    value = int(raw)
    if not 1 <= value <= MAX_ID:
        raise BadRequest(f"Malformed destination: {destination}")
    return value


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid payload"
    first = errors[0]
    field = ".".join(str(part) for part in first.get("loc", ()))
    return f"{field}: {first.get('msg')}" if field else first.get("msg", "Invalid payload")
