"""
In-process pub/sub for WebSocket connections.

Delivery is best-effort and at-most-once to whoever is subscribed at publish
time. Nothing is queued or replayed; clients that were offline catch up
through the history endpoints.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Tuple

logger = logging.getLogger(__name__)

SendJson = Callable[[Any], Awaitable[None]]
SubscriptionKey = Tuple[str, str]  # (connection_id, subscription_id)


def room_channel(room_id: int) -> str:
    return f"room/{room_id}"


def notification_channel(user_id: int) -> str:
    return f"user/{user_id}/notifications"


class ChannelBroker:
    def __init__(self):
        self.channels: Dict[str, Dict[SubscriptionKey, SendJson]] = {}
        self._by_key: Dict[SubscriptionKey, str] = {}

    def subscribe(self, channel: str, connection_id: str, subscription_id: str, send: SendJson):
        key = (connection_id, subscription_id)
        if key in self._by_key:
            self.unsubscribe(connection_id, subscription_id)
        self.channels.setdefault(channel, {})[key] = send
        self._by_key[key] = channel
        logger.debug("Connection %s subscribed to %s as %s", connection_id, channel, subscription_id)

    def unsubscribe(self, connection_id: str, subscription_id: str) -> bool:
        key = (connection_id, subscription_id)
        channel = self._by_key.pop(key, None)
        if channel is None:
            return False

        subscribers = self.channels.get(channel, {})
        subscribers.pop(key, None)
        if not subscribers:
            self.channels.pop(channel, None)
        return True

    def disconnect(self, connection_id: str):
        for conn_id, subscription_id in [key for key in self._by_key if key[0] == connection_id]:
            self.unsubscribe(conn_id, subscription_id)

    def subscriber_count(self, channel: str) -> int:
        return len(self.channels.get(channel, {}))

    async def publish(self, channel: str, body: Any) -> int:
        """Send body to every current subscriber of channel; return deliveries."""
        delivered = 0
        for (connection_id, subscription_id), send in list(self.channels.get(channel, {}).items()):
            frame = {
                "type": "MESSAGE",
                "destination": channel,
                "subscription": subscription_id,
                "body": body,
            }
            try:
                await send(frame)
            except Exception as exc:
                # The socket is gone or broken; stop delivering to it.
                logger.warning(
                    "Dropping connection %s from %s after failed send: %s",
                    connection_id,
                    channel,
                    exc,
                )
                self.disconnect(connection_id)
            else:
                delivered += 1
        return delivered
