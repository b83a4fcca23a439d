"""A pool of websocket clients that rebroadcasts every message to all of them."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from typing import Any, Protocol

from tribeserver.helpers import get_random_token

logger = logging.getLogger(__name__)

PRODUCTION_HOST = "https://people.sphinx.chat"
ALLOWED_ORIGIN_HOSTS = frozenset(
    {"people.sphinx.chat", "people-test.sphinx.chat", "community.sphinx.chat"}
)
TOKEN_LENGTH = 40


class _Connection(Protocol):
    def receive(self) -> tuple[int, bytes | str]: ...

    def send_json(self, obj: Any) -> None: ...

    def close(self) -> None: ...


class _Store(Protocol):
    def save(self, host: str, conn: _Connection) -> None: ...

    def delete(self, host: str) -> None: ...


@dataclass
class Message:
    """A message exchanged with websocket clients."""

    type: int = 0
    msg: str = ""
    body: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "msg": self.msg, "body": self.body}


@dataclass(eq=False)
class Client:
    """One connected websocket, identified by a random host token."""

    host: str
    conn: _Connection
    pool: Pool

    def read(self) -> None:
        """Broadcast incoming messages until the connection fails, then leave the pool."""
        try:
            while True:
                try:
                    message_type, data = self.conn.receive()
                except Exception as exc:  # connection closed or broken
                    logger.info("websocket read ended: %s", exc)
                    return
                text = data.decode("utf-8", errors="replace") if isinstance(data, bytes) else data
                try:
                    json.loads(text)
                except ValueError as exc:
                    logger.warning("message decode error: %s %s", exc, text)
                self.pool.broadcast(Message(type=message_type, body=text))
        finally:
            self.pool.unregister(self)
            self.conn.close()
            if self.pool.store is not None:
                self.pool.store.delete(self.host)


class Pool:
    """The set of connected clients, keyed by host token."""

    def __init__(self, store: _Store | None = None) -> None:
        self.clients: dict[str, Client] = {}
        self.store = store
        self._lock = threading.Lock()

    def register(self, client: Client) -> bool:
        """Add a client and greet it; returns False when the store refuses it."""
        with self._lock:
            self.clients[client.host] = client
            logger.info("websocket pool size: %d", len(self.clients))
        if self.store is not None:
            try:
                self.store.save(client.host, client.conn)
            except Exception as exc:
                logger.error("websocket pool client save error: %s", exc)
                return False
        self._send(client, Message(type=1, msg="user_connect", body=client.host))
        return True

    def unregister(self, client: Client) -> None:
        """Say goodbye to a client and remove it from the pool."""
        with self._lock:
            known = self.clients.pop(client.host, None)
            logger.info("websocket pool size: %d", len(self.clients))
        if known is not None:
            self._send(known, Message(type=1, body="User Disconnected..."))

    def broadcast(self, message: Message) -> int:
        """Send a message to every client; stops at the first failed send.

        Returns the number of clients the message reached.
        """
        with self._lock:
            clients = list(self.clients.values())
        delivered = 0
        for client in clients:
            try:
                client.conn.send_json(message.to_dict())
            except Exception as exc:
                logger.error("websocket broadcast failed: %s", exc)
                return delivered
            delivered += 1
        return delivered

    @staticmethod
    def _send(client: Client, message: Message) -> None:
        try:
            client.conn.send_json(message.to_dict())
        except Exception as exc:
            logger.warning("websocket write failed: %s", exc)


websocket_pool = Pool()


def check_origin(config_host: str, request_host: str) -> bool:
    """Whether a websocket upgrade from request_host is allowed."""
    if config_host == PRODUCTION_HOST:
        return request_host in ALLOWED_ORIGIN_HOSTS
    return True


def serve_ws(pool: Pool, connection: _Connection) -> Client:
    """Register an upgraded connection and read from it until it closes."""
    client = Client(host=get_random_token(TOKEN_LENGTH), conn=connection, pool=pool)
    if pool.register(client):
        client.read()
    return client