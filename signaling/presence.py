from __future__ import annotations

import logging
from typing import Protocol

from shared.protocol import OutboundMessage, UsersList

from .user_registry import UserRegistry

logger = logging.getLogger(__name__)


class OutboundSink(Protocol):
    """Where the coordinator hands outbound messages for delivery.

    Both calls only enqueue; delivery happens elsewhere.
    """

    def send_to(self, connection_id: str, message: OutboundMessage) -> None: ...

    def broadcast(self, message: OutboundMessage) -> None: ...


class PresenceBroadcaster:
    """Publishes the registry's user list to connected clients."""

    def __init__(self, registry: UserRegistry, sink: OutboundSink) -> None:
        self._registry = registry
        self._sink = sink

    def current_list(self) -> UsersList:
        return UsersList(users=[record.to_dict() for record in self._registry.snapshot()])

    def broadcast_user_list(self) -> None:
        users_list = self.current_list()
        logger.debug("Broadcasting presence for %d users", len(users_list.users))
        self._sink.broadcast(users_list)

    def send_user_list(self, connection_id: str) -> None:
        self._sink.send_to(connection_id, self.current_list())
