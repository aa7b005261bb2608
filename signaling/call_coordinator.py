from __future__ import annotations

import asyncio
import logging
import time
from typing import Dict, Optional

from shared.protocol import (
    AnswerCallEvent,
    CallAnswered,
    CallConnected,
    CallEnded,
    CallError,
    CallInitiated,
    CallRejected,
    CallRequestEvent,
    EndCallEvent,
    GetUsersEvent,
    IceCandidateEvent,
    IceCandidateRelay,
    IncomingCall,
    InboundEvent,
    Registered,
    RegisterEvent,
    RejectCallEvent,
    UserStatus,
)

from .presence import OutboundSink, PresenceBroadcaster
from .user_registry import UserRecord, UserRegistry

logger = logging.getLogger(__name__)

EVENT_LOG_LIMIT = 1000

USER_NOT_FOUND = "User not found"
USER_BUSY = "User is busy"
CALLER_NOT_FOUND = "Caller not found"
NOT_REGISTERED = "Not registered"
ALREADY_IN_CALL = "Already in a call"
SELF_CALL = "Cannot call yourself"


class CallCoordinator:
    """Call-state machine arbitrating signaling between registered users.

    Every handler runs entirely under one lock, so a status check and the
    status writes that depend on it are never interleaved with another
    event. Outbound messages are only enqueued on the sink while the lock is
    held.
    """

    def __init__(self, registry: UserRegistry, sink: OutboundSink) -> None:
        self._registry = registry
        self._sink = sink
        self._presence = PresenceBroadcaster(registry, sink)
        self._lock = asyncio.Lock()
        self._event_log: list[dict] = []

    async def handle(self, connection_id: str, event: InboundEvent) -> None:
        if isinstance(event, RegisterEvent):
            await self.register(connection_id, event)
        elif isinstance(event, CallRequestEvent):
            await self.call_request(connection_id, event)
        elif isinstance(event, AnswerCallEvent):
            await self.answer_call(connection_id, event)
        elif isinstance(event, IceCandidateEvent):
            await self.ice_candidate(connection_id, event)
        elif isinstance(event, RejectCallEvent):
            await self.reject_call(connection_id, event)
        elif isinstance(event, EndCallEvent):
            await self.end_call(connection_id, event)
        elif isinstance(event, GetUsersEvent):
            await self.get_users(connection_id)
        else:  # pragma: no cover - exhaustive over InboundEvent
            raise TypeError(f"Unsupported event {event!r}")

    async def register(self, connection_id: str, event: RegisterEvent) -> UserRecord:
        async with self._lock:
            record = self._registry.register(connection_id, event.identity, event.display_name)
            logger.info("User registered: %s (%s)", record.display_name, record.identity)
            self._record_event(
                "user_registered",
                {
                    "connection_id": connection_id,
                    "phone_number": record.identity,
                    "user_name": record.display_name,
                },
            )
            self._sink.send_to(connection_id, Registered(user_id=connection_id))
            self._presence.broadcast_user_list()
            return record

    async def call_request(self, connection_id: str, event: CallRequestEvent) -> bool:
        async with self._lock:
            caller = self._registry.lookup_by_connection(connection_id)
            if caller is None:
                self._reject(connection_id, NOT_REGISTERED)
                return False
            if caller.status is not UserStatus.AVAILABLE:
                self._reject(connection_id, ALREADY_IN_CALL, status=caller.status.value)
                return False
            target = self._registry.lookup_by_identity(event.target_identity)
            if target is None:
                self._reject(connection_id, USER_NOT_FOUND, target_phone_number=event.target_identity)
                return False
            if target.connection_id == caller.connection_id:
                self._reject(connection_id, SELF_CALL)
                return False
            if target.status is not UserStatus.AVAILABLE:
                self._reject(connection_id, USER_BUSY, target_phone_number=event.target_identity)
                return False

            self._registry.set_status(caller.connection_id, UserStatus.CALLING)
            self._registry.set_status(target.connection_id, UserStatus.RINGING)
            logger.info("%s is calling %s", caller.display_name, target.display_name)
            self._record_event(
                "call_requested",
                {
                    "caller_id": caller.connection_id,
                    "target_id": target.connection_id,
                },
            )
            self._sink.send_to(
                target.connection_id,
                IncomingCall(
                    caller_name=caller.display_name,
                    caller_identity=caller.identity,
                    caller_id=caller.connection_id,
                    offer=event.offer,
                ),
            )
            self._sink.send_to(
                connection_id,
                CallInitiated(target_name=target.display_name, target_id=target.connection_id),
            )
            self._presence.broadcast_user_list()
            return True

    async def answer_call(self, connection_id: str, event: AnswerCallEvent) -> bool:
        async with self._lock:
            answerer = self._registry.lookup_by_connection(connection_id)
            if answerer is None:
                self._reject(connection_id, NOT_REGISTERED)
                return False
            caller = self._registry.lookup_by_connection(event.caller_id)
            if caller is None:
                self._reject(connection_id, CALLER_NOT_FOUND, caller_id=event.caller_id)
                return False

            self._registry.set_status(answerer.connection_id, UserStatus.IN_CALL)
            self._registry.set_status(caller.connection_id, UserStatus.IN_CALL)
            logger.info("%s answered %s", answerer.display_name, caller.display_name)
            self._record_event(
                "call_answered",
                {
                    "caller_id": caller.connection_id,
                    "answerer_id": answerer.connection_id,
                },
            )
            self._sink.send_to(
                caller.connection_id,
                CallAnswered(answer=event.answer, answerer_name=answerer.display_name),
            )
            self._sink.send_to(connection_id, CallConnected(caller_name=caller.display_name))
            self._presence.broadcast_user_list()
            return True

    async def ice_candidate(self, connection_id: str, event: IceCandidateEvent) -> None:
        async with self._lock:
            if event.target_id not in self._registry:
                logger.debug("Dropping ICE candidate from %s for unknown %s", connection_id, event.target_id)
                return
            self._sink.send_to(
                event.target_id,
                IceCandidateRelay(candidate=event.candidate, sender_id=connection_id),
            )

    async def reject_call(self, connection_id: str, event: RejectCallEvent) -> None:
        async with self._lock:
            rejecter = self._registry.lookup_by_connection(connection_id)
            self._registry.set_status(connection_id, UserStatus.AVAILABLE)
            caller = self._registry.lookup_by_connection(event.caller_id)
            if caller is not None:
                self._registry.set_status(caller.connection_id, UserStatus.AVAILABLE)
                name = rejecter.display_name if rejecter is not None else "The other party"
                self._sink.send_to(caller.connection_id, CallRejected(message=f"{name} rejected your call"))
            logger.info("Call from %s rejected by %s", event.caller_id, connection_id)
            self._record_event(
                "call_rejected",
                {
                    "caller_id": event.caller_id,
                    "rejecter_id": connection_id,
                    "caller_present": caller is not None,
                },
            )
            self._presence.broadcast_user_list()

    async def end_call(self, connection_id: str, event: EndCallEvent) -> None:
        async with self._lock:
            self._registry.set_status(connection_id, UserStatus.AVAILABLE)
            target: Optional[UserRecord] = None
            if event.target_id is not None:
                target = self._registry.lookup_by_connection(event.target_id)
            if target is not None:
                self._registry.set_status(target.connection_id, UserStatus.AVAILABLE)
                self._sink.send_to(target.connection_id, CallEnded())
            logger.info("Call ended by %s (peer=%s)", connection_id, event.target_id)
            self._record_event(
                "call_ended",
                {
                    "ended_by": connection_id,
                    "target_id": event.target_id,
                    "target_present": target is not None,
                },
            )
            self._presence.broadcast_user_list()

    async def get_users(self, connection_id: str) -> None:
        async with self._lock:
            self._presence.send_user_list(connection_id)

    async def disconnect(self, connection_id: str) -> Optional[UserRecord]:
        """Forget the user behind a closed connection.

        A peer that was in a call with them keeps its status until it ends or
        rejects the call itself.
        """

        async with self._lock:
            record = self._registry.remove(connection_id)
            if record is not None:
                logger.info("User disconnected: %s", record.display_name)
                self._record_event(
                    "user_disconnected",
                    {
                        "connection_id": connection_id,
                        "user_name": record.display_name,
                        "status": record.status.value,
                    },
                )
            self._presence.broadcast_user_list()
            return record

    async def snapshot(self) -> list[UserRecord]:
        async with self._lock:
            return self._registry.snapshot()

    async def user_count(self) -> int:
        async with self._lock:
            return len(self._registry)

    async def recent_events(self, limit: int = 300) -> list[dict]:
        async with self._lock:
            if limit <= 0:
                return []
            return list(self._event_log[-limit:])

    def _reject(self, connection_id: str, message: str, **details: object) -> None:
        logger.info("Call error for %s: %s", connection_id, message)
        event_details: Dict[str, object] = {"connection_id": connection_id, "reason": message}
        event_details.update(details)
        self._record_event("call_failed", event_details)
        self._sink.send_to(connection_id, CallError(message=message))

    def _record_event(self, event_type: str, details: Dict[str, object]) -> None:
        event = {
            "type": event_type,
            "timestamp": time.time(),
            "details": details,
        }
        self._event_log.append(event)
        if len(self._event_log) > EVENT_LOG_LIMIT:
            self._event_log.pop(0)
