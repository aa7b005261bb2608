"""Wire protocol shared between the signaling server and its clients.

Every WebSocket text frame carries a single JSON envelope of the form
``{"action": <event name>, "data": {...}}``. This module centralises the
event names, the typed inbound/outbound message variants and the helpers that
convert between them and the envelope, so that malformed input is rejected at
the boundary and never reaches the call coordinator.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, TypedDict, Union


class SignalAction(str, Enum):
    """Signaling events exchanged over the WebSocket."""

    # client -> server
    REGISTER = "register"
    CALL_REQUEST = "call-request"
    ANSWER_CALL = "answer-call"
    ICE_CANDIDATE = "ice-candidate"
    REJECT_CALL = "reject-call"
    END_CALL = "end-call"
    GET_USERS = "get-users"

    # server -> client
    REGISTERED = "registered"
    USERS_LIST = "users-list"
    INCOMING_CALL = "incoming-call"
    CALL_INITIATED = "call-initiated"
    CALL_ANSWERED = "call-answered"
    CALL_CONNECTED = "call-connected"
    CALL_REJECTED = "call-rejected"
    CALL_ENDED = "call-ended"
    CALL_ERROR = "call-error"


class UserStatus(str, Enum):
    """Call status of a registered user."""

    AVAILABLE = "available"
    CALLING = "calling"
    RINGING = "ringing"
    IN_CALL = "in-call"


class MalformedEventError(ValueError):
    """Raised when an inbound frame cannot be turned into a typed event."""


class SignalEnvelope(TypedDict):
    """Generic representation of a message on the wire."""

    action: str
    data: Dict[str, Any]


def _require_str(data: Dict[str, Any], action: SignalAction, key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise MalformedEventError(f"{action.value}: '{key}' must be a non-empty string")
    return value


def _require_present(data: Dict[str, Any], action: SignalAction, key: str) -> Any:
    if key not in data:
        raise MalformedEventError(f"{action.value}: missing '{key}'")
    return data[key]


# ---------------------------------------------------------------------------
# Inbound events

@dataclass(slots=True)
class RegisterEvent:
    identity: str
    display_name: str

    action: ClassVar[SignalAction] = SignalAction.REGISTER

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RegisterEvent":
        return cls(
            identity=_require_str(data, cls.action, "phoneNumber"),
            display_name=_require_str(data, cls.action, "userName"),
        )


@dataclass(slots=True)
class CallRequestEvent:
    target_identity: str
    offer: Any

    action: ClassVar[SignalAction] = SignalAction.CALL_REQUEST

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CallRequestEvent":
        return cls(
            target_identity=_require_str(data, cls.action, "targetPhoneNumber"),
            offer=_require_present(data, cls.action, "offer"),
        )


@dataclass(slots=True)
class AnswerCallEvent:
    caller_id: str
    answer: Any

    action: ClassVar[SignalAction] = SignalAction.ANSWER_CALL

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnswerCallEvent":
        return cls(
            caller_id=_require_str(data, cls.action, "callerId"),
            answer=_require_present(data, cls.action, "answer"),
        )


@dataclass(slots=True)
class IceCandidateEvent:
    target_id: str
    candidate: Any

    action: ClassVar[SignalAction] = SignalAction.ICE_CANDIDATE

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IceCandidateEvent":
        return cls(
            target_id=_require_str(data, cls.action, "targetId"),
            candidate=_require_present(data, cls.action, "candidate"),
        )


@dataclass(slots=True)
class RejectCallEvent:
    caller_id: str

    action: ClassVar[SignalAction] = SignalAction.REJECT_CALL

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RejectCallEvent":
        return cls(caller_id=_require_str(data, cls.action, "callerId"))


@dataclass(slots=True)
class EndCallEvent:
    """Hang up. Without a target only the sender's own status is reset."""

    target_id: Optional[str] = None

    action: ClassVar[SignalAction] = SignalAction.END_CALL

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EndCallEvent":
        if data.get("targetId") is None:
            return cls()
        return cls(target_id=_require_str(data, cls.action, "targetId"))


@dataclass(slots=True)
class GetUsersEvent:
    action: ClassVar[SignalAction] = SignalAction.GET_USERS

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GetUsersEvent":
        return cls()


InboundEvent = Union[
    RegisterEvent,
    CallRequestEvent,
    AnswerCallEvent,
    IceCandidateEvent,
    RejectCallEvent,
    EndCallEvent,
    GetUsersEvent,
]

_INBOUND_TYPES: Dict[SignalAction, Any] = {
    event_type.action: event_type
    for event_type in (
        RegisterEvent,
        CallRequestEvent,
        AnswerCallEvent,
        IceCandidateEvent,
        RejectCallEvent,
        EndCallEvent,
        GetUsersEvent,
    )
}


# ---------------------------------------------------------------------------
# Outbound messages

@dataclass(slots=True)
class Registered:
    user_id: str
    success: bool = True

    action: ClassVar[SignalAction] = SignalAction.REGISTERED

    def to_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "userId": self.user_id}


@dataclass(slots=True)
class UsersList:
    users: List[Dict[str, Any]]

    action: ClassVar[SignalAction] = SignalAction.USERS_LIST

    def to_dict(self) -> Dict[str, Any]:
        return {"users": self.users}


@dataclass(slots=True)
class IncomingCall:
    caller_name: str
    caller_identity: str
    caller_id: str
    offer: Any

    action: ClassVar[SignalAction] = SignalAction.INCOMING_CALL

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from": self.caller_name,
            "fromPhoneNumber": self.caller_identity,
            "fromId": self.caller_id,
            "offer": self.offer,
        }


@dataclass(slots=True)
class CallInitiated:
    target_name: str
    target_id: str

    action: ClassVar[SignalAction] = SignalAction.CALL_INITIATED

    def to_dict(self) -> Dict[str, Any]:
        return {"targetName": self.target_name, "targetId": self.target_id}


@dataclass(slots=True)
class CallAnswered:
    answer: Any
    answerer_name: str

    action: ClassVar[SignalAction] = SignalAction.CALL_ANSWERED

    def to_dict(self) -> Dict[str, Any]:
        return {"answer": self.answer, "answererName": self.answerer_name}


@dataclass(slots=True)
class CallConnected:
    caller_name: str

    action: ClassVar[SignalAction] = SignalAction.CALL_CONNECTED

    def to_dict(self) -> Dict[str, Any]:
        return {"callerName": self.caller_name}


@dataclass(slots=True)
class IceCandidateRelay:
    candidate: Any
    sender_id: str

    action: ClassVar[SignalAction] = SignalAction.ICE_CANDIDATE

    def to_dict(self) -> Dict[str, Any]:
        return {"candidate": self.candidate, "from": self.sender_id}


@dataclass(slots=True)
class CallRejected:
    message: str

    action: ClassVar[SignalAction] = SignalAction.CALL_REJECTED

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message}


@dataclass(slots=True)
class CallEnded:
    message: str = "Call ended by other party"

    action: ClassVar[SignalAction] = SignalAction.CALL_ENDED

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message}


@dataclass(slots=True)
class CallError:
    message: str

    action: ClassVar[SignalAction] = SignalAction.CALL_ERROR

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message}


OutboundMessage = Union[
    Registered,
    UsersList,
    IncomingCall,
    CallInitiated,
    CallAnswered,
    CallConnected,
    IceCandidateRelay,
    CallRejected,
    CallEnded,
    CallError,
]


# ---------------------------------------------------------------------------
# Envelope helpers

def encode_message(message: OutboundMessage) -> str:
    """Serialize an outbound message into a JSON envelope."""

    envelope: SignalEnvelope = {
        "action": message.action.value,
        "data": message.to_dict(),
    }
    return json.dumps(envelope, separators=(",", ":"))


def decode_event(text: str) -> InboundEvent:
    """Parse and validate a single inbound frame.

    Raises :class:`MalformedEventError` for anything that is not a known
    action carrying its required fields.
    """

    try:
        envelope = json.loads(text)
    except json.JSONDecodeError as exc:
        raise MalformedEventError("Invalid JSON") from exc
    if not isinstance(envelope, dict):
        raise MalformedEventError("Envelope must be a JSON object")

    raw_action = envelope.get("action")
    try:
        action = SignalAction(raw_action)
    except ValueError as exc:
        raise MalformedEventError(f"Unknown action {raw_action!r}") from exc
    event_type = _INBOUND_TYPES.get(action)
    if event_type is None:
        raise MalformedEventError(f"Action {action.value!r} is not accepted from clients")

    data = envelope.get("data")
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise MalformedEventError(f"{action.value}: 'data' must be a JSON object")
    return event_type.from_dict(data)


DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3000
