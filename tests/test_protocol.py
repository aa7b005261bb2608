import json

import pytest

from shared.protocol import (
    CallRequestEvent,
    EndCallEvent,
    GetUsersEvent,
    IncomingCall,
    MalformedEventError,
    RegisterEvent,
    SignalAction,
    UsersList,
    decode_event,
    encode_message,
)


def _frame(action: str, data: object = None) -> str:
    envelope: dict = {"action": action}
    if data is not None:
        envelope["data"] = data
    return json.dumps(envelope)


def test_decode_register_maps_wire_fields() -> None:
    event = decode_event(_frame("register", {"phoneNumber": "+15550001", "userName": "Alice"}))
    assert isinstance(event, RegisterEvent)
    assert event.identity == "+15550001"
    assert event.display_name == "Alice"


def test_decode_call_request_keeps_offer_opaque() -> None:
    offer = {"type": "offer", "sdp": "v=0\r\n"}
    event = decode_event(_frame("call-request", {"targetPhoneNumber": "+2", "offer": offer}))
    assert isinstance(event, CallRequestEvent)
    assert event.target_identity == "+2"
    assert event.offer == offer


def test_decode_get_users_without_data() -> None:
    assert isinstance(decode_event(_frame("get-users")), GetUsersEvent)


def test_decode_end_call_without_target() -> None:
    event = decode_event(_frame("end-call", {}))
    assert isinstance(event, EndCallEvent)
    assert event.target_id is None


@pytest.mark.parametrize(
    "frame, fragment",
    [
        ("not json", "Invalid JSON"),
        ("[1, 2]", "JSON object"),
        (_frame("dance"), "Unknown action"),
        (_frame("users-list", {}), "not accepted from clients"),
        (_frame("register", ["+1"]), "'data' must be a JSON object"),
        (_frame("register", {"userName": "Alice"}), "phoneNumber"),
        (_frame("register", {"phoneNumber": 15550001, "userName": "Alice"}), "phoneNumber"),
        (_frame("call-request", {"targetPhoneNumber": "+2"}), "offer"),
        (_frame("answer-call", {"answer": {}}), "callerId"),
        (_frame("ice-candidate", {"targetId": "abc"}), "candidate"),
        (_frame("reject-call", {}), "callerId"),
        (_frame("end-call", {"targetId": ""}), "targetId"),
    ],
)
def test_decode_rejects_malformed_frames(frame: str, fragment: str) -> None:
    with pytest.raises(MalformedEventError, match=fragment):
        decode_event(frame)


def test_encode_incoming_call_uses_wire_names() -> None:
    message = IncomingCall(caller_name="Alice", caller_identity="+1", caller_id="a1", offer={"sdp": "x"})
    envelope = json.loads(encode_message(message))
    assert envelope["action"] == SignalAction.INCOMING_CALL.value
    assert envelope["data"] == {
        "from": "Alice",
        "fromPhoneNumber": "+1",
        "fromId": "a1",
        "offer": {"sdp": "x"},
    }


def test_encode_users_list() -> None:
    envelope = json.loads(encode_message(UsersList(users=[])))
    assert envelope == {"action": "users-list", "data": {"users": []}}
