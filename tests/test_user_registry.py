from shared.protocol import UserStatus
from signaling.user_registry import UserRegistry


def test_register_creates_available_record() -> None:
    registry = UserRegistry()
    record = registry.register("c1", "+1", "Alice")

    assert record.status is UserStatus.AVAILABLE
    assert registry.lookup_by_connection("c1") is record
    assert "c1" in registry
    assert len(registry) == 1


def test_reregistration_overwrites_and_resets_status() -> None:
    registry = UserRegistry()
    registry.register("c1", "+1", "Alice")
    registry.register("c2", "+2", "Bob")
    registry.set_status("c1", UserStatus.IN_CALL)

    registry.register("c1", "+9", "Alicia")

    record = registry.lookup_by_connection("c1")
    assert record is not None
    assert (record.identity, record.display_name, record.status) == ("+9", "Alicia", UserStatus.AVAILABLE)
    assert [r.connection_id for r in registry.snapshot()] == ["c1", "c2"]
    assert len(registry) == 2


def test_lookup_by_identity_returns_first_match() -> None:
    registry = UserRegistry()
    registry.register("c1", "+1", "First")
    registry.register("c2", "+1", "Second")

    record = registry.lookup_by_identity("+1")
    assert record is not None
    assert record.connection_id == "c1"
    assert registry.lookup_by_identity("+404") is None


def test_remove_and_set_status_ignore_unknown_connections() -> None:
    registry = UserRegistry()
    assert registry.remove("ghost") is None
    registry.set_status("ghost", UserStatus.RINGING)
    assert len(registry) == 0


def test_snapshot_is_a_copy() -> None:
    registry = UserRegistry()
    registry.register("c1", "+1", "Alice")
    snapshot = registry.snapshot()

    registry.set_status("c1", UserStatus.CALLING)
    registry.remove("c1")

    assert snapshot[0].status is UserStatus.AVAILABLE
    assert snapshot[0].to_dict() == {
        "id": "c1",
        "phoneNumber": "+1",
        "userName": "Alice",
        "status": "available",
        "socketId": "c1",
    }
