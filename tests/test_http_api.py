from fastapi.testclient import TestClient

from signaling.call_coordinator import CallCoordinator
from signaling.gateway import ConnectionGateway
from signaling.http_api import SignalingApi
from signaling.user_registry import UserRegistry


def _build_api(**kwargs) -> SignalingApi:
    gateway = ConnectionGateway()
    return SignalingApi(CallCoordinator(UserRegistry(), gateway), gateway, **kwargs)


def test_health_reports_connected_users() -> None:
    with TestClient(_build_api().app) as client:
        response = client.get("/api/health")
        assert response.status_code == 200
        payload = response.json()
        assert payload["status"] == "ok"
        assert payload["connectedUsers"] == 0
        assert payload["connections"] == 0
        assert payload["timestamp"]

        with client.websocket_connect("/ws") as ws:
            ws.send_json({"action": "register", "data": {"phoneNumber": "+1", "userName": "Alice"}})
            user_id = ws.receive_json()["data"]["userId"]
            ws.receive_json()

            health = client.get("/api/health").json()
            assert health["connectedUsers"] == 1
            assert health["connections"] == 1

            users = client.get("/api/users").json()
            assert users == [
                {"id": user_id, "phoneNumber": "+1", "userName": "Alice", "status": "available", "socketId": user_id}
            ]

            state = client.get("/api/state").json()
            assert state["connectedUsers"] == 1
            assert state["connectionStats"][0]["connection_id"] == user_id
            assert [event["type"] for event in state["events"]] == ["user_registered"]


def test_unregistered_socket_counts_as_connection_only() -> None:
    with TestClient(_build_api().app) as client:
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"action": "get-users"})
            assert ws.receive_json() == {"action": "users-list", "data": {"users": []}}
            health = client.get("/api/health").json()
            assert health["connectedUsers"] == 0
            assert health["connections"] == 1


def test_static_client_served_when_present(tmp_path) -> None:
    (tmp_path / "index.html").write_text("<h1>phone</h1>", encoding="utf-8")
    with TestClient(_build_api(static_root=tmp_path).app) as client:
        response = client.get("/")
        assert response.status_code == 200
        assert "phone" in response.text
        assert client.get("/api/health").status_code == 200


def test_missing_static_dir_is_not_mounted(tmp_path) -> None:
    with TestClient(_build_api(static_root=tmp_path / "missing").app) as client:
        assert client.get("/").status_code == 404


def test_cors_allows_any_origin() -> None:
    with TestClient(_build_api().app) as client:
        response = client.get("/api/health", headers={"Origin": "http://example.test"})
        assert response.headers["access-control-allow-origin"] == "*"
