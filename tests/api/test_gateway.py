"""
Tests for the HTTP and WebSocket gateway, driven through FastAPI's TestClient.
"""

import json

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from termstream.api.fastapi_adapter import create_fastapi_app
from termstream.client.connection import PtyConnection
from termstream.config import ServerSettings
from termstream.terminal.events import EventBus
from termstream.terminal.registry import SessionRegistry

TOKEN = "test-token"
AUTH = {"Authorization": f"Bearer {TOKEN}"}


def plain_env(extra=None):
    return dict(extra or {})


@pytest.fixture
def registry(process_factory):
    return SessionRegistry(EventBus(), process_factory=process_factory, env_builder=plain_env)


@pytest.fixture
def client(registry):
    app = create_fastapi_app(registry, ServerSettings(token=TOKEN))
    with TestClient(app) as client:
        yield client


@pytest.fixture
def session_name(client):
    response = client.post("/pty", json={"cwd": "/tmp"}, headers=AUTH)
    assert response.status_code == 201
    return response.json()["name"]


def ws_url(name, **params):
    params.setdefault("token", TOKEN)
    query = "&".join(f"{key}={value}" for key, value in params.items())
    return f"/pty/{name}/ws?{query}"


def cursor_of(frame: bytes) -> int:
    assert frame[0] == 0x00
    return json.loads(frame[1:].decode("utf-8"))["cursor"]


class TestAuth:
    def test_health_needs_no_token(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"ok": True}

    def test_missing_token(self, client):
        response = client.get("/pty")
        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}

    def test_wrong_token(self, client):
        response = client.get("/pty", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_bearer_header(self, client):
        response = client.get("/pty", headers=AUTH)
        assert response.status_code == 200
        assert response.json() == []

    def test_query_parameter(self, client):
        assert client.get(f"/pty?token={TOKEN}").status_code == 200

    def test_protocol_header(self, client):
        response = client.get("/pty", headers={"Sec-WebSocket-Protocol": TOKEN})
        assert response.status_code == 200

    def test_websocket_without_token_is_refused(self, client, session_name):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect(f"/pty/{session_name}/ws"):
                pass
        assert exc_info.value.code == 1008

    def test_websocket_token_as_subprotocol(self, client, session_name):
        url = f"/pty/{session_name}/ws"
        with client.websocket_connect(url, subprotocols=[TOKEN]) as ws:
            assert ws.accepted_subprotocol == TOKEN
            assert cursor_of(ws.receive_bytes()) == 0


class TestCrud:
    def test_create_and_get(self, client, process_factory):
        response = client.post(
            "/pty",
            json={"cwd": "/srv", "shell": "/bin/zsh", "shellArgs": ["-i"], "cols": 120, "rows": 40},
            headers=AUTH,
        )
        assert response.status_code == 201
        body = response.json()
        assert body["cwd"] == "/srv"
        assert body["name"].startswith("term-")

        spawn_args = process_factory.last.spawn_args
        assert spawn_args["command"] == "/bin/zsh"
        assert spawn_args["args"] == ["-i"]

        info = client.get(f"/pty/{body['name']}", headers=AUTH).json()
        assert info == {
            "name": body["name"],
            "cwd": "/srv",
            "title": None,
            "command": None,
            "cols": 120,
            "rows": 40,
        }

    def test_create_defaults_size(self, client, process_factory):
        client.post("/pty", json={"cwd": "/tmp", "cols": 0}, headers=AUTH)
        assert process_factory.last.size == (80, 24)

    def test_list(self, client, session_name):
        sessions = client.get("/pty", headers=AUTH).json()
        assert [s["name"] for s in sessions] == [session_name]

    def test_get_unknown(self, client):
        response = client.get("/pty/term-0-0", headers=AUTH)
        assert response.status_code == 404
        assert response.json() == {"error": "session not found"}

    def test_spawn_failure(self, client, process_factory, registry):
        process_factory.fail_spawn = FileNotFoundError("/bin/nope")

        response = client.post("/pty", json={"shell": "/bin/nope"}, headers=AUTH)

        assert response.status_code == 500
        assert "Failed to spawn shell" in response.json()["error"]
        assert registry.session_count() == 0

    def test_resize(self, client, session_name, process_factory):
        response = client.post(
            f"/pty/{session_name}/resize", json={"cols": 100, "rows": 50}, headers=AUTH
        )
        assert response.json() == {"ok": True}
        assert process_factory.last.size == (100, 50)

    def test_resize_rejects_bad_body(self, client, session_name):
        response = client.post(
            f"/pty/{session_name}/resize", json={"cols": 0, "rows": 50}, headers=AUTH
        )
        assert response.status_code == 422

    def test_kill(self, client, session_name, process_factory):
        response = client.delete(f"/pty/{session_name}", headers=AUTH)
        assert response.json() == {"ok": True}
        assert process_factory.last.terminated
        assert client.get(f"/pty/{session_name}", headers=AUTH).status_code == 404

    def test_kill_unknown_is_ok(self, client):
        assert client.delete("/pty/term-0-0", headers=AUTH).json() == {"ok": True}


class TestWebSocket:
    def test_fresh_session_sends_cursor_zero(self, client, session_name):
        with client.websocket_connect(ws_url(session_name, cursor=0, cols=80, rows=24)) as ws:
            assert cursor_of(ws.receive_bytes()) == 0

    def test_live_output(self, client, session_name, process_factory):
        with client.websocket_connect(ws_url(session_name)) as ws:
            assert cursor_of(ws.receive_bytes()) == 0
            process_factory.last.emit("héllo\r\n".encode("utf-8"))
            assert ws.receive_text() == "héllo\r\n"

    def test_replay_on_reconnect(self, client, session_name, process_factory, registry, poll_until):
        process_factory.last.emit(b"abcdef")
        poll_until(lambda: registry.get(session_name).cursor == 6)

        with client.websocket_connect(ws_url(session_name, cursor=0)) as ws:
            assert ws.receive_text() == "abcdef"
            assert cursor_of(ws.receive_bytes()) == 6

        with client.websocket_connect(ws_url(session_name, cursor=4)) as ws:
            assert ws.receive_text() == "ef"
            assert cursor_of(ws.receive_bytes()) == 6

        with client.websocket_connect(ws_url(session_name, cursor=6)) as ws:
            assert cursor_of(ws.receive_bytes()) == 6

    async def test_client_reconnect_after_invalid_utf8_misses_nothing(
        self, client, session_name, process_factory, registry, poll_until
    ):
        connection = PtyConnection(session_name, "http://testserver", TOKEN)

        with client.websocket_connect(ws_url(session_name)) as ws:
            connection.on_message(ws.receive_bytes())
            process_factory.last.emit(b"ok\xff\xfe")
            connection.on_message(ws.receive_text())

        process_factory.last.emit(b"MISSING!")
        poll_until(lambda: registry.get(session_name).cursor == 12)

        replay = []
        with client.websocket_connect(ws_url(session_name, cursor=connection.cursor)) as ws:
            while True:
                message = ws.receive()
                if message.get("bytes") is not None:
                    assert cursor_of(message["bytes"]) == 12
                    break
                replay.append(message["text"])

        assert "".join(replay).endswith("MISSING!")

    def test_two_viewers_see_the_same_echo(self, client, process_factory):
        process_factory.echo = True
        name = client.post("/pty", json={"cwd": "/tmp"}, headers=AUTH).json()["name"]

        with client.websocket_connect(ws_url(name)) as first:
            with client.websocket_connect(ws_url(name)) as second:
                first.receive_bytes()
                second.receive_bytes()

                first.send_text("hello")

                assert first.receive_text() == "hello"
                assert second.receive_text() == "hello"

    def test_resize_control_frame(self, client, process_factory):
        process_factory.echo = True
        name = client.post("/pty", json={"cwd": "/tmp"}, headers=AUTH).json()["name"]

        with client.websocket_connect(ws_url(name)) as ws:
            ws.receive_bytes()
            ws.send_bytes(b"\x01" + json.dumps({"cols": 132, "rows": 43}).encode())
            ws.send_text("x")
            assert ws.receive_text() == "x"

        assert process_factory.last.size == (132, 43)

    def test_malformed_control_frame_keeps_connection(self, client, process_factory):
        process_factory.echo = True
        name = client.post("/pty", json={"cwd": "/tmp"}, headers=AUTH).json()["name"]

        with client.websocket_connect(ws_url(name)) as ws:
            ws.receive_bytes()
            ws.send_bytes(b"\x01{not json")
            ws.send_bytes(b"\x7f{}")
            ws.send_text("still here")
            assert ws.receive_text() == "still here"

    def test_initial_size_from_query(self, client, session_name, process_factory):
        with client.websocket_connect(ws_url(session_name, cols=90, rows=30)) as ws:
            ws.receive_bytes()
        assert process_factory.last.size == (90, 30)

    def test_missing_session(self, client):
        with client.websocket_connect(ws_url("term-0-0")) as ws:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_text()
        assert exc_info.value.code == 1008

    def test_kill_closes_viewers(self, client, session_name):
        with client.websocket_connect(ws_url(session_name)) as ws:
            ws.receive_bytes()
            client.delete(f"/pty/{session_name}", headers=AUTH)
            message = ws.receive()

        assert message["type"] == "websocket.close"
        assert message["code"] == 1000
        assert message["reason"] == "session killed"

    def test_process_exit_closes_viewers(self, client, session_name, process_factory):
        with client.websocket_connect(ws_url(session_name)) as ws:
            ws.receive_bytes()
            process_factory.last.finish(0)
            message = ws.receive()

        assert message["type"] == "websocket.close"
        assert message["code"] == 1000
        assert message["reason"] == "exited 0"
