"""Integration tests for the WebSocket endpoint and socket-bound runs."""

from codebridge.services.gateway import EXECUTION_COMPLETE_BANNER


def receive_until(ws, event):
    """Read frames up to and including the first one of the given event."""
    frames = []
    while True:
        frame = ws.receive_json()
        frames.append(frame)
        if frame["event"] == event:
            return frames


def program_output(frames):
    return "".join(
        f["data"]["output"] for f in frames if f["event"] == "program-output"
    )


class TestConnection:
    """Test connection setup and malformed frames."""

    def test_connected_frame(self, client):
        with client.websocket_connect("/ws") as ws:
            frame = ws.receive_json()

            assert frame["event"] == "connected"
            assert len(frame["data"]["socketId"]) == 32

    def test_malformed_frames_keep_socket_open(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()

            ws.send_text("not json")
            error = ws.receive_json()
            assert error["event"] == "error"
            assert error["data"]["errorType"] == "protocol"

            ws.send_json({"event": "program-exit", "data": {}})
            assert ws.receive_json()["event"] == "error"

            ws.send_json({"event": "join", "data": {"roomId": "r1", "username": "alice"}})
            assert ws.receive_json()["event"] == "joined"


class TestRooms:
    """Test collaboration events between two sockets."""

    def test_join_code_change_and_disconnect(self, client):
        with client.websocket_connect("/ws") as alice:
            alice_id = alice.receive_json()["data"]["socketId"]
            alice.send_json({"event": "join", "data": {"roomId": "r1", "username": "alice"}})
            joined = alice.receive_json()
            assert joined["data"]["clients"] == [{"socketId": alice_id, "username": "alice"}]

            with client.websocket_connect("/ws") as bob:
                bob_id = bob.receive_json()["data"]["socketId"]
                bob.send_json({"event": "join", "data": {"roomId": "r1", "username": "bob"}})

                bob_joined = bob.receive_json()
                assert bob_joined["event"] == "joined"
                assert [c["username"] for c in bob_joined["data"]["clients"]] == [
                    "alice",
                    "bob",
                ]

                assert alice.receive_json()["event"] == "joined"
                sync_request = alice.receive_json()
                assert sync_request == {
                    "event": "request-code-sync",
                    "data": {"socketId": bob_id},
                }

                # Alice answers the resync request
                alice.send_json(
                    {"event": "sync-code", "data": {"code": "x = 1", "socketId": bob_id}}
                )
                assert bob.receive_json() == {"event": "sync-code", "data": {"code": "x = 1"}}

                bob.send_json({"event": "code-change", "data": {"roomId": "r1", "code": "x = 2"}})
                assert alice.receive_json() == {
                    "event": "code-change",
                    "data": {"code": "x = 2"},
                }

            left = alice.receive_json()
            assert left == {
                "event": "disconnected",
                "data": {"socketId": bob_id, "username": "bob"},
            }


class TestRuns:
    """Test runs submitted over HTTP and streamed over the socket."""

    def test_run_streams_to_socket(self, client):
        with client.websocket_connect("/ws") as ws:
            socket_id = ws.receive_json()["data"]["socketId"]

            response = client.post(
                "/compile",
                json={"code": "print('hello')", "language": "Python", "socketId": socket_id},
            )
            assert response.status_code == 200
            assert response.json() == {
                "status": "started",
                "connectionId": socket_id,
                "socketId": socket_id,
            }

            frames = receive_until(ws, "program-exit")

            assert program_output(frames) == "hello\n" + EXECUTION_COMPLETE_BANNER
            exit_frame = frames[-1]["data"]
            assert exit_frame["status"] == "completed"
            assert exit_frame["exitCode"] == 0

    def test_interactive_input(self, client):
        with client.websocket_connect("/ws") as ws:
            socket_id = ws.receive_json()["data"]["socketId"]
            client.post(
                "/compile",
                json={
                    "code": "name = input()\nprint('hi ' + name)",
                    "language": "python",
                    "connectionId": socket_id,
                },
            )

            ws.send_json({"event": "program-input", "data": {"input": "bob"}})
            frames = receive_until(ws, "program-exit")

            assert program_output(frames) == "\nhi bob\n" + EXECUTION_COMPLETE_BANNER

    def test_busy_then_stop(self, client):
        with client.websocket_connect("/ws") as ws:
            socket_id = ws.receive_json()["data"]["socketId"]
            body = {"code": "input()", "language": "python", "connectionId": socket_id}

            assert client.post("/compile", json=body).status_code == 200
            busy = client.post("/compile", json=body)
            assert busy.status_code == 409
            assert busy.json()["error_type"] == "resource_conflict"
            assert busy.json()["details"][0]["code"] == "busy"

            ws.send_json({"event": "program-stop"})
            frames = receive_until(ws, "program-exit")
            assert frames[-1]["data"]["status"] == "killed"

            # The session accepts a new run once the previous one ended
            body["code"] = "print(2)"
            assert client.post("/compile", json=body).status_code == 200
            frames = receive_until(ws, "program-exit")
            assert program_output(frames).startswith("2\n")

    def test_status_counts_connection(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            data = client.get("/status").json()
            assert data["connections"] == 1
            assert data["sessions"] == 1
