import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from stt_worker.backend.runtime import WorkerRuntime
from stt_worker.backend.transport.ws_server import WS_CLOSE_TRY_AGAIN_LATER, build_ws_app
from stt_worker.config import WorkerConfig


@pytest.fixture
def client(fake_factory):
    runtime = WorkerRuntime(WorkerConfig(), factory=fake_factory)
    app = build_ws_app(runtime, max_workers=1)
    with TestClient(app) as test_client:
        yield test_client


def _receive_until(ws, status):
    """Helper collecting frames until one with the given status arrives."""
    frames = []
    while True:
        frame = ws.receive_json()
        frames.append(frame)
        if frame["status"] == status:
            return frames


def test_ws_app_exposes_worker_route(fake_factory):
    """Test websocket app exposes the worker route."""
    app = build_ws_app(WorkerRuntime(WorkerConfig(), factory=fake_factory))

    paths = [getattr(route, "path", "") for route in app.router.routes]
    assert "/ws/worker" in paths
    assert "/health" in paths


def test_health_reports_worker_slots(client):
    """Test health endpoint reports slot usage."""
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "active_workers": 0, "max_workers": 1}


def test_first_frame_announces_worker(client):
    """Test a new connection is greeted with a ready event."""
    with client.websocket_connect("/ws/worker") as ws:
        assert ws.receive_json() == {"status": "ready", "message": "Worker initialized"}
        ws.send_json({"type": "status"})
        assert ws.receive_json() == {"status": "loading", "message": "No model loaded"}


def test_transcribe_round_trip(client):
    """Test a transcribe command streams events through to completion."""
    with client.websocket_connect("/ws/worker") as ws:
        ws.receive_json()
        ws.send_text("not json")
        ws.send_json({"type": "transcribe", "model": "tiny", "audio": [0.0] * 1600})

        frames = _receive_until(ws, "complete")

    statuses = [frame["status"] for frame in frames]
    assert statuses[0] == "loading"
    assert statuses.index("ready") < statuses.index("transcribing")
    assert frames[-1]["model"] == "tiny"
    assert frames[-1]["data"]["text"] == " hello world"
    assert frames[-1]["progress"] == 100


def test_connection_beyond_limit_is_rejected(client):
    """Test connections past max_workers are closed with try-again-later."""
    with client.websocket_connect("/ws/worker") as first:
        first.receive_json()
        assert client.get("/health").json()["active_workers"] == 1

        with client.websocket_connect("/ws/worker") as second:
            with pytest.raises(WebSocketDisconnect) as excinfo:
                second.receive_json()
        assert excinfo.value.code == WS_CLOSE_TRY_AGAIN_LATER
