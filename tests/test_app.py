import asyncio

from fastapi.testclient import TestClient

from fakes import FakeBackend, make_dispatcher, make_settings
from roomie.app import create_app, make_sender
from roomie.session import Session


def build_client(backend):
    app = create_app(dispatcher=make_dispatcher(backend), settings=make_settings())
    return TestClient(app)


def test_health_reports_ready():
    with build_client(FakeBackend()) as client:
        response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["dispatcher_ready"] is True
    assert body["connections"] == 0


def test_websocket_conversation_round_trip():
    backend = FakeBackend(streams=[["Hi", "!"]])
    with build_client(backend) as client:
        with client.websocket_connect("/ws") as ws:
            ws.send_text("USER|hello")
            assert ws.receive_text() == "CHUNK|Hi"
            assert ws.receive_text() == "CHUNK|!"
            assert ws.receive_text() == "FINAL|Hi!"


def test_websocket_root_path_serves_intents_and_ignores_noise():
    backend = FakeBackend(structured=['{"category": "rug", "budget_max": 300}'])
    with build_client(backend) as client:
        with client.websocket_connect("/") as ws:
            ws.send_text("PING|anyone")
            ws.send_text("SPEC|a rug under 300")
            assert ws.receive_text() == (
                "SPEC|suggest=1;category=rug;style=;budget_min=0;budget_max=300;"
                "max_len=0;max_w=0;max_h=0;choice_id=;choice_name="
            )


def test_sender_is_noop_after_session_close():
    class ExplodingSocket:
        async def send_text(self, frame):
            raise AssertionError("must not send after close")

    session = Session()
    session.close()
    send = make_sender(ExplodingSocket(), session)
    asyncio.run(send("FINAL|late"))
