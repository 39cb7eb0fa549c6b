"""Fan-out on the scan channel."""

from fastapi import WebSocketDisconnect

from backend.core.scanner.progress import ProgressEmitter
from backend.core.websocket_manager import WebSocketManager


class FakeSocket:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail
        self.accepted = False

    async def accept(self):
        self.accepted = True

    async def send_json(self, message):
        if self.fail:
            raise WebSocketDisconnect()
        self.sent.append(message)


async def test_broadcast_reaches_subscribers():
    manager = WebSocketManager()
    first, second = FakeSocket(), FakeSocket()
    await manager.connect(first, "scan")
    await manager.connect(second, "scan")

    await ProgressEmitter(manager).started(7, "/media/movies", "MOVIE", False)

    assert first.accepted
    assert first.sent == second.sent
    assert first.sent[0]["type"] == "scan:started"
    assert first.sent[0]["data"]["scan_job_id"] == 7


async def test_dead_socket_is_dropped():
    manager = WebSocketManager()
    alive, dead = FakeSocket(), FakeSocket(fail=True)
    await manager.connect(alive, "scan")
    await manager.connect(dead, "scan")

    await manager.broadcast("scan", {"type": "scan:progress", "data": {}})

    assert manager.get_connection_count("scan") == 1
    assert len(alive.sent) == 1


async def test_progress_percent():
    manager = WebSocketManager()
    socket = FakeSocket()
    await manager.connect(socket, "scan")

    await ProgressEmitter(manager).progress(1, "scanning", 1, 4, message="Scanning A")

    data = socket.sent[0]["data"]
    assert data["progress"] == 25.0
    assert data["phase"] == "scanning"
