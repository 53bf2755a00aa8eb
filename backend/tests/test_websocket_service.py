import asyncio

from clubvote.services.websocket_service import WebSocketManager


class RecordingSocket:
    def __init__(self):
        self.sent = []

    async def send_text(self, text):
        self.sent.append(text)


def test_relay_holds_task_until_broadcast_finishes():
    manager = WebSocketManager()
    socket = RecordingSocket()
    manager.connections.append(socket)

    async def scenario():
        manager.relay("vote_submitted", {"session_id": 1})
        pending = set(manager._tasks)
        assert len(pending) == 1
        await asyncio.gather(*pending)
        await asyncio.sleep(0)

    asyncio.run(scenario())

    assert manager._tasks == set()
    assert socket.sent == ['{"type": "vote_submitted", "session_id": 1}']


def test_failed_relay_task_is_released(monkeypatch):
    manager = WebSocketManager()

    async def failing_broadcast(message):
        raise RuntimeError("socket closed")

    monkeypatch.setattr(manager, "broadcast", failing_broadcast)

    async def scenario():
        manager.relay("session_closed", {"session_id": 1})
        await asyncio.gather(*manager._tasks, return_exceptions=True)
        await asyncio.sleep(0)

    asyncio.run(scenario())

    assert manager._tasks == set()


def test_relay_without_event_loop_is_skipped():
    manager = WebSocketManager()
    manager.relay("session_created", {"session_id": 1})
    assert manager._tasks == set()
