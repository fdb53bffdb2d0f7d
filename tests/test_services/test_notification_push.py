import pytest

from smartmess.api import websocket as websocket_routes
from smartmess.core.security import create_access_token
from smartmess.services import notification_service
from smartmess.services.notification_service import create_notification, push_notifications
from smartmess.websockets.connection_manager import ConnectionManager


class FakeSocket:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    async def accept(self):
        return None

    async def send_json(self, message):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(message)


@pytest.fixture()
def fresh_manager(monkeypatch):
    manager = ConnectionManager()
    monkeypatch.setattr(notification_service, "manager", manager)
    return manager


@pytest.mark.asyncio
async def test_push_reaches_every_open_socket(db, member, fresh_manager):
    first, second = FakeSocket(), FakeSocket()
    await fresh_manager.connect(first, str(member.id))
    await fresh_manager.connect(second, str(member.id))

    notification = create_notification(db, user_id=member.id, type="general", title="Hi", message="There")
    db.commit()
    await push_notifications([notification])

    for socket in (first, second):
        assert socket.sent[-1]["type"] == "notification"
        assert socket.sent[-1]["data"]["id"] == str(notification.id)


@pytest.mark.asyncio
async def test_dead_socket_is_dropped_without_failing(db, member, fresh_manager):
    dead = FakeSocket()
    await fresh_manager.connect(dead, str(member.id))
    dead.fail = True

    notification = create_notification(db, user_id=member.id, type="general", title="Hi", message="There")
    db.commit()
    await push_notifications([notification])

    assert fresh_manager.connection_count(str(member.id)) == 0


class BrokenSocket(FakeSocket):
    async def receive_text(self):
        raise RuntimeError("half-closed socket")


@pytest.mark.asyncio
async def test_socket_error_unregisters_connection(monkeypatch, session_factory, member):
    manager = ConnectionManager()
    monkeypatch.setattr(websocket_routes, "manager", manager)
    monkeypatch.setattr(websocket_routes, "SessionLocal", session_factory)

    socket = BrokenSocket()
    with pytest.raises(RuntimeError):
        await websocket_routes.notifications_socket(socket, token=create_access_token(member))

    assert socket.sent[0]["type"] == "connection_established"
    assert manager.connection_count(str(member.id)) == 0
