"""
tests.conftest
~~~~~~~~~~~~~~

共享 pytest fixtures —— 用 mock 替代 MongoDB 仓库，用 ``FakeConnection``
记录每个连接收到的帧，使单元测试可在无数据库环境下快速运行。
"""
from __future__ import annotations

import json
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId

# ── 在所有测试导入前设置环境变量 ─────────────────────────────────────
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("JWT_SECRET", "test-secret-key-that-is-long-enough-for-hs256")

from doubtroom.schemas.events import Identity  # noqa: E402
from doubtroom.services.realtime import RealtimeHub  # noqa: E402


def make_identity(name: str, role: str = "student", user_id: str | None = None) -> Identity:
    """生成一个带合法 ObjectId 的测试身份。"""
    return Identity(user_id=user_id or str(ObjectId()), name=name, role=role)


class FakeConnection:
    """记录收到的帧的假连接，满足 ``Recipient`` 协议。"""

    def __init__(self, connection_id: str, identity: Identity) -> None:
        self.connection_id = connection_id
        self.identity = identity
        self.frames: list[dict[str, Any]] = []

    def enqueue(self, message: str) -> bool:
        self.frames.append(json.loads(message))
        return True

    def events(self, name: str | None = None) -> list[dict[str, Any]]:
        """按事件名过滤收到的负载。"""
        return [f["data"] for f in self.frames if name is None or f["event"] == name]

    def names(self) -> list[str]:
        return [f["event"] for f in self.frames]


@pytest.fixture()
def active_rooms() -> dict[str, dict]:
    """可加入的房间：房间 ID → 房间记录。测试可以往里增删。"""
    return {
        "r1": {"_id": "r1", "title": "DSA", "isActive": True},
        "r2": {"_id": "r2", "title": "React", "isActive": True},
    }


@pytest.fixture()
def room_repo(active_rooms: dict[str, dict]) -> MagicMock:
    """mock 的 ``RoomRepository``：只认 ``active_rooms`` 中的房间。"""
    repo = MagicMock()
    repo.get_active_room = AsyncMock(side_effect=lambda room_id: active_rooms.get(room_id))
    repo.get_room = AsyncMock(side_effect=lambda room_id: active_rooms.get(room_id))
    repo.apply_active_user_delta = AsyncMock()
    return repo


@pytest.fixture()
def user_repo() -> MagicMock:
    repo = MagicMock()
    repo.get_by_id = AsyncMock(return_value=None)
    repo.increment_stats = AsyncMock()
    return repo


@pytest.fixture()
def hub(room_repo: MagicMock, user_repo: MagicMock) -> RealtimeHub:
    """装配好的实时层，转发限流间隔为 0（不限流）。"""
    return RealtimeHub(rooms=room_repo, users=user_repo, relay_interval=0)


@pytest.fixture()
def connect(hub: RealtimeHub):
    """登记一个假连接并返回它：``conn = connect("a", "Alice")``。"""

    def _connect(connection_id: str, name: str, role: str = "student", user_id: str | None = None) -> FakeConnection:
        connection = FakeConnection(connection_id, make_identity(name, role, user_id))
        hub.presence.connect(connection)
        return connection

    return _connect


@pytest.fixture()
def accounts(user_repo: MagicMock) -> dict[str, dict]:
    """数据库中的用户：名字 → 用户文档；``user_repo.get_by_id`` 按 ID 查找它们。"""
    table = {
        "Alice": {"_id": ObjectId(), "name": "Alice", "role": "student", "isActive": True},
        "Bob": {"_id": ObjectId(), "name": "Bob", "role": "student", "isActive": True},
        "Mona": {"_id": ObjectId(), "name": "Mona", "role": "mentor", "isActive": True},
        "Ghost": {"_id": ObjectId(), "name": "Ghost", "role": "student", "isActive": False},
    }
    by_id = {str(doc["_id"]): doc for doc in table.values()}
    user_repo.get_by_id = AsyncMock(side_effect=lambda user_id: by_id.get(user_id))
    return table


@pytest.fixture()
def token_for(accounts: dict[str, dict]):
    """签发某个测试用户的访问令牌：``token_for("Alice")``。"""
    from doubtroom.core.security import create_access_token

    def _token_for(name: str) -> str:
        return create_access_token(str(accounts[name]["_id"]))

    return _token_for


@asynccontextmanager
async def _without_database(app) -> AsyncIterator[None]:
    yield


@pytest.fixture()
def app(hub: RealtimeHub):
    """不连接 MongoDB 的应用实例，``app.state`` 由测试填充。"""
    from doubtroom.core.rate_limit import limiter
    from doubtroom.main import create_app

    limiter.reset()
    application = create_app(lifespan_handler=_without_database)
    application.state.hub = hub
    application.state.qa_service = MagicMock()
    return application
