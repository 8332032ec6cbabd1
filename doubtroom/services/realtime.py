"""
doubtroom.services.realtime
~~~~~~~~~~~~~~~~~~~~~~~~~~~

实时层装配 —— 把成员表、广播器、在线状态协调器、身份解析器和事件分发器
组装成一个 ``RealtimeHub``。

在 FastAPI lifespan 中创建并挂载到 ``app.state.hub``，WebSocket 端点与 REST
路由都从这里取用；REST 路由只使用 ``hub.broadcaster.broadcast``，从不直接修改成员表。
"""
from __future__ import annotations

from fastapi import WebSocket
from motor.motor_asyncio import AsyncIOMotorDatabase

from doubtroom.core.config import settings
from doubtroom.core.rate_limit import WebSocketRateLimiter
from doubtroom.core.security import IdentityResolver
from doubtroom.db.room_repository import RoomRepository
from doubtroom.db.user_repository import UserRepository
from doubtroom.schemas.events import Identity
from doubtroom.services.broadcaster import EventBroadcaster
from doubtroom.services.connection import ClientConnection
from doubtroom.services.dispatcher import EventDispatcher
from doubtroom.services.membership import MembershipStore
from doubtroom.services.presence import PresenceCoordinator


class RealtimeHub:
    """进程内唯一的实时层入口。

    Attributes:
        membership: 房间成员表（由 presence 独占写入）。
        broadcaster: 事件广播器。
        presence: 在线状态协调器。
        identity: 身份解析器。
        dispatcher: 入站事件分发器。
    """

    def __init__(
        self,
        rooms: RoomRepository,
        users: UserRepository,
        outbox_size: int | None = None,
        relay_interval: float | None = None,
    ) -> None:
        self.rooms = rooms
        self.users = users
        self.membership = MembershipStore()
        self.broadcaster = EventBroadcaster(self.membership)
        self.presence = PresenceCoordinator(self.membership, self.broadcaster, rooms)
        self.identity = IdentityResolver(users)
        self.dispatcher = EventDispatcher(
            self.presence,
            self.broadcaster,
            WebSocketRateLimiter(
                interval_seconds=(
                    settings.WS_RELAY_RATE_LIMIT_INTERVAL if relay_interval is None else relay_interval
                ),
            ),
        )
        self.outbox_size = outbox_size or settings.WS_OUTBOX_SIZE

    @classmethod
    def from_database(cls, db: AsyncIOMotorDatabase) -> RealtimeHub:
        return cls(rooms=RoomRepository(db), users=UserRepository(db))

    def open_connection(self, websocket: WebSocket, identity: Identity) -> ClientConnection:
        """为一个已接受的 WebSocket 创建连接对象并登记。"""
        connection = ClientConnection(websocket, identity, max_pending=self.outbox_size)
        self.presence.connect(connection)
        return connection

    async def close_connection(self, connection: ClientConnection) -> None:
        """断线清理：离开房间、丢弃连接状态、结束发送协程。"""
        try:
            await self.presence.disconnect(connection.connection_id)
        finally:
            self.dispatcher.forget(connection.connection_id)
            connection.close()
