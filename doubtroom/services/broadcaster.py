"""
doubtroom.services.broadcaster
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

房间事件广播器 —— 把具名事件推送给房间内当前的所有连接。

接收者在广播时刻从成员表实时读取，从不使用缓存的名单。
投递是尽力而为：不重试、不等待慢客户端；对每个接收者而言，
同一房间的事件按广播顺序到达。
"""
from __future__ import annotations

from typing import Any, Protocol

from pydantic import BaseModel

from doubtroom.core.logging import get_logger
from doubtroom.schemas.events import Identity, encode_frame
from doubtroom.services.membership import MembershipStore

logger = get_logger(__name__)


class Recipient(Protocol):
    connection_id: str
    identity: Identity

    def enqueue(self, message: str) -> bool: ...


class EventBroadcaster:
    """事件广播器。

    Attributes:
        membership: 只读使用的房间成员表。
    """

    def __init__(self, membership: MembershipStore) -> None:
        self.membership = membership
        self._connections: dict[str, Recipient] = {}

    def register(self, connection: Recipient) -> None:
        self._connections[connection.connection_id] = connection

    def unregister(self, connection_id: str) -> None:
        self._connections.pop(connection_id, None)

    def get(self, connection_id: str) -> Recipient | None:
        return self._connections.get(connection_id)

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def broadcast(
        self,
        room_id: str,
        event: str,
        payload: BaseModel | dict[str, Any],
        exclude: str | None = None,
    ) -> int:
        """向房间广播事件，返回成功入队的接收者数量。

        Args:
            room_id: 目标房间。
            event: 出站事件名。
            payload: 事件负载。
            exclude: 需要排除的发送方连接 ID（如输入中提示）。
        """
        message = encode_frame(event, payload)
        delivered = 0
        for connection_id in self.membership.members(room_id):
            if connection_id == exclude:
                continue
            connection = self._connections.get(connection_id)
            if connection is not None and connection.enqueue(message):
                delivered += 1
        logger.debug("广播 %s | room=%s | 接收者: %d", event, room_id, delivered)
        return delivered

    def send_to(self, connection_id: str, event: str, payload: BaseModel | dict[str, Any]) -> bool:
        """只发给一个连接（用于 ``error`` 事件）。"""
        connection = self._connections.get(connection_id)
        if connection is None:
            return False
        return connection.enqueue(encode_frame(event, payload))
