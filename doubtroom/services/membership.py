"""
doubtroom.services.membership
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

房间成员表 —— 纯内存状态机，不做任何 I/O。

同时维护两个视图：

- 连接 → (房间, 用户)
- 房间 → 有序连接集合（按加入顺序，用于生成花名册）

两个视图在同一个同步方法里一起修改，中间没有 ``await``，
因此对事件循环上的其他协程来说不存在"只改了一半"的状态。
对未知 ID 的操作一律是空操作，断线竞态是常态而不是异常。
"""
from __future__ import annotations

from typing import NamedTuple

from doubtroom.schemas.events import Identity


class _Membership(NamedTuple):
    room_id: str
    user: Identity


class MembershipStore:
    """连接与房间的双向索引。只由 ``PresenceCoordinator`` 修改。"""

    def __init__(self) -> None:
        self._connections: dict[str, _Membership] = {}
        # dict 充当有序集合，值恒为 None
        self._rooms: dict[str, dict[str, None]] = {}

    # ── 写操作 ────────────────────────────────────────────────────────

    def record_join(self, connection_id: str, room_id: str, user: Identity) -> int:
        """把连接登记到房间，返回房间的最新人数。

        如果连接已登记在另一个房间，先从旧房间移除。
        """
        current = self._connections.get(connection_id)
        if current is not None and current.room_id != room_id:
            self.record_leave(current.room_id, connection_id)

        self._connections[connection_id] = _Membership(room_id, user)
        members = self._rooms.setdefault(room_id, {})
        members[connection_id] = None
        return len(members)

    def record_leave(self, room_id: str, connection_id: str) -> int:
        """把连接从房间移除，返回房间剩余人数；房间变空时删除其条目。"""
        members = self._rooms.get(room_id)
        if members is None:
            return 0
        if connection_id in members:
            del members[connection_id]
            current = self._connections.get(connection_id)
            if current is not None and current.room_id == room_id:
                del self._connections[connection_id]
        remaining = len(members)
        if remaining == 0:
            del self._rooms[room_id]
        return remaining

    # ── 读操作 ────────────────────────────────────────────────────────

    def lookup(self, connection_id: str) -> str | None:
        current = self._connections.get(connection_id)
        return current.room_id if current is not None else None

    def user_of(self, connection_id: str) -> Identity | None:
        current = self._connections.get(connection_id)
        return current.user if current is not None else None

    def snapshot(self, room_id: str) -> list[Identity]:
        """房间当前花名册（按加入顺序），未知房间返回空列表。"""
        return [
            self._connections[connection_id].user
            for connection_id in self._rooms.get(room_id, ())
        ]

    def members(self, room_id: str) -> list[str]:
        """房间当前的连接 ID 列表（副本）。"""
        return list(self._rooms.get(room_id, ()))

    def size(self, room_id: str) -> int:
        return len(self._rooms.get(room_id, ()))

    def has_user(self, room_id: str, user_id: str) -> bool:
        """房间内是否还有属于该用户的连接（同一用户可能开了多个标签页）。"""
        return any(
            self._connections[connection_id].user.user_id == user_id
            for connection_id in self._rooms.get(room_id, ())
        )

    def room_ids(self) -> list[str]:
        return list(self._rooms)
