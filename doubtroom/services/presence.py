"""
doubtroom.services.presence
~~~~~~~~~~~~~~~~~~~~~~~~~~~

在线状态协调器 —— 负责连接的加入/离开/断开状态机。

每个连接的状态::

    Unjoined ──join──▶ Joined(r) ──leave/disconnect──▶ Unjoined
    Joined(r) ──join(r')──▶ (先完整走一遍 leave(r)) ──▶ Joined(r')

顺序约束：

- 成员表修改、花名册计算与广播入队都是同步完成的，中间没有 ``await``；
- 加入时唯一的挂起点是房间校验（修改之前）和在线人数回写（广播之后）；
- 回写 MongoDB 是尽力而为的：失败只记日志，内存状态才是实时广播的依据。
  同一房间的回写按内存修改的先后顺序串行执行。
"""
from __future__ import annotations

import asyncio
from collections import Counter

from doubtroom.core.exceptions import PersistenceSyncFailure, RoomNotFound
from doubtroom.core.logging import get_logger
from doubtroom.db.room_repository import RoomRepository
from doubtroom.schemas.events import (
    ARRIVAL,
    DEPARTURE,
    ArrivalPayload,
    DeparturePayload,
    Identity,
)
from doubtroom.services.broadcaster import EventBroadcaster, Recipient
from doubtroom.services.membership import MembershipStore

logger = get_logger(__name__)


class PresenceCoordinator:
    """在线状态协调器。成员表的唯一写入方。

    Attributes:
        membership: 房间成员表。
        broadcaster: 事件广播器。
        rooms: 房间仓库（房间校验 + 在线人数回写）。
    """

    def __init__(
        self,
        membership: MembershipStore,
        broadcaster: EventBroadcaster,
        rooms: RoomRepository,
    ) -> None:
        self.membership = membership
        self.broadcaster = broadcaster
        self.rooms = rooms
        self._sync_locks: dict[str, asyncio.Lock] = {}
        self._pending_syncs: Counter[str] = Counter()

    # ── 连接生命周期 ──────────────────────────────────────────────────

    def connect(self, connection: Recipient) -> None:
        """登记一个已认证的连接，使其可以接收定向消息。"""
        self.broadcaster.register(connection)
        logger.info(
            "用户已连接: %s (%s) | conn=%s",
            connection.identity.name, connection.identity.user_id, connection.connection_id,
        )

    async def disconnect(self, connection_id: str) -> None:
        """断开连接：离开当前房间（如果有），并丢弃该连接的全部状态。

        从未加入过房间、或重复调用，都是安全的空操作。
        """
        room_id = self.membership.lookup(connection_id)
        self.broadcaster.unregister(connection_id)
        if room_id is not None:
            await self.leave(connection_id, room_id)
        logger.info("连接已断开 | conn=%s", connection_id)

    def current_room(self, connection_id: str) -> str | None:
        return self.membership.lookup(connection_id)

    # ── 房间操作 ──────────────────────────────────────────────────────

    async def join(self, connection_id: str, room_id: str) -> bool:
        """加入房间。

        Returns:
            是否加入成功。连接已不存在时返回 False。

        Raises:
            RoomNotFound: 房间不存在或已停用，此时连接状态不变。
        """
        room = await self.rooms.get_active_room(room_id)
        if room is None:
            raise RoomNotFound(room_id)

        # 校验期间连接可能已被断开
        connection = self.broadcaster.get(connection_id)
        if connection is None:
            return False
        identity = connection.identity

        current = self.membership.lookup(connection_id)
        if current is not None:
            await self.leave(connection_id, current)
            # 离开旧房间的回写期间连接可能已被断开
            if self.broadcaster.get(connection_id) is None:
                return False

        count = self.membership.record_join(connection_id, room_id, identity)
        self.broadcaster.broadcast(
            room_id,
            ARRIVAL,
            ArrivalPayload(
                user_id=identity.user_id,
                name=identity.name,
                role=identity.role,
                active_users=self.membership.snapshot(room_id),
                active_count=count,
            ),
        )
        logger.info("%s 加入房间 | room=%s | 在线: %d", identity.name, room_id, count)

        await self._sync_active_users(room_id, identity.user_id, 1, count)
        return True

    async def leave(self, connection_id: str, room_id: str) -> bool:
        """离开房间。

        连接当前不在该房间时为空操作并返回 False，因此显式离开与断线清理
        竞争同一个连接时，只会产生一次 ``departure`` 广播和一次计数递减。
        """
        if self.membership.lookup(connection_id) != room_id:
            logger.debug("忽略离开请求：连接不在该房间 | conn=%s | room=%s", connection_id, room_id)
            return False

        user = self.membership.user_of(connection_id)
        if user is None:
            return False
        remaining = self.membership.record_leave(room_id, connection_id)
        self.broadcaster.broadcast(
            room_id,
            DEPARTURE,
            DeparturePayload(
                user_id=user.user_id,
                name=user.name,
                active_users=self.membership.snapshot(room_id),
                active_count=remaining,
            ),
        )
        logger.info("%s 离开房间 | room=%s | 在线: %d", user.name, room_id, remaining)

        # 同一用户在该房间还有其他连接时，只更新计数，保留其在线用户记录
        still_present = self.membership.has_user(room_id, user.user_id)
        await self._sync_active_users(
            room_id, None if still_present else user.user_id, -1, remaining,
        )
        return True

    # ── 读取 ──────────────────────────────────────────────────────────

    def roster(self, room_id: str) -> list[Identity]:
        return self.membership.snapshot(room_id)

    def online_count(self, room_id: str) -> int:
        return self.membership.size(room_id)

    # ── 尽力而为的持久化 ──────────────────────────────────────────────

    async def _sync_active_users(
        self,
        room_id: str,
        user_id: str | None,
        delta: int,
        new_count: int,
    ) -> None:
        """把在线人数回写到 rooms 集合。自身吞掉并记录所有异常。"""
        lock = self._sync_locks.setdefault(room_id, asyncio.Lock())
        self._pending_syncs[room_id] += 1
        try:
            async with lock:
                await self.rooms.apply_active_user_delta(room_id, user_id, delta, new_count)
        except Exception as e:
            logger.error("在线人数回写失败: %s", PersistenceSyncFailure(room_id, e), exc_info=True)
        finally:
            self._pending_syncs[room_id] -= 1
            if self._pending_syncs[room_id] <= 0:
                del self._pending_syncs[room_id]
                self._sync_locks.pop(room_id, None)
