"""
doubtroom.db.room_repository
~~~~~~~~~~~~~~~~~~~~~~~~~~~~

房间持久化仓库 —— 封装 MongoDB ``rooms`` 集合。

房间的创建/删除不归本服务管理；这里只负责读取房间、维护统计计数，
以及在线状态协调器回写的 ``activeCount`` / ``activeUsers`` 镜像字段。
"""
from __future__ import annotations

from datetime import datetime
from typing import TypedDict

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from doubtroom.core.logging import get_logger
from doubtroom.db import parse_object_id

logger = get_logger(__name__)

_COLLECTION_NAME = "rooms"


class RoomRecord(TypedDict, total=False):
    """代表 MongoDB 中 rooms 集合的单条记录"""
    _id: ObjectId
    title: str
    topic: str
    description: str
    isPublic: bool
    isActive: bool
    createdBy: ObjectId
    activeUsers: list[ObjectId]
    activeCount: int
    totalQuestions: int
    resolvedQuestions: int
    createdAt: datetime


class RoomRepository:
    """房间仓库。

    Attributes:
        db: MongoDB 数据库实例。
    """

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self.db = db
        self._collection = db[_COLLECTION_NAME]
        self._indexes_created = False

    async def _ensure_indexes(self) -> None:
        """确保索引已创建（惰性，首次操作时执行一次）。"""
        if self._indexes_created:
            return
        await self._collection.create_index(
            [("topic", 1), ("isActive", 1)], name="idx_topic_active",
        )
        await self._collection.create_index([("createdBy", 1)], name="idx_created_by")
        self._indexes_created = True
        logger.debug("rooms 索引已就绪")

    async def get_room(self, room_id: str) -> RoomRecord | None:
        """按 ID 获取房间；ID 格式不合法视为不存在。"""
        oid = parse_object_id(room_id)
        if oid is None:
            return None
        return await self._collection.find_one({"_id": oid})

    async def get_active_room(self, room_id: str) -> RoomRecord | None:
        """获取存在且处于启用状态的房间，否则返回 ``None``。"""
        room = await self.get_room(room_id)
        if room is None or not room.get("isActive", True):
            return None
        return room

    async def list_active_rooms(
        self,
        topic: str | None = None,
        limit: int = 50,
    ) -> list[RoomRecord]:
        """列出启用中的房间，按在线人数降序、创建时间倒序。"""
        await self._ensure_indexes()
        query: dict = {"isActive": True}
        if topic:
            query["topic"] = topic
        cursor = (
            self._collection
            .find(query)
            .sort([("activeCount", -1), ("createdAt", -1)])
            .limit(limit)
        )
        return await cursor.to_list(length=limit)

    async def apply_active_user_delta(
        self,
        room_id: str,
        user_id: str | None,
        delta: int,
        new_count: int,
    ) -> None:
        """回写在线人数与在线用户集合。

        ``activeCount`` 直接写入内存中的最新值；``delta > 0`` 时把用户加入
        ``activeUsers``，``delta < 0`` 时移除。``user_id`` 为 ``None`` 时只更新计数。

        Args:
            room_id: 房间 ID。
            user_id: 加入/离开的用户 ID。
            delta: ``+1`` 或 ``-1``。
            new_count: 内存成员表中的最新人数。
        """
        oid = parse_object_id(room_id)
        if oid is None:
            return
        update: dict = {"$set": {"activeCount": new_count}}
        if user_id is not None:
            member = parse_object_id(user_id) or user_id
            operator = "$addToSet" if delta > 0 else "$pull"
            update[operator] = {"activeUsers": member}
        await self._collection.update_one({"_id": oid}, update)

    async def increment_counter(self, room_id: ObjectId, field: str, amount: int = 1) -> None:
        """对 ``totalQuestions`` / ``resolvedQuestions`` 等统计字段做原子自增。"""
        await self._collection.update_one({"_id": room_id}, {"$inc": {field: amount}})
