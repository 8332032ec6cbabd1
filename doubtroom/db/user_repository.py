"""
doubtroom.db.user_repository
~~~~~~~~~~~~~~~~~~~~~~~~~~~~

用户读取与统计更新。注册、登录、密码哈希不在本服务范围内，
令牌由 ``scripts/issue_token.py`` 为已有用户签发。
"""
from __future__ import annotations

from typing import TypedDict

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from doubtroom.db import parse_object_id

_COLLECTION_NAME = "users"


class UserRecord(TypedDict, total=False):
    """代表 MongoDB 中 users 集合的单条记录（不含密码字段）"""
    _id: ObjectId
    name: str
    email: str
    role: str
    isActive: bool
    reputation: int
    questionsAsked: int
    questionsResolved: int
    answersGiven: int


class UserRepository:
    """用户仓库。"""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self.db = db
        self._collection = db[_COLLECTION_NAME]

    async def get_by_id(self, user_id: str) -> UserRecord | None:
        oid = parse_object_id(user_id)
        if oid is None:
            return None
        return await self._collection.find_one({"_id": oid}, {"password": 0})

    async def increment_stats(self, user_id: ObjectId | str, **deltas: int) -> None:
        """原子地累加用户统计，例如 ``increment_stats(uid, reputation=2, answersGiven=1)``。"""
        oid = parse_object_id(user_id)
        if oid is None or not deltas:
            return
        await self._collection.update_one({"_id": oid}, {"$inc": deltas})

    async def get_profiles(self, user_ids: list[ObjectId]) -> dict[str, UserRecord]:
        """批量读取公开资料（名字、角色、声望），按字符串 ID 索引。"""
        if not user_ids:
            return {}
        cursor = self._collection.find(
            {"_id": {"$in": list(set(user_ids))}},
            {"name": 1, "role": 1, "reputation": 1},
        )
        return {str(user["_id"]): user async for user in cursor}
