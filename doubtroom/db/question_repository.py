"""
doubtroom.db.question_repository
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

问题与回答的持久化仓库 —— 封装 ``questions`` / ``answers`` 两个集合。
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal, TypedDict

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from doubtroom.core.logging import get_logger
from doubtroom.db import parse_object_id

logger = get_logger(__name__)

Priority = Literal["low", "medium", "high"]


class QuestionRecord(TypedDict, total=False):
    """代表 MongoDB 中 questions 集合的单条记录"""
    _id: ObjectId
    roomId: ObjectId
    userId: ObjectId
    text: str
    priority: Priority
    image: str | None
    isResolved: bool
    resolvedBy: ObjectId
    resolvedAt: datetime
    isPinned: bool
    answerCount: int
    createdAt: datetime
    updatedAt: datetime


class AnswerRecord(TypedDict, total=False):
    """代表 MongoDB 中 answers 集合的单条记录"""
    _id: ObjectId
    questionId: ObjectId
    userId: ObjectId
    text: str
    votes: int
    votedBy: list[ObjectId]
    isAccepted: bool
    isByMentor: bool
    createdAt: datetime
    updatedAt: datetime


def _now() -> datetime:
    return datetime.now(timezone.utc)


class QuestionRepository:
    """问题仓库。"""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self.db = db
        self._collection = db["questions"]
        self._indexes_created = False

    async def _ensure_indexes(self) -> None:
        if self._indexes_created:
            return
        # 房间内按解决状态 + 时间倒序列出问题
        await self._collection.create_index(
            [("roomId", 1), ("isResolved", 1), ("createdAt", -1)],
            name="idx_room_resolved_time",
        )
        await self._collection.create_index([("userId", 1)], name="idx_user")
        self._indexes_created = True
        logger.debug("questions 索引已就绪")

    async def create(
        self,
        room_id: ObjectId,
        user_id: ObjectId,
        text: str,
        priority: Priority = "medium",
        image: str | None = None,
    ) -> QuestionRecord:
        await self._ensure_indexes()
        now = _now()
        doc: QuestionRecord = {
            "roomId": room_id,
            "userId": user_id,
            "text": text.strip(),
            "priority": priority,
            "image": image,
            "isResolved": False,
            "isPinned": False,
            "answerCount": 0,
            "createdAt": now,
            "updatedAt": now,
        }
        result = await self._collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        return doc

    async def get(self, question_id: str | ObjectId) -> QuestionRecord | None:
        oid = parse_object_id(question_id)
        if oid is None:
            return None
        return await self._collection.find_one({"_id": oid})

    async def mark_resolved(self, question_id: ObjectId, resolver_id: ObjectId) -> QuestionRecord | None:
        now = _now()
        return await self._collection.find_one_and_update(
            {"_id": question_id},
            {"$set": {
                "isResolved": True,
                "resolvedBy": resolver_id,
                "resolvedAt": now,
                "updatedAt": now,
            }},
            return_document=ReturnDocument.AFTER,
        )

    async def set_pinned(self, question_id: ObjectId, pinned: bool) -> QuestionRecord | None:
        return await self._collection.find_one_and_update(
            {"_id": question_id},
            {"$set": {"isPinned": pinned, "updatedAt": _now()}},
            return_document=ReturnDocument.AFTER,
        )

    async def increment_answer_count(self, question_id: ObjectId, amount: int = 1) -> None:
        await self._collection.update_one(
            {"_id": question_id}, {"$inc": {"answerCount": amount}},
        )

    async def list_by_room(
        self,
        room_id: ObjectId,
        resolved: bool | None = None,
        oldest_first: bool = False,
        limit: int = 100,
    ) -> list[QuestionRecord]:
        """列出房间内的问题：置顶优先，其次按创建时间（默认最新在前）。

        Args:
            room_id: 房间 ID。
            resolved: 只看已解决 / 未解决；``None`` 表示不过滤。
            oldest_first: 是否按创建时间正序。
            limit: 最多返回条数。
        """
        await self._ensure_indexes()
        query: dict = {"roomId": room_id}
        if resolved is not None:
            query["isResolved"] = resolved
        cursor = (
            self._collection
            .find(query)
            .sort([("isPinned", -1), ("createdAt", 1 if oldest_first else -1)])
            .limit(limit)
        )
        return await cursor.to_list(length=limit)

    async def count_by_room(self, room_id: ObjectId, resolved: bool | None = None) -> int:
        query: dict = {"roomId": room_id}
        if resolved is not None:
            query["isResolved"] = resolved
        return await self._collection.count_documents(query)

    async def delete(self, question_id: ObjectId) -> bool:
        result = await self._collection.delete_one({"_id": question_id})
        return result.deleted_count > 0


class AnswerRepository:
    """回答仓库。"""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self.db = db
        self._collection = db["answers"]
        self._indexes_created = False

    async def _ensure_indexes(self) -> None:
        if self._indexes_created:
            return
        await self._collection.create_index(
            [("questionId", 1), ("votes", -1)], name="idx_question_votes",
        )
        await self._collection.create_index([("userId", 1)], name="idx_user")
        self._indexes_created = True
        logger.debug("answers 索引已就绪")

    async def create(
        self,
        question_id: ObjectId,
        user_id: ObjectId,
        text: str,
        is_by_mentor: bool,
    ) -> AnswerRecord:
        await self._ensure_indexes()
        now = _now()
        doc: AnswerRecord = {
            "questionId": question_id,
            "userId": user_id,
            "text": text.strip(),
            "votes": 0,
            "votedBy": [],
            "isAccepted": False,
            "isByMentor": is_by_mentor,
            "createdAt": now,
            "updatedAt": now,
        }
        result = await self._collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        return doc

    async def get(self, answer_id: str | ObjectId) -> AnswerRecord | None:
        oid = parse_object_id(answer_id)
        if oid is None:
            return None
        return await self._collection.find_one({"_id": oid})

    async def list_by_question(self, question_id: ObjectId) -> list[AnswerRecord]:
        """列出问题下的回答：已采纳优先，其次票数降序、时间倒序。"""
        await self._ensure_indexes()
        cursor = self._collection.find({"questionId": question_id}).sort(
            [("isAccepted", -1), ("votes", -1), ("createdAt", -1)],
        )
        return await cursor.to_list(length=None)

    async def delete(self, answer_id: ObjectId) -> bool:
        result = await self._collection.delete_one({"_id": answer_id})
        return result.deleted_count > 0

    async def toggle_vote(self, answer_id: ObjectId, voter_id: ObjectId) -> tuple[AnswerRecord | None, int]:
        """切换投票：已投则撤销，未投则投票。

        Returns:
            ``(更新后的回答, 票数变化)``，变化为 ``+1`` 或 ``-1``；
            回答不存在时返回 ``(None, 0)``。
        """
        # 条件更新避免并发投票时重复计数
        updated = await self._collection.find_one_and_update(
            {"_id": answer_id, "votedBy": {"$ne": voter_id}},
            {"$push": {"votedBy": voter_id}, "$inc": {"votes": 1}, "$set": {"updatedAt": _now()}},
            return_document=ReturnDocument.AFTER,
        )
        if updated is not None:
            return updated, 1
        updated = await self._collection.find_one_and_update(
            {"_id": answer_id, "votedBy": voter_id},
            {"$pull": {"votedBy": voter_id}, "$inc": {"votes": -1}, "$set": {"updatedAt": _now()}},
            return_document=ReturnDocument.AFTER,
        )
        if updated is not None:
            return updated, -1
        return None, 0

    async def accept(self, answer: AnswerRecord) -> AnswerRecord | None:
        """采纳一个回答，同一问题下的其他回答取消采纳。"""
        await self._collection.update_many(
            {"questionId": answer["questionId"]}, {"$set": {"isAccepted": False}},
        )
        return await self._collection.find_one_and_update(
            {"_id": answer["_id"]},
            {"$set": {"isAccepted": True, "updatedAt": _now()}},
            return_document=ReturnDocument.AFTER,
        )
