"""
doubtroom.services.qa_service
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

问答业务服务 —— 提问、回答、投票、解决、置顶、采纳。

每个写操作成功落库后，再通过 ``EventBroadcaster.broadcast`` 通知问题所在房间；
广播的是落库后的记录，而不是客户端提交的原始数据。
"""
from __future__ import annotations

from typing import Any

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from doubtroom.core.exceptions import PermissionDenied, ResourceNotFound, RoomNotFound
from doubtroom.core.logging import get_logger
from doubtroom.db import parse_object_id, serialize_document
from doubtroom.db.question_repository import (
    AnswerRecord,
    AnswerRepository,
    Priority,
    QuestionRecord,
    QuestionRepository,
)
from doubtroom.db.room_repository import RoomRepository
from doubtroom.db.user_repository import UserRepository
from doubtroom.schemas.events import (
    ANSWER_POSTED,
    ANSWER_VOTED,
    QUESTION_PINNED,
    QUESTION_POSTED,
    QUESTION_RESOLVED,
    AnswerPostedPayload,
    AnswerVotedPayload,
    Identity,
    QuestionPinnedPayload,
    QuestionPostedPayload,
    QuestionResolvedPayload,
)
from doubtroom.services.broadcaster import EventBroadcaster

logger = get_logger(__name__)

_MODERATOR_ROLES = ("mentor", "admin")


def _is_moderator(identity: Identity) -> bool:
    return identity.role in _MODERATOR_ROLES


def _user_oid(identity: Identity) -> ObjectId:
    oid = parse_object_id(identity.user_id)
    if oid is None:
        raise PermissionDenied("Invalid user id")
    return oid


class QAService:
    """问答业务服务。

    Attributes:
        rooms: 房间仓库。
        users: 用户仓库（统计与声望）。
        questions: 问题仓库。
        answers: 回答仓库。
        broadcaster: 事件广播器（只读成员表）。
    """

    def __init__(
        self,
        rooms: RoomRepository,
        users: UserRepository,
        questions: QuestionRepository,
        answers: AnswerRepository,
        broadcaster: EventBroadcaster,
    ) -> None:
        self.rooms = rooms
        self.users = users
        self.questions = questions
        self.answers = answers
        self.broadcaster = broadcaster

    @classmethod
    def from_database(cls, db: AsyncIOMotorDatabase, broadcaster: EventBroadcaster) -> QAService:
        return cls(
            rooms=RoomRepository(db),
            users=UserRepository(db),
            questions=QuestionRepository(db),
            answers=AnswerRepository(db),
            broadcaster=broadcaster,
        )

    async def _require_question(self, question_id: str | ObjectId) -> QuestionRecord:
        question = await self.questions.get(question_id)
        if question is None:
            raise ResourceNotFound("Question not found")
        return question

    async def _require_answer(self, answer_id: str) -> AnswerRecord:
        answer = await self.answers.get(answer_id)
        if answer is None:
            raise ResourceNotFound("Answer not found")
        return answer

    async def _with_profiles(self, docs: list[dict[str, Any]], fields: tuple[str, ...]) -> list[dict[str, Any]]:
        """把 ``userId`` 等引用字段替换为用户公开资料（名字、角色、声望）。"""
        ids = [doc[field] for doc in docs for field in fields if isinstance(doc.get(field), ObjectId)]
        profiles = await self.users.get_profiles(ids)
        result = []
        for doc in docs:
            data = serialize_document(doc)
            for field in fields:
                profile = profiles.get(data.get(field))
                if profile is not None:
                    data[field] = serialize_document(profile)
            result.append(data)
        return result

    # ── 问题 ──────────────────────────────────────────────────────────

    async def create_question(
        self,
        identity: Identity,
        room_id: str,
        text: str,
        priority: Priority = "medium",
        image: str | None = None,
    ) -> dict[str, Any]:
        room = await self.rooms.get_active_room(room_id)
        if room is None:
            raise RoomNotFound(room_id)

        author = _user_oid(identity)
        question = await self.questions.create(room["_id"], author, text, priority, image)
        await self.rooms.increment_counter(room["_id"], "totalQuestions")
        await self.users.increment_stats(author, questionsAsked=1)

        data = serialize_document(question)
        question_id = data.pop("_id")
        self.broadcaster.broadcast(
            str(room["_id"]),
            QUESTION_POSTED,
            QuestionPostedPayload.model_validate({
                **data,
                "questionId": question_id,
                "userName": identity.name,
                "userRole": identity.role,
            }),
        )
        logger.info("新问题 | room=%s | question=%s | by=%s", room_id, question_id, identity.name)
        return {"_id": question_id, **data}

    async def resolve_question(self, identity: Identity, question_id: str) -> dict[str, Any]:
        question = await self._require_question(question_id)
        is_owner = str(question["userId"]) == identity.user_id
        if not _is_moderator(identity) and not is_owner:
            raise PermissionDenied("Not authorized to resolve this question")

        # 已解决的问题再次解决不重复计分、不重复广播
        if question.get("isResolved"):
            return serialize_document(question)

        updated = await self.questions.mark_resolved(question["_id"], _user_oid(identity))
        if updated is None:
            raise ResourceNotFound("Question not found")
        await self.rooms.increment_counter(question["roomId"], "resolvedQuestions")
        await self.users.increment_stats(question["userId"], questionsResolved=1, reputation=5)

        self.broadcaster.broadcast(
            str(question["roomId"]),
            QUESTION_RESOLVED,
            QuestionResolvedPayload(question_id=str(question["_id"]), resolved_by=identity.name),
        )
        return serialize_document(updated)

    async def toggle_pin(self, identity: Identity, question_id: str) -> dict[str, Any]:
        if not _is_moderator(identity):
            raise PermissionDenied(f"User role '{identity.role}' is not authorized to access this route")
        question = await self._require_question(question_id)

        updated = await self.questions.set_pinned(question["_id"], not question.get("isPinned", False))
        if updated is None:
            raise ResourceNotFound("Question not found")

        self.broadcaster.broadcast(
            str(question["roomId"]),
            QUESTION_PINNED,
            QuestionPinnedPayload(question_id=str(question["_id"]), is_pinned=updated["isPinned"]),
        )
        return serialize_document(updated)

    async def list_questions(
        self,
        room_id: str,
        resolved: bool | None = None,
        oldest_first: bool = False,
    ) -> list[dict[str, Any]]:
        """房间内的问题列表，置顶优先。已停用的房间仍可查看历史问题。"""
        room = await self.rooms.get_room(room_id)
        if room is None:
            raise RoomNotFound(room_id, message=f"Room not found with id of {room_id}")
        questions = await self.questions.list_by_room(room["_id"], resolved, oldest_first)
        return await self._with_profiles(questions, ("userId", "resolvedBy"))

    async def get_question(self, question_id: str) -> dict[str, Any]:
        question = await self._require_question(question_id)
        (data,) = await self._with_profiles([question], ("userId", "resolvedBy"))
        return data

    async def delete_question(self, identity: Identity, question_id: str) -> None:
        """提问者本人或管理员可以删除问题。"""
        question = await self._require_question(question_id)
        is_owner = str(question["userId"]) == identity.user_id
        if identity.role != "admin" and not is_owner:
            raise PermissionDenied("Not authorized to delete this question")
        await self.questions.delete(question["_id"])
        logger.info("问题已删除 | question=%s | by=%s", question_id, identity.name)

    async def room_stats(self, room_id: str) -> dict[str, Any]:
        """房间问题统计。在线人数由调用方从成员表补充。"""
        room = await self.rooms.get_room(room_id)
        if room is None:
            raise RoomNotFound(room_id, message=f"Room not found with id of {room_id}")
        total = await self.questions.count_by_room(room["_id"])
        resolved = await self.questions.count_by_room(room["_id"], resolved=True)
        return {
            "total_questions": total,
            "resolved_questions": resolved,
            "pending_questions": total - resolved,
            "resolution_rate": round(resolved / total * 100, 2) if total else 0.0,
        }

    # ── 回答 ──────────────────────────────────────────────────────────

    async def list_answers(self, question_id: str) -> list[dict[str, Any]]:
        """问题下的回答列表，已采纳优先，其次按票数。"""
        question = await self._require_question(question_id)
        answers = await self.answers.list_by_question(question["_id"])
        return await self._with_profiles(answers, ("userId",))

    async def delete_answer(self, identity: Identity, answer_id: str) -> None:
        """回答者本人或管理员可以删除回答。"""
        answer = await self._require_answer(answer_id)
        is_owner = str(answer["userId"]) == identity.user_id
        if identity.role != "admin" and not is_owner:
            raise PermissionDenied("Not authorized to delete this answer")
        await self.questions.increment_answer_count(answer["questionId"], -1)
        await self.answers.delete(answer["_id"])

    async def create_answer(self, identity: Identity, question_id: str, text: str) -> dict[str, Any]:
        question = await self._require_question(question_id)

        author = _user_oid(identity)
        answer = await self.answers.create(question["_id"], author, text, _is_moderator(identity))
        await self.questions.increment_answer_count(question["_id"])
        await self.users.increment_stats(author, answersGiven=1, reputation=2)

        data = serialize_document(answer)
        self.broadcaster.broadcast(
            str(question["roomId"]),
            ANSWER_POSTED,
            AnswerPostedPayload(
                question_id=str(question["_id"]),
                answer=data,
                user_name=identity.name,
                user_role=identity.role,
            ),
        )
        return data

    async def vote_answer(self, identity: Identity, answer_id: str) -> dict[str, Any]:
        answer = await self._require_answer(answer_id)

        updated, delta = await self.answers.toggle_vote(answer["_id"], _user_oid(identity))
        if updated is None:
            raise ResourceNotFound("Answer not found")
        await self.users.increment_stats(answer["userId"], reputation=delta)

        question = await self.questions.get(answer["questionId"])
        if question is not None:
            self.broadcaster.broadcast(
                str(question["roomId"]),
                ANSWER_VOTED,
                AnswerVotedPayload(
                    answer_id=str(answer["_id"]),
                    votes=updated["votes"],
                    voter_id=identity.user_id,
                ),
            )
        return serialize_document(updated)

    async def accept_answer(self, identity: Identity, answer_id: str) -> dict[str, Any]:
        answer = await self._require_answer(answer_id)
        question = await self._require_question(answer["questionId"])

        is_owner = str(question["userId"]) == identity.user_id
        if not _is_moderator(identity) and not is_owner:
            raise PermissionDenied("Not authorized to accept this answer")

        updated = await self.answers.accept(answer)
        if updated is None:
            raise ResourceNotFound("Answer not found")
        await self.users.increment_stats(answer["userId"], reputation=10)
        return serialize_document(updated)
