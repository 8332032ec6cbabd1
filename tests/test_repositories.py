"""
tests.test_repositories
~~~~~~~~~~~~~~~~~~~~~~~

仓库层单元测试 —— 用 mock 的 motor collection 校验查询与更新语句。
"""
from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId

from doubtroom.db import _mask_uri, parse_object_id, serialize_document
from doubtroom.db.question_repository import AnswerRepository, QuestionRepository
from doubtroom.db.room_repository import RoomRepository
from doubtroom.db.user_repository import UserRepository


def mock_db() -> tuple[MagicMock, MagicMock]:
    collection = MagicMock()
    collection.find_one = AsyncMock(return_value=None)
    collection.update_one = AsyncMock()
    collection.find_one_and_update = AsyncMock(return_value=None)
    collection.create_index = AsyncMock()
    db = MagicMock()
    db.__getitem__.return_value = collection
    return db, collection


class TestHelpers:
    def test_parse_object_id(self) -> None:
        oid = ObjectId()
        assert parse_object_id(str(oid)) == oid
        assert parse_object_id(oid) is oid
        assert parse_object_id("ghost") is None
        assert parse_object_id(None) is None

    def test_serialize_document(self) -> None:
        oid = ObjectId()
        when = datetime(2024, 1, 1, tzinfo=timezone.utc)
        doc = {"_id": oid, "votedBy": [oid], "meta": {"createdAt": when}, "votes": 2}
        assert serialize_document(doc) == {
            "_id": str(oid),
            "votedBy": [str(oid)],
            "meta": {"createdAt": when.isoformat()},
            "votes": 2,
        }

    def test_mask_uri(self) -> None:
        assert _mask_uri("mongodb://admin:secret@db:27017/x") == "mongodb://admin:***@db:27017/x"
        assert _mask_uri("mongodb://localhost:27017") == "mongodb://localhost:27017"


class TestRoomRepository:
    """房间查询与在线人数回写。"""

    @pytest.mark.asyncio
    async def test_malformed_id_is_not_found(self) -> None:
        db, collection = mock_db()
        assert await RoomRepository(db).get_active_room("ghost") is None
        collection.find_one.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_inactive_room_is_not_found(self) -> None:
        db, collection = mock_db()
        oid = ObjectId()
        collection.find_one = AsyncMock(return_value={"_id": oid, "isActive": False})
        assert await RoomRepository(db).get_active_room(str(oid)) is None

    @pytest.mark.asyncio
    async def test_apply_delta_join(self) -> None:
        db, collection = mock_db()
        room, user = ObjectId(), ObjectId()
        await RoomRepository(db).apply_active_user_delta(str(room), str(user), 1, 3)
        collection.update_one.assert_awaited_once_with(
            {"_id": room}, {"$set": {"activeCount": 3}, "$addToSet": {"activeUsers": user}},
        )

    @pytest.mark.asyncio
    async def test_apply_delta_leave(self) -> None:
        db, collection = mock_db()
        room, user = ObjectId(), ObjectId()
        await RoomRepository(db).apply_active_user_delta(str(room), str(user), -1, 0)
        collection.update_one.assert_awaited_once_with(
            {"_id": room}, {"$set": {"activeCount": 0}, "$pull": {"activeUsers": user}},
        )

    @pytest.mark.asyncio
    async def test_apply_delta_count_only(self) -> None:
        db, collection = mock_db()
        room = ObjectId()
        await RoomRepository(db).apply_active_user_delta(str(room), None, -1, 1)
        collection.update_one.assert_awaited_once_with({"_id": room}, {"$set": {"activeCount": 1}})


class TestQuestionRepository:
    """房间问题列表与统计。"""

    @pytest.mark.asyncio
    async def test_list_by_room_pinned_first(self) -> None:
        db, collection = mock_db()
        cursor = collection.find.return_value.sort.return_value.limit.return_value
        cursor.to_list = AsyncMock(return_value=[{"_id": ObjectId()}])
        room = ObjectId()

        result = await QuestionRepository(db).list_by_room(room, resolved=False, oldest_first=True)

        assert len(result) == 1
        collection.find.assert_called_once_with({"roomId": room, "isResolved": False})
        collection.find.return_value.sort.assert_called_once_with([("isPinned", -1), ("createdAt", 1)])
        collection.find.return_value.sort.return_value.limit.assert_called_once_with(100)
        index_names = [call.kwargs["name"] for call in collection.create_index.await_args_list]
        assert "idx_room_resolved_time" in index_names

    @pytest.mark.asyncio
    async def test_list_by_room_unfiltered_newest_first(self) -> None:
        db, collection = mock_db()
        cursor = collection.find.return_value.sort.return_value.limit.return_value
        cursor.to_list = AsyncMock(return_value=[])
        room = ObjectId()

        await QuestionRepository(db).list_by_room(room)

        collection.find.assert_called_once_with({"roomId": room})
        collection.find.return_value.sort.assert_called_once_with([("isPinned", -1), ("createdAt", -1)])

    @pytest.mark.asyncio
    async def test_count_and_delete(self) -> None:
        db, collection = mock_db()
        collection.count_documents = AsyncMock(return_value=2)
        collection.delete_one = AsyncMock(return_value=MagicMock(deleted_count=0))
        room, question = ObjectId(), ObjectId()
        repo = QuestionRepository(db)

        assert await repo.count_by_room(room, resolved=True) == 2
        collection.count_documents.assert_awaited_once_with({"roomId": room, "isResolved": True})
        assert await repo.delete(question) is False
        collection.delete_one.assert_awaited_once_with({"_id": question})


class TestAnswerRepository:
    """投票切换。"""

    @pytest.mark.asyncio
    async def test_first_vote(self) -> None:
        db, collection = mock_db()
        collection.find_one_and_update = AsyncMock(return_value={"votes": 1})
        updated, delta = await AnswerRepository(db).toggle_vote(ObjectId(), ObjectId())
        assert (updated, delta) == ({"votes": 1}, 1)

    @pytest.mark.asyncio
    async def test_second_vote_retracts(self) -> None:
        db, collection = mock_db()
        collection.find_one_and_update = AsyncMock(side_effect=[None, {"votes": 0}])
        updated, delta = await AnswerRepository(db).toggle_vote(ObjectId(), ObjectId())
        assert (updated, delta) == ({"votes": 0}, -1)

    @pytest.mark.asyncio
    async def test_missing_answer(self) -> None:
        db, _ = mock_db()
        assert await AnswerRepository(db).toggle_vote(ObjectId(), ObjectId()) == (None, 0)


class TestUserRepository:
    @pytest.mark.asyncio
    async def test_increment_stats(self) -> None:
        db, collection = mock_db()
        user = ObjectId()
        repo = UserRepository(db)
        await repo.increment_stats(user, reputation=2, answersGiven=1)
        await repo.increment_stats(user)
        collection.update_one.assert_awaited_once_with(
            {"_id": user}, {"$inc": {"reputation": 2, "answersGiven": 1}},
        )

    @pytest.mark.asyncio
    async def test_get_by_id_hides_password(self) -> None:
        db, collection = mock_db()
        user = ObjectId()
        await UserRepository(db).get_by_id(str(user))
        collection.find_one.assert_awaited_once_with({"_id": user}, {"password": 0})

    @pytest.mark.asyncio
    async def test_get_profiles(self) -> None:
        db, collection = mock_db()
        alice = ObjectId()
        collection.find.return_value.__aiter__.return_value = [{"_id": alice, "name": "Alice"}]
        repo = UserRepository(db)

        assert await repo.get_profiles([]) == {}
        collection.find.assert_not_called()

        profiles = await repo.get_profiles([alice, alice])
        assert profiles == {str(alice): {"_id": alice, "name": "Alice"}}
        collection.find.assert_called_once_with(
            {"_id": {"$in": [alice]}}, {"name": 1, "role": 1, "reputation": 1},
        )
