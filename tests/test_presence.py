"""
tests.test_presence
~~~~~~~~~~~~~~~~~~~

PresenceCoordinator 单元测试 —— 加入/离开/断线的广播内容、幂等性与
尽力而为的在线人数回写。
"""
from __future__ import annotations

import asyncio
import logging
from unittest.mock import AsyncMock

import pytest

from doubtroom.core.exceptions import DoubtRoomError, PersistenceSyncFailure, RoomNotFound
from doubtroom.schemas.events import ARRIVAL, DEPARTURE


class TestJoin:
    """测试加入房间。"""

    @pytest.mark.asyncio
    async def test_first_arrival(self, hub, connect, room_repo) -> None:
        """第一个加入者收到只含自己的花名册。"""
        alice = connect("a", "Alice")
        assert await hub.presence.join("a", "r1") is True

        (arrival,) = alice.events(ARRIVAL)
        assert arrival["userId"] == alice.identity.user_id
        assert arrival["name"] == "Alice"
        assert arrival["activeCount"] == 1
        assert [u["name"] for u in arrival["activeUsers"]] == ["Alice"]
        room_repo.apply_active_user_delta.assert_awaited_once_with("r1", alice.identity.user_id, 1, 1)

    @pytest.mark.asyncio
    async def test_second_arrival_reaches_everyone(self, hub, connect) -> None:
        """B 加入后，A 与 B 都收到人数为 2 的 arrival。"""
        alice = connect("a", "Alice")
        bob = connect("b", "Bob")
        await hub.presence.join("a", "r1")
        await hub.presence.join("b", "r1")

        for conn in (alice, bob):
            last = conn.events(ARRIVAL)[-1]
            assert last["name"] == "Bob"
            assert last["activeCount"] == 2
            assert [u["name"] for u in last["activeUsers"]] == ["Alice", "Bob"]
        assert hub.presence.online_count("r1") == 2

    @pytest.mark.asyncio
    async def test_ghost_room_raises_without_side_effects(self, hub, connect, room_repo) -> None:
        """不存在的房间：抛 RoomNotFound，成员表不变，不广播，不回写。"""
        alice = connect("a", "Alice")
        with pytest.raises(RoomNotFound) as exc_info:
            await hub.presence.join("a", "ghost")

        assert exc_info.value.message == "Room not found or inactive"
        assert hub.presence.current_room("a") is None
        assert hub.membership.room_ids() == []
        assert alice.frames == []
        room_repo.apply_active_user_delta.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_join_other_room_leaves_first(self, hub, connect) -> None:
        """已在 r1 的连接加入 r2：r1 的成员先收到 departure。"""
        alice = connect("a", "Alice")
        bob = connect("b", "Bob")
        await hub.presence.join("a", "r1")
        await hub.presence.join("b", "r1")
        await hub.presence.join("a", "r2")

        departure = bob.events(DEPARTURE)[-1]
        assert departure["name"] == "Alice"
        assert departure["activeCount"] == 1
        assert hub.presence.current_room("a") == "r2"
        assert hub.presence.online_count("r1") == 1
        assert alice.events(ARRIVAL)[-1]["activeCount"] == 1
        # 离开 r1 的 departure 不会发给已离开的 Alice
        assert alice.events(DEPARTURE) == []

    @pytest.mark.asyncio
    async def test_rejoin_same_room(self, hub, connect) -> None:
        """重复加入同一房间：先 departure 后 arrival，人数不变。"""
        connect("a", "Alice")
        bob = connect("b", "Bob")
        await hub.presence.join("a", "r1")
        await hub.presence.join("b", "r1")
        bob.frames.clear()

        await hub.presence.join("a", "r1")
        assert bob.names() == [DEPARTURE, ARRIVAL]
        assert bob.events(ARRIVAL)[0]["activeCount"] == 2

    @pytest.mark.asyncio
    async def test_join_after_disconnect_during_lookup(self, hub, connect, room_repo, active_rooms) -> None:
        """房间校验期间连接已断开：返回 False，不登记成员。"""

        async def slow_lookup(room_id: str):
            await hub.presence.disconnect("a")
            return active_rooms.get(room_id)

        room_repo.get_active_room = AsyncMock(side_effect=slow_lookup)
        connect("a", "Alice")
        assert await hub.presence.join("a", "r1") is False
        assert hub.presence.online_count("r1") == 0

    @pytest.mark.asyncio
    async def test_join_after_disconnect_during_leave_sync(self, hub, connect, room_repo) -> None:
        """换房间时，离开旧房间的回写期间连接已断开：返回 False，不登记到新房间。"""

        async def disconnect_on_leave(room_id, user_id, delta, new_count):
            if delta < 0:
                await hub.presence.disconnect("a")

        connect("a", "Alice")
        await hub.presence.join("a", "r1")
        room_repo.apply_active_user_delta = AsyncMock(side_effect=disconnect_on_leave)

        assert await hub.presence.join("a", "r2") is False
        assert hub.presence.current_room("a") is None
        assert hub.presence.online_count("r2") == 0
        assert hub.membership.room_ids() == []


class TestLeave:
    """测试离开与断线。"""

    @pytest.mark.asyncio
    async def test_disconnect_broadcasts_departure(self, hub, connect, room_repo) -> None:
        alice = connect("a", "Alice")
        bob = connect("b", "Bob")
        await hub.presence.join("a", "r1")
        await hub.presence.join("b", "r1")

        await hub.presence.disconnect("a")

        (departure,) = bob.events(DEPARTURE)
        assert departure["userId"] == alice.identity.user_id
        assert departure["activeCount"] == 1
        assert [u["name"] for u in departure["activeUsers"]] == ["Bob"]
        assert alice.events(DEPARTURE) == []
        room_repo.apply_active_user_delta.assert_awaited_with("r1", alice.identity.user_id, -1, 1)

    @pytest.mark.asyncio
    async def test_leave_then_disconnect_counts_once(self, hub, connect, room_repo) -> None:
        """显式离开后再断线：只有一次 departure、一次递减。"""
        connect("a", "Alice")
        bob = connect("b", "Bob")
        await hub.presence.join("a", "r1")
        await hub.presence.join("b", "r1")
        room_repo.apply_active_user_delta.reset_mock()

        assert await hub.presence.leave("a", "r1") is True
        assert await hub.presence.leave("a", "r1") is False
        await hub.presence.disconnect("a")

        assert len(bob.events(DEPARTURE)) == 1
        room_repo.apply_active_user_delta.assert_awaited_once()
        assert hub.presence.online_count("r1") == 1

    @pytest.mark.asyncio
    async def test_leave_wrong_room_is_noop(self, hub, connect) -> None:
        bob = connect("b", "Bob")
        connect("a", "Alice")
        await hub.presence.join("a", "r1")
        await hub.presence.join("b", "r1")
        bob.frames.clear()

        assert await hub.presence.leave("a", "r2") is False
        assert bob.frames == []
        assert hub.presence.current_room("a") == "r1"

    @pytest.mark.asyncio
    async def test_leave_without_identity_is_noop(self, hub, connect, room_repo, monkeypatch) -> None:
        """成员表查不到连接的身份时，离开为空操作，不广播也不回写。"""
        bob = connect("b", "Bob")
        connect("a", "Alice")
        await hub.presence.join("a", "r1")
        await hub.presence.join("b", "r1")
        bob.frames.clear()
        room_repo.apply_active_user_delta.reset_mock()
        monkeypatch.setattr(hub.membership, "user_of", lambda connection_id: None)

        assert await hub.presence.leave("a", "r1") is False
        assert bob.frames == []
        assert hub.presence.online_count("r1") == 2
        room_repo.apply_active_user_delta.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_disconnect_never_joined(self, hub, connect, room_repo) -> None:
        """从未加入房间的连接断开：无广播、无回写，可重复调用。"""
        connect("a", "Alice")
        await hub.presence.disconnect("a")
        await hub.presence.disconnect("a")
        room_repo.apply_active_user_delta.assert_not_awaited()
        assert hub.broadcaster.connection_count == 0

    @pytest.mark.asyncio
    async def test_last_leave_prunes_room(self, hub, connect) -> None:
        connect("a", "Alice")
        await hub.presence.join("a", "r1")
        await hub.presence.disconnect("a")
        assert hub.membership.room_ids() == []
        assert hub.presence.roster("r1") == []

    @pytest.mark.asyncio
    async def test_same_user_second_tab_keeps_active_user(self, hub, connect, room_repo) -> None:
        """同一用户另一个标签页仍在房间：只更新计数，不移除在线用户记录。"""
        tab1 = connect("tab1", "Alice")
        connect("tab2", "Alice", user_id=tab1.identity.user_id)
        await hub.presence.join("tab1", "r1")
        await hub.presence.join("tab2", "r1")

        await hub.presence.disconnect("tab1")
        room_repo.apply_active_user_delta.assert_awaited_with("r1", None, -1, 1)

        await hub.presence.disconnect("tab2")
        room_repo.apply_active_user_delta.assert_awaited_with("r1", tab1.identity.user_id, -1, 0)


class TestRosterAccuracy:
    """N 个加入、M 个离开后，花名册恰好是剩下的 N-M 个。"""

    @pytest.mark.asyncio
    async def test_roster_after_churn(self, hub, connect) -> None:
        names = [f"user{i}" for i in range(6)]
        for i, name in enumerate(names):
            connect(f"c{i}", name)
        await asyncio.gather(*(hub.presence.join(f"c{i}", "r1") for i in range(6)))
        await asyncio.gather(hub.presence.disconnect("c1"), hub.presence.disconnect("c4"))

        roster = hub.presence.roster("r1")
        assert sorted(u.name for u in roster) == ["user0", "user2", "user3", "user5"]
        assert hub.presence.online_count("r1") == 4


class TestPersistence:
    """在线人数回写是尽力而为的。"""

    @pytest.mark.asyncio
    async def test_sync_failure_is_swallowed(self, hub, connect, room_repo) -> None:
        """回写失败不影响加入结果与广播。"""
        room_repo.apply_active_user_delta = AsyncMock(side_effect=RuntimeError("mongo down"))
        alice = connect("a", "Alice")

        assert await hub.presence.join("a", "r1") is True
        assert alice.events(ARRIVAL)[0]["activeCount"] == 1
        assert hub.presence.online_count("r1") == 1
        await hub.presence.disconnect("a")
        assert hub.presence.online_count("r1") == 0

    @pytest.mark.asyncio
    async def test_sync_failure_is_logged(self, hub, connect, room_repo, caplog) -> None:
        """回写失败记一条 ERROR 日志，带房间号与原始异常。"""
        room_repo.apply_active_user_delta = AsyncMock(side_effect=RuntimeError("mongo down"))
        connect("a", "Alice")

        with caplog.at_level(logging.ERROR, logger="doubtroom.services.presence"):
            await hub.presence.join("a", "r1")

        (record,) = [r for r in caplog.records if r.name == "doubtroom.services.presence"]
        assert "active user sync failed for room r1: mongo down" in record.getMessage()
        assert isinstance(record.exc_info[1], RuntimeError)

    def test_sync_failure_is_not_a_client_error(self) -> None:
        """回写失败是内部异常，不会被 REST 层映射为错误响应。"""
        failure = PersistenceSyncFailure("r1", RuntimeError("mongo down"))
        assert not isinstance(failure, DoubtRoomError)
        assert not hasattr(failure, "status_code")
        assert failure.room_id == "r1"

    @pytest.mark.asyncio
    async def test_syncs_applied_in_mutation_order(self, hub, connect, room_repo) -> None:
        """同一房间的回写按内存修改顺序执行，最终写入的是最新人数。"""
        written: list[int] = []

        async def slow_write(room_id, user_id, delta, new_count):
            await asyncio.sleep(0.01 if new_count == 1 else 0)
            written.append(new_count)

        room_repo.apply_active_user_delta = AsyncMock(side_effect=slow_write)
        connect("a", "Alice")
        connect("b", "Bob")
        await asyncio.gather(hub.presence.join("a", "r1"), hub.presence.join("b", "r1"))

        assert written == [1, 2]
        assert hub.presence._sync_locks == {}
