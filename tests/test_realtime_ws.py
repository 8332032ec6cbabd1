"""
tests.test_realtime_ws
~~~~~~~~~~~~~~~~~~~~~~

``/ws`` 端点集成测试 —— 使用 ``TestClient`` 驱动真实的 FastAPI 应用，
仓库层全部是 mock，不需要 MongoDB。
"""
from __future__ import annotations

import pytest
from fastapi import WebSocketDisconnect, status
from fastapi.testclient import TestClient


def join(room_id: str) -> dict:
    return {"event": "joinRoom", "data": {"roomId": room_id}}


class TestHandshake:
    """握手阶段的身份校验。"""

    def test_missing_token_rejected(self, app, hub) -> None:
        with TestClient(app) as client:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                with client.websocket_connect("/ws"):
                    pass
        assert exc_info.value.code == status.WS_1008_POLICY_VIOLATION
        assert hub.broadcaster.connection_count == 0

    def test_inactive_user_rejected(self, app, token_for) -> None:
        with TestClient(app) as client:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                with client.websocket_connect(f"/ws?token={token_for('Ghost')}"):
                    pass
        assert exc_info.value.code == status.WS_1008_POLICY_VIOLATION

    def test_bearer_header_accepted(self, app, token_for) -> None:
        headers = {"Authorization": f"Bearer {token_for('Alice')}"}
        with TestClient(app) as client:
            with client.websocket_connect("/ws", headers=headers) as ws:
                ws.send_json(join("r1"))
                arrival = ws.receive_json()
        assert arrival["event"] == "arrival"
        assert arrival["data"]["name"] == "Alice"


class TestSession:
    """完整会话：加入、转发、断线清理。"""

    def test_two_clients_share_a_room(self, app, hub, token_for, room_repo) -> None:
        with TestClient(app) as client:
            with client.websocket_connect(f"/ws?token={token_for('Alice')}") as ws_a:
                ws_a.send_json(join("r1"))
                first = ws_a.receive_json()
                assert first["data"]["activeCount"] == 1

                with client.websocket_connect(f"/ws?token={token_for('Bob')}") as ws_b:
                    ws_b.send_json(join("r1"))
                    seen_by_a = ws_a.receive_json()
                    seen_by_b = ws_b.receive_json()
                    for message in (seen_by_a, seen_by_b):
                        assert message["event"] == "arrival"
                        assert message["data"]["name"] == "Bob"
                        assert message["data"]["activeCount"] == 2

                    ws_b.send_json({"event": "typing", "data": {"questionId": "q1", "isTyping": True}})
                    typing = ws_a.receive_json()
                    assert typing["event"] == "typing-indicator"
                    assert typing["data"]["userName"] == "Bob"

                # Bob 断开后 Alice 收到 departure
                departure = ws_a.receive_json()
                assert departure["event"] == "departure"
                assert departure["data"]["name"] == "Bob"
                assert departure["data"]["activeCount"] == 1
                assert [u["name"] for u in departure["data"]["activeUsers"]] == ["Alice"]

        assert hub.membership.room_ids() == []
        assert hub.broadcaster.connection_count == 0
        counts = [c.args[3] for c in room_repo.apply_active_user_delta.await_args_list]
        assert counts == [1, 2, 1, 0]

    def test_invalid_frame_and_ghost_room(self, app, token_for) -> None:
        with TestClient(app) as client:
            with client.websocket_connect(f"/ws?token={token_for('Alice')}") as ws:
                ws.send_text("{broken")
                assert ws.receive_json() == {"event": "error", "data": {"message": "Invalid event"}}

                ws.send_json(join("ghost"))
                error = ws.receive_json()
                assert error["event"] == "error"
                assert error["data"]["message"] == "Room not found or inactive"
