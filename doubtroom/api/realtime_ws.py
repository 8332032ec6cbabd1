"""
doubtroom.api.realtime_ws
~~~~~~~~~~~~~~~~~~~~~~~~~

WebSocket 实时通道 —— 房间在线状态与问答事件推送。

握手时必须携带凭证（``?token=xxx`` 或 ``Authorization: Bearer xxx``），
身份解析失败则在 accept 之前以 1008 关闭连接，不创建任何成员状态。

帧协议（文本 JSON）::

    → {"event": "joinRoom", "data": {"roomId": "..."}}
    ← {"event": "arrival",  "data": {"userId": "...", "activeUsers": [...], "activeCount": 2}}
"""
from __future__ import annotations

import asyncio
import uuid

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from doubtroom.core.exceptions import AuthError
from doubtroom.core.logging import get_logger, request_id_ctx_var
from doubtroom.core.security import extract_bearer
from doubtroom.services.realtime import RealtimeHub

logger = get_logger(__name__)

router: APIRouter = APIRouter()

# 断线后等待发送协程把已排队消息发完的最长时间（秒）
_SEND_DRAIN_TIMEOUT: float = 5.0


@router.websocket("/ws")
async def websocket_realtime_endpoint(websocket: WebSocket, token: str | None = None) -> None:
    """DoubtRoom 实时端点。

    每个连接一个读取循环（逐条处理入站帧，因此同一连接的处理不会交错）
    和一个发送协程（逐条推送待发送队列）。读取循环结束后执行断线清理。

    Args:
        websocket: FastAPI WebSocket 连接对象。
        token: 查询参数中的访问令牌。
    """
    ws_req_id = f"ws-{uuid.uuid4().hex[:8]}"
    ctx_token = request_id_ctx_var.set(ws_req_id)

    try:
        hub: RealtimeHub = websocket.app.state.hub
        credential = token or extract_bearer(websocket.headers.get("authorization"))
        try:
            identity = await hub.identity.resolve(credential)
        except AuthError as e:
            logger.info("拒绝 WebSocket 连接: %s", e.message)
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=e.message)
            return

        await websocket.accept()
        connection = hub.open_connection(websocket, identity)
        sender = asyncio.create_task(connection.send_loop())

        try:
            async for raw in websocket.iter_text():
                await hub.dispatcher.dispatch(connection, raw)
        except WebSocketDisconnect:
            pass  # 正常断开
        except Exception as e:
            logger.error("WebSocket 处理异常: %s | conn=%s", e, connection.connection_id, exc_info=True)
        finally:
            await hub.close_connection(connection)
            _, pending = await asyncio.wait({sender}, timeout=_SEND_DRAIN_TIMEOUT)
            for task in pending:
                task.cancel()

    finally:
        request_id_ctx_var.reset(ctx_token)
