"""
doubtroom.services.connection
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

单个 WebSocket 连接 —— 持有已认证身份、服务端分配的连接 ID，以及一个
FIFO 待发送队列。

广播方只调用 ``enqueue()``（同步、不阻塞）；真正的 ``send_text`` 由
``send_loop()`` 协程逐条发送，因此慢客户端不会拖慢广播方，
同一连接收到的消息顺序与入队顺序一致。
"""
from __future__ import annotations

import asyncio
import uuid

from fastapi import WebSocket

from doubtroom.core.logging import get_logger
from doubtroom.schemas.events import Identity

logger = get_logger(__name__)


class ClientConnection:
    """一个已接受的 WebSocket 连接。

    Attributes:
        connection_id: 服务端分配的唯一连接 ID。
        identity: 握手阶段解析出的用户身份。
        websocket: 底层 WebSocket。
    """

    def __init__(
        self,
        websocket: WebSocket,
        identity: Identity,
        connection_id: str | None = None,
        max_pending: int = 256,
    ) -> None:
        self.websocket = websocket
        self.identity = identity
        self.connection_id = connection_id or uuid.uuid4().hex
        self._outbox: asyncio.Queue[str | None] = asyncio.Queue(maxsize=max_pending)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def enqueue(self, message: str) -> bool:
        """把一条文本帧放入待发送队列。连接已关闭或队列已满时丢弃并返回 False。"""
        if self._closed:
            return False
        try:
            self._outbox.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning("待发送队列已满，丢弃消息 | conn=%s", self.connection_id)
            return False
        return True

    async def send_loop(self) -> None:
        """逐条发送队列中的消息，直到收到结束信号或发送失败。"""
        while True:
            message = await self._outbox.get()
            if message is None:
                break
            try:
                await self.websocket.send_text(message)
            except Exception as e:
                logger.warning("发送失败，停止向该连接推送 | conn=%s | %s", self.connection_id, e)
                self._closed = True
                break

    def close(self) -> None:
        """停止接收新消息，并让 ``send_loop()`` 在发完已排队的消息后退出。"""
        if self._closed:
            return
        self._closed = True
        try:
            self._outbox.put_nowait(None)
        except asyncio.QueueFull:
            # 队列满时丢掉最早的一条，为结束信号腾出位置
            self._outbox.get_nowait()
            self._outbox.put_nowait(None)
