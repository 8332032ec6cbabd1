"""
doubtroom.core.rate_limit
~~~~~~~~~~~~~~~~~~~~~~~~~

REST 与 WebSocket 的限流配置。
"""
import time
from typing import Dict

from slowapi import Limiter
from slowapi.util import get_remote_address

from doubtroom.core.config import settings

# --------- HTTP 接口限流器 ---------
# 基于客户端 IP 地址进行限流，default_limits 作用于所有未单独声明的路由
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.API_RATE_LIMIT],
    storage_uri="memory://",
)


# --------- WebSocket 限流器 ---------
class WebSocketRateLimiter:
    """基于内存的简单 WebSocket 转发限流器。

    记录每个连接上一次被放行的时间，间隔不足则拒绝。
    """

    def __init__(self, interval_seconds: float = 1.0):
        self.interval_seconds = interval_seconds
        # key 为 ClientConnection.connection_id
        self._last_message_time: Dict[str, float] = {}

    def is_allowed(self, client_id: str) -> bool:
        """检查客户端是否允许发送消息。

        Args:
            client_id: 客户端唯一标识（连接 ID）。

        Returns:
            是否允许发送。如果允许，则同时更新上次发送时间。
        """
        now = time.time()
        last_time = self._last_message_time.get(client_id, 0.0)

        if now - last_time >= self.interval_seconds:
            self._last_message_time[client_id] = now
            return True
        return False

    def remove_client(self, client_id: str) -> None:
        """清理断开连接的客户端记录。"""
        self._last_message_time.pop(client_id, None)
