"""
doubtroom.core.exceptions
~~~~~~~~~~~~~~~~~~~~~~~~~

领域异常。

只有 ``AuthError`` 与 ``RoomNotFound`` 会被客户端看到；
``PersistenceSyncFailure`` 不属于 ``DoubtRoomError`` 体系，在在线状态协调器内部被记录后吞掉。
REST 层的异常由 ``doubtroom.main`` 中注册的处理器统一转换为 ``ApiResponse.fail()``。
"""
from __future__ import annotations


class DoubtRoomError(Exception):
    """所有领域异常的基类。

    Attributes:
        message: 可以直接展示给客户端的提示。
        status_code: REST 层使用的 HTTP 状态码。
    """

    status_code: int = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class AuthError(DoubtRoomError):
    """凭证缺失、格式错误、过期，或用户不存在/已停用。"""

    status_code = 401


class PermissionDenied(DoubtRoomError):
    """角色或归属校验失败。"""

    status_code = 403


class RoomNotFound(DoubtRoomError):
    """房间不存在或已停用。"""

    status_code = 404

    def __init__(self, room_id: str, message: str = "Room not found or inactive") -> None:
        super().__init__(message)
        self.room_id = room_id


class ResourceNotFound(DoubtRoomError):
    """问题或回答不存在。"""

    status_code = 404


class PersistenceSyncFailure(Exception):
    """在线人数回写 MongoDB 失败（尽力而为，不影响内存状态）。

    只在协调器内部使用，不携带 HTTP 状态码。
    """

    def __init__(self, room_id: str, cause: BaseException) -> None:
        super().__init__(f"active user sync failed for room {room_id}: {cause}")
        self.room_id = room_id
        self.cause = cause
