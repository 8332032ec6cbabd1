"""
doubtroom.schemas.api_response
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

全局统一应答体，所有 REST 接口复用此结构返回一致的 JSON 格式。

schemas/ 存放请求/响应与实时事件的 Pydantic 模型（类似 Java 中的 DTO 层）。
"""
from __future__ import annotations

from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field, computed_field

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """统一 JSON 应答体。

    .. code-block:: json

        {"code": 200, "success": true, "data": {...}, "msg": "success"}

    ``success`` 由 ``code`` 推导，保留给沿用旧前端 ``response.data.success`` 判断的客户端。

    Attributes:
        code: 业务状态码，2xx 表示成功。
        data: 实际业务数据。
        msg: 人类可读的状态消息。
    """

    code: int = Field(default=200, description="业务状态码")
    data: T = Field(..., description="业务数据")
    msg: str = Field(default="success", description="状态消息")

    @computed_field  # type: ignore[prop-decorator]
    @property
    def success(self) -> bool:
        return 200 <= self.code < 300

    @classmethod
    def ok(cls, data: T, msg: str = "success", code: int = 200) -> ApiResponse[T]:
        """快捷构造成功响应。"""
        return cls(code=code, data=data, msg=msg)

    @classmethod
    def fail(cls, msg: str = "error", code: int = 500, data: Any = None) -> ApiResponse[Any]:
        """快捷构造失败响应。"""
        return cls(code=code, data=data, msg=msg)
