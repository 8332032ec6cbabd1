"""
doubtroom.schemas.qa
~~~~~~~~~~~~~~~~~~~~

房间 / 问题 / 回答相关的 REST 请求与响应模型。
"""
from __future__ import annotations

from typing import Literal

from pydantic import Field

from doubtroom.schemas.events import CamelModel, Identity

Priority = Literal["low", "medium", "high"]


class CreateQuestionRequest(CamelModel):
    """提问请求体。"""

    room_id: str = Field(..., description="所在房间 ID")
    text: str = Field(..., min_length=5, max_length=1000, description="问题正文")
    priority: Priority = Field(default="medium", description="优先级")
    image: str | None = Field(default=None, description="Base64 图片或 URL")


class CreateAnswerRequest(CamelModel):
    """回答请求体。"""

    question_id: str = Field(..., description="所回答的问题 ID")
    text: str = Field(..., min_length=5, max_length=2000, description="回答正文")


class RoomInfoData(CamelModel):
    """房间摘要，``online_count`` 来自内存成员表而非数据库镜像。"""

    room_id: str = Field(..., description="房间唯一标识")
    title: str = Field(default="", description="房间标题")
    topic: str = Field(default="Other", description="主题")
    description: str | None = Field(default=None, description="房间简介")
    is_public: bool = Field(default=True, description="是否公开")
    online_count: int = Field(..., description="当前在线连接数")
    total_questions: int = Field(default=0, description="累计提问数")
    resolved_questions: int = Field(default=0, description="累计已解决数")


class RoomDetailData(RoomInfoData):
    """房间详情，附带实时花名册。"""

    active_users: list[Identity] = Field(default_factory=list, description="当前在线用户")


class RoomStatsData(CamelModel):
    """房间问题统计。"""

    total_questions: int = Field(..., description="问题总数")
    resolved_questions: int = Field(..., description="已解决数")
    pending_questions: int = Field(..., description="待解决数")
    active_users: int = Field(..., description="当前在线连接数")
    resolution_rate: float = Field(..., description="解决率（百分比，两位小数）")
