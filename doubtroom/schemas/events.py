"""
doubtroom.schemas.events
~~~~~~~~~~~~~~~~~~~~~~~~

WebSocket 事件模型 —— 入站帧在边界处按 ``event`` 字段做判别联合校验，
出站负载各有固定结构，键名统一为 camelCase。

帧格式（文本 JSON）::

    {"event": "joinRoom", "data": {"roomId": "..."}}
"""
from __future__ import annotations

import json
from typing import Annotated, Any, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

UserRole = Literal["student", "mentor", "admin"]

# ── 出站事件名 ────────────────────────────────────────────────────────
ARRIVAL = "arrival"
DEPARTURE = "departure"
QUESTION_POSTED = "question-posted"
ANSWER_POSTED = "answer-posted"
ANSWER_VOTED = "answer-voted"
QUESTION_RESOLVED = "question-resolved"
QUESTION_PINNED = "question-pinned"
TYPING_INDICATOR = "typing-indicator"
ERROR = "error"


class CamelModel(BaseModel):
    """字段用 snake_case 声明，收发时使用 camelCase。"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RelayModel(CamelModel):
    """客户端转发的负载：校验关键字段，其余字段原样保留。"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class Identity(CamelModel):
    """已认证的用户身份，同时也是房间花名册中的一项。"""

    user_id: str = Field(..., description="用户 ID")
    name: str = Field(..., description="显示名称")
    role: UserRole = Field(default="student", description="用户角色")


# ── 出站负载 ──────────────────────────────────────────────────────────

class ArrivalPayload(CamelModel):
    user_id: str
    name: str
    role: UserRole
    active_users: list[Identity]
    active_count: int


class DeparturePayload(CamelModel):
    user_id: str
    name: str
    active_users: list[Identity]
    active_count: int


class QuestionPostedPayload(RelayModel):
    question_id: str
    text: str | None = None
    priority: str | None = None
    user_name: str
    user_role: UserRole


class AnswerPostedPayload(CamelModel):
    question_id: str
    answer: dict[str, Any]
    user_name: str
    user_role: UserRole


class AnswerVotedPayload(CamelModel):
    answer_id: str
    votes: int | None = None
    voter_id: str | None = None


class QuestionResolvedPayload(CamelModel):
    question_id: str
    resolved_by: str


class QuestionPinnedPayload(CamelModel):
    question_id: str
    is_pinned: bool | None = None


class TypingPayload(CamelModel):
    question_id: str
    user_id: str
    user_name: str
    is_typing: bool


class ErrorPayload(CamelModel):
    message: str


# ── 入站负载 ──────────────────────────────────────────────────────────

class RoomRequest(CamelModel):
    room_id: str = Field(..., min_length=1)


class QuestionRelay(RelayModel):
    # 旧前端直接转发 REST 返回的问题文档，ID 字段为 ``_id``
    question_id: str = Field(..., validation_alias=AliasChoices("questionId", "_id", "question_id"))
    text: str | None = None
    priority: str | None = None


class AnswerRelay(CamelModel):
    question_id: str
    answer: dict[str, Any] = Field(default_factory=dict)


class VoteRelay(CamelModel):
    answer_id: str
    votes: int | None = None


class QuestionRef(CamelModel):
    question_id: str


class PinRelay(CamelModel):
    question_id: str
    is_pinned: bool | None = None


class TypingRelay(CamelModel):
    question_id: str
    is_typing: bool


class JoinRoomFrame(BaseModel):
    event: Literal["joinRoom"]
    data: RoomRequest


class LeaveRoomFrame(BaseModel):
    event: Literal["leaveRoom"]
    data: RoomRequest


class AskQuestionFrame(BaseModel):
    event: Literal["askQuestion"]
    data: QuestionRelay


class AnswerQuestionFrame(BaseModel):
    event: Literal["answerQuestion"]
    data: AnswerRelay


class UpvoteAnswerFrame(BaseModel):
    event: Literal["upvoteAnswer"]
    data: VoteRelay


class MarkResolvedFrame(BaseModel):
    event: Literal["markResolved"]
    data: QuestionRef


class PinQuestionFrame(BaseModel):
    event: Literal["pinQuestion"]
    data: PinRelay


class TypingFrame(BaseModel):
    event: Literal["typing"]
    data: TypingRelay


InboundFrame = Annotated[
    Union[
        JoinRoomFrame,
        LeaveRoomFrame,
        AskQuestionFrame,
        AnswerQuestionFrame,
        UpvoteAnswerFrame,
        MarkResolvedFrame,
        PinQuestionFrame,
        TypingFrame,
    ],
    Field(discriminator="event"),
]

inbound_frame_adapter: TypeAdapter[InboundFrame] = TypeAdapter(InboundFrame)


def parse_inbound(raw: str) -> InboundFrame:
    """解析并校验一条入站帧。

    Raises:
        pydantic.ValidationError: JSON 非法、事件名未知或负载缺少必需字段。
    """
    return inbound_frame_adapter.validate_json(raw)


def encode_frame(event: str, payload: BaseModel | dict[str, Any]) -> str:
    """把出站事件编码为文本帧。"""
    if isinstance(payload, BaseModel):
        data = payload.model_dump(by_alias=True, mode="json")
    else:
        data = payload
    return json.dumps({"event": event, "data": data}, ensure_ascii=False, default=str)
