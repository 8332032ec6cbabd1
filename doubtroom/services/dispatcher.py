"""
doubtroom.services.dispatcher
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

入站事件分发 —— 校验客户端发来的帧，并路由到在线状态协调器或广播器。

``joinRoom`` / ``leaveRoom`` 交给 ``PresenceCoordinator``；其余事件是纯转发，
只在发送方当前位于某个房间时广播到该房间，不产生任何持久化副作用。
"""
from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import ValidationError

from doubtroom.core.exceptions import RoomNotFound
from doubtroom.core.logging import get_logger
from doubtroom.core.rate_limit import WebSocketRateLimiter
from doubtroom.schemas.events import (
    ANSWER_POSTED,
    ANSWER_VOTED,
    ERROR,
    QUESTION_PINNED,
    QUESTION_POSTED,
    QUESTION_RESOLVED,
    TYPING_INDICATOR,
    AnswerPostedPayload,
    AnswerRelay,
    AnswerVotedPayload,
    ErrorPayload,
    PinRelay,
    QuestionPinnedPayload,
    QuestionPostedPayload,
    QuestionRef,
    QuestionRelay,
    QuestionResolvedPayload,
    RoomRequest,
    TypingPayload,
    TypingRelay,
    VoteRelay,
    parse_inbound,
)
from doubtroom.services.broadcaster import EventBroadcaster, Recipient
from doubtroom.services.presence import PresenceCoordinator

logger = get_logger(__name__)

Handler = Callable[[Recipient, Any], Awaitable[None]]


class EventDispatcher:
    """把一条入站帧交给对应的处理函数。

    Attributes:
        presence: 在线状态协调器。
        broadcaster: 事件广播器。
        relay_limiter: 提问/回答转发的逐连接限流器。
    """

    def __init__(
        self,
        presence: PresenceCoordinator,
        broadcaster: EventBroadcaster,
        relay_limiter: WebSocketRateLimiter | None = None,
    ) -> None:
        self.presence = presence
        self.broadcaster = broadcaster
        self.relay_limiter = relay_limiter or WebSocketRateLimiter()
        self._handlers: dict[str, Handler] = {
            "joinRoom": self._join_room,
            "leaveRoom": self._leave_room,
            "askQuestion": self._ask_question,
            "answerQuestion": self._answer_question,
            "upvoteAnswer": self._upvote_answer,
            "markResolved": self._mark_resolved,
            "pinQuestion": self._pin_question,
            "typing": self._typing,
        }

    async def dispatch(self, connection: Recipient, raw: str) -> None:
        """解析并处理一条文本帧。非法帧只回一个 ``error`` 给发送方。"""
        try:
            frame = parse_inbound(raw)
        except ValidationError as e:
            logger.warning("无效的入站帧 | conn=%s | 错误数: %d", connection.connection_id, e.error_count())
            self._reply_error(connection, "Invalid event")
            return
        await self._handlers[frame.event](connection, frame.data)

    def forget(self, connection_id: str) -> None:
        """清理连接断开后残留的限流记录。"""
        self.relay_limiter.remove_client(connection_id)

    def _reply_error(self, connection: Recipient, message: str) -> None:
        self.broadcaster.send_to(connection.connection_id, ERROR, ErrorPayload(message=message))

    def _relay_allowed(self, connection: Recipient) -> bool:
        if self.relay_limiter.is_allowed(connection.connection_id):
            return True
        self._reply_error(connection, "You are posting too quickly, please slow down")
        return False

    # ── 房间 ──────────────────────────────────────────────────────────

    async def _join_room(self, connection: Recipient, data: RoomRequest) -> None:
        try:
            await self.presence.join(connection.connection_id, data.room_id)
        except RoomNotFound as e:
            logger.info("加入房间失败：%s | room=%s", e.message, e.room_id)
            self._reply_error(connection, e.message)
        except Exception as e:
            logger.error("加入房间异常: %s | room=%s", e, data.room_id, exc_info=True)
            self._reply_error(connection, "Failed to join room")

    async def _leave_room(self, connection: Recipient, data: RoomRequest) -> None:
        await self.presence.leave(connection.connection_id, data.room_id)

    # ── 纯转发 ────────────────────────────────────────────────────────

    async def _ask_question(self, connection: Recipient, data: QuestionRelay) -> None:
        room_id = self.presence.current_room(connection.connection_id)
        if room_id is None or not self._relay_allowed(connection):
            return
        payload = QuestionPostedPayload.model_validate({
            **data.model_dump(by_alias=True),
            "userName": connection.identity.name,
            "userRole": connection.identity.role,
        })
        self.broadcaster.broadcast(room_id, QUESTION_POSTED, payload)

    async def _answer_question(self, connection: Recipient, data: AnswerRelay) -> None:
        room_id = self.presence.current_room(connection.connection_id)
        if room_id is None or not self._relay_allowed(connection):
            return
        payload = AnswerPostedPayload(
            question_id=data.question_id,
            answer=data.answer,
            user_name=connection.identity.name,
            user_role=connection.identity.role,
        )
        self.broadcaster.broadcast(room_id, ANSWER_POSTED, payload)

    async def _upvote_answer(self, connection: Recipient, data: VoteRelay) -> None:
        room_id = self.presence.current_room(connection.connection_id)
        if room_id is None:
            return
        payload = AnswerVotedPayload(
            answer_id=data.answer_id,
            votes=data.votes,
            voter_id=connection.identity.user_id,
        )
        self.broadcaster.broadcast(room_id, ANSWER_VOTED, payload)

    async def _mark_resolved(self, connection: Recipient, data: QuestionRef) -> None:
        room_id = self.presence.current_room(connection.connection_id)
        if room_id is None:
            return
        payload = QuestionResolvedPayload(
            question_id=data.question_id,
            resolved_by=connection.identity.name,
        )
        self.broadcaster.broadcast(room_id, QUESTION_RESOLVED, payload)

    async def _pin_question(self, connection: Recipient, data: PinRelay) -> None:
        room_id = self.presence.current_room(connection.connection_id)
        if room_id is None:
            return
        payload = QuestionPinnedPayload(question_id=data.question_id, is_pinned=data.is_pinned)
        self.broadcaster.broadcast(room_id, QUESTION_PINNED, payload)

    async def _typing(self, connection: Recipient, data: TypingRelay) -> None:
        room_id = self.presence.current_room(connection.connection_id)
        if room_id is None:
            return
        payload = TypingPayload(
            question_id=data.question_id,
            user_id=connection.identity.user_id,
            user_name=connection.identity.name,
            is_typing=data.is_typing,
        )
        # 输入中提示不回显给发送者本人
        self.broadcaster.broadcast(
            room_id, TYPING_INDICATOR, payload, exclude=connection.connection_id,
        )
