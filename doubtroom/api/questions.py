"""
doubtroom.api.questions
~~~~~~~~~~~~~~~~~~~~~~~

问答接口 —— 写操作落库成功后由 ``QAService`` 向问题所在房间广播事件。

端点:
  - ``GET  /questions/room/{room_id}``  → 房间内的问题列表
  - ``GET  /questions/{id}``           → 问题详情
  - ``POST /questions``                → 提问（广播 question-posted）
  - ``PUT  /questions/{id}/resolve``   → 标记已解决（广播 question-resolved）
  - ``PUT  /questions/{id}/pin``       → 置顶/取消置顶（广播 question-pinned）
  - ``DELETE /questions/{id}``         → 删除问题
  - ``GET  /answers/question/{id}``    → 问题下的回答列表
  - ``POST /answers``                  → 回答（广播 answer-posted）
  - ``PUT  /answers/{id}/vote``        → 投票/撤票（广播 answer-voted）
  - ``PUT  /answers/{id}/accept``      → 采纳回答
  - ``DELETE /answers/{id}``           → 删除回答
"""

from typing import Any, Literal

from fastapi import APIRouter, Depends, Query, Request, status

from doubtroom.api.deps import CurrentIdentity, get_qa_service
from doubtroom.core.config import settings
from doubtroom.core.rate_limit import limiter
from doubtroom.schemas.api_response import ApiResponse
from doubtroom.schemas.qa import CreateAnswerRequest, CreateQuestionRequest
from doubtroom.services.qa_service import QAService

router: APIRouter = APIRouter()


# ── 问题 ──────────────────────────────────────────────────────────────

@router.get(
    "/questions/room/{room_id}",
    summary="房间内的问题列表",
    response_model=ApiResponse[list[dict[str, Any]]],
)
async def list_room_questions(
    request: Request,
    room_id: str,
    identity: CurrentIdentity,
    resolved: bool | None = Query(None, description="只看已解决 / 未解决"),
    sort: Literal["newest", "oldest"] = Query("newest", description="按创建时间排序"),
    service: QAService = Depends(get_qa_service),
):
    """置顶问题在前，最多 100 条。"""
    questions = await service.list_questions(room_id, resolved, oldest_first=sort == "oldest")
    return ApiResponse.ok(data=questions)


@router.get("/questions/{question_id}", summary="问题详情", response_model=ApiResponse[dict[str, Any]])
async def get_question(
    request: Request,
    question_id: str,
    identity: CurrentIdentity,
    service: QAService = Depends(get_qa_service),
):
    return ApiResponse.ok(data=await service.get_question(question_id))


@router.post(
    "/questions",
    summary="提问",
    status_code=status.HTTP_201_CREATED,
    response_model=ApiResponse[dict[str, Any]],
)
@limiter.limit(settings.QUESTION_RATE_LIMIT)
async def create_question(
    request: Request,
    body: CreateQuestionRequest,
    identity: CurrentIdentity,
    service: QAService = Depends(get_qa_service),
):
    """在指定房间提问，房间必须存在且处于启用状态。"""
    question = await service.create_question(
        identity, body.room_id, body.text, body.priority, body.image,
    )
    return ApiResponse.ok(data=question, code=201)


@router.put("/questions/{question_id}/resolve", summary="标记已解决", response_model=ApiResponse[dict[str, Any]])
async def resolve_question(
    request: Request,
    question_id: str,
    identity: CurrentIdentity,
    service: QAService = Depends(get_qa_service),
):
    """提问者本人或导师/管理员可以标记问题已解决。"""
    return ApiResponse.ok(data=await service.resolve_question(identity, question_id))


@router.put("/questions/{question_id}/pin", summary="置顶/取消置顶", response_model=ApiResponse[dict[str, Any]])
async def pin_question(
    request: Request,
    question_id: str,
    identity: CurrentIdentity,
    service: QAService = Depends(get_qa_service),
):
    """仅导师/管理员可以置顶。"""
    return ApiResponse.ok(data=await service.toggle_pin(identity, question_id))


@router.delete("/questions/{question_id}", summary="删除问题", response_model=ApiResponse[dict[str, Any]])
async def delete_question(
    request: Request,
    question_id: str,
    identity: CurrentIdentity,
    service: QAService = Depends(get_qa_service),
):
    """提问者本人或管理员可以删除。"""
    await service.delete_question(identity, question_id)
    return ApiResponse.ok(data={})


# ── 回答 ──────────────────────────────────────────────────────────────

@router.get(
    "/answers/question/{question_id}",
    summary="问题下的回答列表",
    response_model=ApiResponse[list[dict[str, Any]]],
)
async def list_question_answers(
    request: Request,
    question_id: str,
    identity: CurrentIdentity,
    service: QAService = Depends(get_qa_service),
):
    """已采纳的回答在前，其次按票数降序。"""
    return ApiResponse.ok(data=await service.list_answers(question_id))


@router.post(
    "/answers",
    summary="回答问题",
    status_code=status.HTTP_201_CREATED,
    response_model=ApiResponse[dict[str, Any]],
)
async def create_answer(
    request: Request,
    body: CreateAnswerRequest,
    identity: CurrentIdentity,
    service: QAService = Depends(get_qa_service),
):
    answer = await service.create_answer(identity, body.question_id, body.text)
    return ApiResponse.ok(data=answer, code=201)


@router.put("/answers/{answer_id}/vote", summary="投票/撤票", response_model=ApiResponse[dict[str, Any]])
async def vote_answer(
    request: Request,
    answer_id: str,
    identity: CurrentIdentity,
    service: QAService = Depends(get_qa_service),
):
    """同一用户再次投票即撤销投票。"""
    return ApiResponse.ok(data=await service.vote_answer(identity, answer_id))


@router.put("/answers/{answer_id}/accept", summary="采纳回答", response_model=ApiResponse[dict[str, Any]])
async def accept_answer(
    request: Request,
    answer_id: str,
    identity: CurrentIdentity,
    service: QAService = Depends(get_qa_service),
):
    return ApiResponse.ok(data=await service.accept_answer(identity, answer_id))


@router.delete("/answers/{answer_id}", summary="删除回答", response_model=ApiResponse[dict[str, Any]])
async def delete_answer(
    request: Request,
    answer_id: str,
    identity: CurrentIdentity,
    service: QAService = Depends(get_qa_service),
):
    """回答者本人或管理员可以删除。"""
    await service.delete_answer(identity, answer_id)
    return ApiResponse.ok(data={})
