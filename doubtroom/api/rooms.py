"""
doubtroom.api.rooms
~~~~~~~~~~~~~~~~~~~

房间只读接口 —— 列表与详情，在线人数与花名册取自内存成员表。

端点:
  - ``GET /rooms``                  → 获取启用中的房间列表（可按 topic 过滤）
  - ``GET /rooms/{room_id}``        → 获取房间详情与实时花名册
  - ``GET /rooms/{room_id}/stats``  → 获取房间问题统计
"""

from fastapi import APIRouter, Depends, Query, Request

from doubtroom.api.deps import get_current_identity, get_hub, get_qa_service
from doubtroom.core.exceptions import RoomNotFound
from doubtroom.db.room_repository import RoomRecord
from doubtroom.schemas.api_response import ApiResponse
from doubtroom.schemas.qa import RoomDetailData, RoomInfoData, RoomStatsData
from doubtroom.services.presence import PresenceCoordinator
from doubtroom.services.qa_service import QAService
from doubtroom.services.realtime import RealtimeHub

router: APIRouter = APIRouter(dependencies=[Depends(get_current_identity)])


def _room_fields(room: RoomRecord, presence: PresenceCoordinator) -> dict:
    room_id = str(room["_id"])
    return {
        "room_id": room_id,
        "title": room.get("title", ""),
        "topic": room.get("topic", "Other"),
        "description": room.get("description"),
        "is_public": room.get("isPublic", True),
        "online_count": presence.online_count(room_id),
        "total_questions": room.get("totalQuestions", 0),
        "resolved_questions": room.get("resolvedQuestions", 0),
    }


@router.get("/rooms", summary="获取房间列表", response_model=ApiResponse[list[RoomInfoData]])
async def list_rooms(
    request: Request,
    topic: str | None = Query(None, description="按主题过滤"),
    hub: RealtimeHub = Depends(get_hub),
):
    """返回启用中的房间，按在线人数降序、创建时间倒序，最多 50 个。"""
    rooms = await hub.rooms.list_active_rooms(topic=topic)
    data = [RoomInfoData(**_room_fields(room, hub.presence)) for room in rooms]
    return ApiResponse.ok(data=data)


@router.get("/rooms/{room_id}", summary="获取房间详情", response_model=ApiResponse[RoomDetailData])
async def room_detail(request: Request, room_id: str, hub: RealtimeHub = Depends(get_hub)):
    """返回房间详情与当前在线花名册。

    Args:
        room_id: 房间 ID。
    """
    room = await hub.rooms.get_room(room_id)
    if room is None:
        raise RoomNotFound(room_id, message=f"Room not found with id of {room_id}")
    data = RoomDetailData(
        **_room_fields(room, hub.presence),
        active_users=hub.presence.roster(str(room["_id"])),
    )
    return ApiResponse.ok(data=data)


@router.get("/rooms/{room_id}/stats", summary="获取房间统计", response_model=ApiResponse[RoomStatsData])
async def room_stats(
    request: Request,
    room_id: str,
    hub: RealtimeHub = Depends(get_hub),
    service: QAService = Depends(get_qa_service),
):
    """问题总数、已解决数与解决率；在线人数取自内存成员表。"""
    stats = await service.room_stats(room_id)
    data = RoomStatsData(**stats, active_users=hub.presence.online_count(room_id))
    return ApiResponse.ok(data=data)
