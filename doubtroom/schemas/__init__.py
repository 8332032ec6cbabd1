"""
doubtroom.schemas
~~~~~~~~~~~~~~~~~
Pydantic schemas: REST 请求/响应体与 WebSocket 事件负载。
"""
from doubtroom.schemas.api_response import ApiResponse
from doubtroom.schemas.events import Identity, encode_frame, parse_inbound
from doubtroom.schemas.qa import (
    CreateAnswerRequest,
    CreateQuestionRequest,
    RoomDetailData,
    RoomInfoData,
    RoomStatsData,
)

# Call model_rebuild to resolve forward references in generic Pydantic models.
ApiResponse.model_rebuild()
