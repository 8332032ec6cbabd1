from typing import Annotated

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from doubtroom.schemas.events import Identity
from doubtroom.services.qa_service import QAService
from doubtroom.services.realtime import RealtimeHub

bearer_scheme = HTTPBearer(auto_error=False)


def get_hub(request: Request) -> RealtimeHub:
    return request.app.state.hub


def get_qa_service(request: Request) -> QAService:
    return request.app.state.qa_service


async def get_current_identity(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    hub: Annotated[RealtimeHub, Depends(get_hub)],
) -> Identity:
    # AuthError 由全局异常处理器转换为 401
    token = credentials.credentials if credentials else None
    return await hub.identity.resolve(token)


CurrentIdentity = Annotated[Identity, Depends(get_current_identity)]
