"""
doubtroom.main
~~~~~~~~~~~~~~

FastAPI 应用入口 —— 注册路由、挂载中间件、定义生命周期。
"""
from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from doubtroom.api import questions, realtime_ws, rooms
from doubtroom.core.config import settings
from doubtroom.core.exceptions import DoubtRoomError
from doubtroom.core.logging import get_logger, request_id_ctx_var, setup_logging
from doubtroom.core.rate_limit import limiter
from doubtroom.db import close_mongo, connect_mongo, get_database
from doubtroom.schemas.api_response import ApiResponse
from doubtroom.services.qa_service import QAService
from doubtroom.services.realtime import RealtimeHub

# 初始化日志系统（必须在其他模块之前）
setup_logging()
logger = get_logger(__name__)


# ── 生命周期 ──────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期钩子，仅在 worker 启动/关闭时各执行一次。"""
    # ── 启动 ──
    await connect_mongo()
    db = get_database()
    app.state.hub = RealtimeHub.from_database(db)
    app.state.qa_service = QAService.from_database(db, app.state.hub.broadcaster)
    logger.info(
        "🚀 DoubtRoom 已启动 | env=%s | debug=%s | log_level=%s",
        settings.ENVIRONMENT,
        settings.debug,
        settings.effective_log_level,
    )
    yield
    # ── 关闭 ──
    await close_mongo()
    logger.info("👋 DoubtRoom 已关闭")


def create_app(lifespan_handler: Callable[[FastAPI], Any] = lifespan) -> FastAPI:
    """创建 FastAPI 实例。

    Args:
        lifespan_handler: 生命周期钩子。测试传入不连接 MongoDB 的钩子，自行填充 ``app.state``。
    """
    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="DoubtRoom 实时问答后端",
        version=settings.VERSION,
        debug=settings.debug,
        lifespan=lifespan_handler,
    )

    # ── 中间件 ──
    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    if settings.allow_cors_all_origins:
        # dev / test 环境：允许所有来源，方便本地调试
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    else:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=[settings.FRONTEND_URL],
            allow_credentials=True,
            allow_methods=["GET", "POST", "PUT"],
            allow_headers=["*"],
        )

    @app.middleware("http")
    async def bind_request_id(
        request: Request, call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        """为每个 HTTP 请求生成请求标识，写入日志上下文与响应头。"""
        req_id = f"http-{uuid.uuid4().hex[:8]}"
        token = request_id_ctx_var.set(req_id)
        try:
            response = await call_next(request)
        finally:
            request_id_ctx_var.reset(token)
        response.headers["X-Request-ID"] = req_id
        return response

    # ── 路由挂载 ──
    app.include_router(rooms.router, prefix="/api", tags=["Rooms"])
    app.include_router(questions.router, prefix="/api", tags=["Questions & Answers"])
    app.include_router(realtime_ws.router, tags=["Realtime"])

    # ── 异常处理器 ──

    @app.exception_handler(DoubtRoomError)
    async def domain_exception_handler(request: Request, exc: DoubtRoomError) -> JSONResponse:
        """领域异常 → 对应状态码的 ``ApiResponse.fail()``。"""
        logger.info("请求失败: %s %s -> %d %s", request.method, request.url.path, exc.status_code, exc.message)
        response = ApiResponse.fail(msg=exc.message, code=exc.status_code)
        return JSONResponse(status_code=exc.status_code, content=response.model_dump())

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        response = ApiResponse.fail(msg="请求参数校验失败", code=422, data=jsonable_encoder(exc.errors()))
        return JSONResponse(status_code=422, content=response.model_dump())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """捕获所有未处理异常，返回统一的 ApiResponse.fail() 格式。"""
        logger.error("未捕获异常: %s %s -> %s", request.method, request.url, exc, exc_info=True)
        # 非 prod 环境返回详细错误信息，prod 环境隐藏内部细节
        detail = str(exc) if not settings.is_prod else "服务器内部错误"
        response = ApiResponse.fail(msg=detail, code=500, data=None)
        return JSONResponse(status_code=500, content=response.model_dump())

    @app.get("/health", tags=["System"])
    async def health_check() -> JSONResponse:
        """验证服务是否正常运行。"""
        return JSONResponse(
            content={
                "status": "ok",
                "environment": settings.ENVIRONMENT,
                "debug": settings.debug,
                "log_level": settings.effective_log_level,
                "message": "DoubtRoom API is healthy",
            },
        )

    return app


app: FastAPI = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "doubtroom.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.reload,  # 仅 dev 环境开启热重载
        log_level=settings.effective_log_level.lower(),
    )
