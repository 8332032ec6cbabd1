"""
doubtroom.core.security
~~~~~~~~~~~~~~~~~~~~~~~

身份解析 —— 把 Bearer 令牌（JWT）解析为已认证的 ``Identity``。

WebSocket 在握手阶段调用一次 ``IdentityResolver.resolve()``，之后该连接上的
所有房间操作都信任这次解析出的身份，不再重复校验。
REST 接口通过 ``doubtroom.api.deps.get_current_identity`` 复用同一个解析器。
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError

from doubtroom.core.config import settings
from doubtroom.core.exceptions import AuthError
from doubtroom.core.logging import get_logger
from doubtroom.db.user_repository import UserRecord, UserRepository
from doubtroom.schemas.events import Identity

logger = get_logger(__name__)


def create_access_token(user_id: str, expires_delta: timedelta | None = None) -> str:
    """签发访问令牌，用户 ID 放在 ``id`` 声明中。"""
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.JWT_EXPIRE_MINUTES)
    )
    to_encode = {"id": user_id, "exp": expire}
    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def extract_bearer(authorization: str | None) -> str | None:
    """从 ``Authorization: Bearer xxx`` 头中取出令牌。"""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class IdentityResolver:
    """凭证 → 身份解析器。

    Attributes:
        users: 用户仓库，用于确认令牌中的用户仍然存在且处于启用状态。
    """

    def __init__(
        self,
        users: UserRepository,
        secret: str | None = None,
        algorithm: str | None = None,
    ) -> None:
        self.users = users
        self._secret = secret or settings.JWT_SECRET
        self._algorithm = algorithm or settings.JWT_ALGORITHM

    async def resolve(self, credential: str | None) -> Identity:
        """校验令牌并返回用户身份。

        Raises:
            AuthError: 令牌缺失/格式错误/过期/签名无效，或用户不存在/已停用。
        """
        if not credential:
            raise AuthError("Authentication error")

        try:
            payload = jwt.decode(credential, self._secret, algorithms=[self._algorithm])
        except ExpiredSignatureError:
            raise AuthError("Token expired")
        except InvalidTokenError:
            raise AuthError("Authentication error")

        user_id = payload.get("id")
        if not isinstance(user_id, str) or not user_id:
            raise AuthError("Authentication error")

        user = await self._load_active_user(user_id)
        return Identity(
            user_id=str(user["_id"]),
            name=user.get("name", ""),
            role=user.get("role", "student"),
        )

    async def issue(self, user_id: str, expires_delta: timedelta | None = None) -> str:
        """为已有的启用用户签发令牌（运维脚本使用，不对外暴露接口）。

        Raises:
            AuthError: 用户不存在或已停用。
        """
        user = await self._load_active_user(user_id)
        return create_access_token(str(user["_id"]), expires_delta)

    async def _load_active_user(self, user_id: str) -> UserRecord:
        user = await self.users.get_by_id(user_id)
        if user is None or not user.get("isActive", True):
            logger.info("拒绝认证：用户不存在或已停用 | user=%s", user_id)
            raise AuthError("User not found or inactive")
        return user
