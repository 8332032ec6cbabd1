"""
scripts.issue_token
~~~~~~~~~~~~~~~~~~~

为数据库中已有的启用用户签发访问令牌，供 ``smoke_realtime.py`` 或手动调试使用。
服务本身不提供注册/登录接口。

用法::

    python scripts/issue_token.py <user id> [有效分钟数]

读取与服务相同的配置（``MONGODB_URI`` / ``JWT_SECRET`` 等）。
"""
import asyncio
import sys
from datetime import timedelta

from doubtroom.core.exceptions import AuthError
from doubtroom.core.security import IdentityResolver
from doubtroom.db import close_mongo, connect_mongo, get_database
from doubtroom.db.user_repository import UserRepository


async def main(user_id: str, minutes: int | None) -> int:
    await connect_mongo()
    try:
        resolver = IdentityResolver(UserRepository(get_database()))
        expires = timedelta(minutes=minutes) if minutes else None
        try:
            token = await resolver.issue(user_id, expires)
        except AuthError as e:
            print(f"❌ 签发失败: {e.message} | user={user_id}", file=sys.stderr)
            return 1
        print(token)
        return 0
    finally:
        await close_mongo()


if __name__ == "__main__":
    if len(sys.argv) not in (2, 3):
        print(__doc__, file=sys.stderr)
        sys.exit(2)
    sys.exit(asyncio.run(main(sys.argv[1], int(sys.argv[2]) if len(sys.argv) == 3 else None)))
