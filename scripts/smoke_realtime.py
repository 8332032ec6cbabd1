"""
scripts.smoke_realtime
~~~~~~~~~~~~~~~~~~~~~~

对运行中的 DoubtRoom 服务做一次手动冒烟验证：REST 房间列表、两个客户端
加入同一房间、输入中提示转发、断线 departure，以及转发限流。

用法::

    DOUBTROOM_TOKEN=<jwt> DOUBTROOM_TOKEN_2=<jwt> DOUBTROOM_ROOM_ID=<room id> \\
        python scripts/smoke_realtime.py

两个令牌必须属于两个不同的、处于启用状态的用户，可以用
``python scripts/issue_token.py <user id>`` 签发。
"""
import asyncio
import json
import os
import sys

import httpx
from websockets.asyncio.client import connect

BASE_URL = os.getenv("DOUBTROOM_URL", "http://127.0.0.1:5000")
WS_URL = BASE_URL.replace("http", "ws", 1) + "/ws"


def frame(event: str, **data) -> str:
    return json.dumps({"event": event, "data": data})


async def recv_event(websocket, timeout: float = 2.0) -> dict:
    return json.loads(await asyncio.wait_for(websocket.recv(), timeout=timeout))


async def check_rest(token: str, room_id: str) -> None:
    print("=" * 50)
    print(" 验证 REST 房间接口 ")
    print("=" * 50)

    async with httpx.AsyncClient(base_url=BASE_URL) as client:
        resp = await client.get("/api/rooms")
        print(f"无令牌: {resp.status_code}")
        if resp.status_code == 401:
            print("✅ 成功: 未认证请求被拒绝")
        else:
            print("❌ 失败: 期望 401")

        resp = await client.get(f"/api/rooms/{room_id}", headers={"Authorization": f"Bearer {token}"})
        body = resp.json()
        print(f"房间详情: {resp.status_code} | onlineCount={body.get('data', {}).get('onlineCount')}")


async def check_presence(token_a: str, token_b: str, room_id: str) -> None:
    print("\n" + "=" * 50)
    print(" 验证房间在线状态 ")
    print("=" * 50)

    async with connect(f"{WS_URL}?token={token_a}") as ws_a:
        await ws_a.send(frame("joinRoom", roomId=room_id))
        arrival = await recv_event(ws_a)
        print(f"A 收到: {arrival['event']} | activeCount={arrival['data'].get('activeCount')}")

        async with connect(f"{WS_URL}?token={token_b}") as ws_b:
            await ws_b.send(frame("joinRoom", roomId=room_id))
            seen_by_a = await recv_event(ws_a)
            seen_by_b = await recv_event(ws_b)
            if seen_by_a["data"]["activeCount"] == seen_by_b["data"]["activeCount"]:
                print(f"✅ 成功: 双方人数一致 ({seen_by_a['data']['activeCount']})")
            else:
                print("❌ 失败: 双方看到的人数不一致")

            await ws_b.send(frame("typing", questionId="smoke", isTyping=True))
            typing = await recv_event(ws_a)
            print(f"A 收到: {typing['event']} | from={typing['data'].get('userName')}")

        departure = await recv_event(ws_a)
        if departure["event"] == "departure":
            print(f"✅ 成功: B 断开后 A 收到 departure | activeCount={departure['data']['activeCount']}")
        else:
            print(f"❌ 失败: 期望 departure，收到 {departure['event']}")


async def check_relay_limit(token: str, room_id: str) -> None:
    print("\n" + "=" * 50)
    print(" 验证提问转发限流 (期望: 第二条被拒绝) ")
    print("=" * 50)

    async with connect(f"{WS_URL}?token={token}") as websocket:
        await websocket.send(frame("joinRoom", roomId=room_id))
        await recv_event(websocket)

        await websocket.send(frame("askQuestion", questionId="smoke-1", text="first"))
        await websocket.send(frame("askQuestion", questionId="smoke-2", text="second"))

        throttled = False
        for _ in range(3):
            try:
                message = await recv_event(websocket)
            except asyncio.TimeoutError:
                break
            print(f"   服务器返回: {message}")
            if message["event"] == "error":
                throttled = True
                break

        print("✅ 成功: 收到限流错误" if throttled else "❌ 失败: 未收到限流错误")


async def main() -> None:
    token_a = os.getenv("DOUBTROOM_TOKEN")
    token_b = os.getenv("DOUBTROOM_TOKEN_2")
    room_id = os.getenv("DOUBTROOM_ROOM_ID")
    if not (token_a and token_b and room_id):
        print("请设置 DOUBTROOM_TOKEN / DOUBTROOM_TOKEN_2 / DOUBTROOM_ROOM_ID")
        sys.exit(1)

    print(f"🟢 开始冒烟验证: {BASE_URL}\n")
    try:
        await check_rest(token_a, room_id)
        await check_presence(token_a, token_b, room_id)
        await check_relay_limit(token_a, room_id)
    except (httpx.HTTPError, OSError) as e:
        print(f"连接失败，请确认服务已启动: {e}")
        sys.exit(1)
    print("\n🏁 验证结束。")


if __name__ == "__main__":
    asyncio.run(main())
