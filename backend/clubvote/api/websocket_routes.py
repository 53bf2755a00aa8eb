"""
WebSocket API路由
"""

import json

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from loguru import logger

from clubvote.services.websocket_service import get_websocket_manager

router = APIRouter()

@router.websocket("/events")
async def websocket_events_endpoint(websocket: WebSocket):
    """投票与日程事件推送端点"""
    manager = get_websocket_manager()
    await manager.connect(websocket)

    try:
        # 发送欢迎消息
        await manager.send_personal_message({
            "type": "connected",
            "message": "已连接到投票事件推送",
        }, websocket)

        while True:
            data = await websocket.receive_text()
            try:
                message_data = json.loads(data)
            except json.JSONDecodeError:
                logger.warning(f"收到无效JSON消息: {data}")
                continue

            if isinstance(message_data, dict) and message_data.get("type") == "ping":
                await manager.send_personal_message({
                    "type": "pong",
                    "timestamp": message_data.get("timestamp"),
                }, websocket)

    except WebSocketDisconnect:
        manager.disconnect(websocket)
    except Exception as e:
        logger.error(f"WebSocket错误: {e}")
        manager.disconnect(websocket)
