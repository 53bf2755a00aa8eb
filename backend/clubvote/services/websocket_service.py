"""
WebSocket连接管理服务

把事件中心的事件推送给已连接的前端（投票提交、会话变化、日程变化）。
"""

import asyncio
import json
from typing import Any, Dict, List, Optional, Set

from fastapi import WebSocket
from loguru import logger

class WebSocketManager:
    """WebSocket连接管理器"""

    def __init__(self):
        self.connections: List[WebSocket] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._tasks: Set[asyncio.Task] = set()

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        """记录主事件循环，后台线程中的事件通过它推送"""
        self._loop = loop

    async def connect(self, websocket: WebSocket):
        """连接WebSocket"""
        await websocket.accept()
        # 检查是否已存在，避免重复连接
        if websocket not in self.connections:
            self.connections.append(websocket)
            logger.info(f"新连接加入，当前连接数: {len(self.connections)}")

    def disconnect(self, websocket: WebSocket):
        """断开连接"""
        if websocket in self.connections:
            self.connections.remove(websocket)
            logger.info(f"连接断开，当前连接数: {len(self.connections)}")

    async def send_personal_message(self, message: dict, websocket: WebSocket):
        """发送个人消息"""
        try:
            await websocket.send_text(json.dumps(message, ensure_ascii=False, default=str))
        except Exception as e:
            logger.warning(f"发送个人消息失败: {e}")

    async def broadcast(self, message: dict) -> int:
        """向所有连接广播消息，返回成功数量"""
        connections = self.connections.copy()  # 创建副本进行迭代
        if not connections:
            logger.debug(f"没有活跃连接，跳过广播 {message.get('type', 'unknown')}")
            return 0

        message_text = json.dumps(message, ensure_ascii=False, default=str)
        failed_connections = []
        success_count = 0

        for connection in connections:
            try:
                await connection.send_text(message_text)
                success_count += 1
            except Exception as e:
                logger.warning(f"广播消息失败: {e}")
                failed_connections.append(connection)

        # 移除失败的连接
        for failed_connection in failed_connections:
            if failed_connection in self.connections:
                self.connections.remove(failed_connection)

        if failed_connections:
            logger.info(f"移除 {len(failed_connections)} 个失效连接，剩余连接数: {len(self.connections)}")

        logger.debug(f"📡 广播 {message.get('type')}: {success_count} 成功, {len(failed_connections)} 失败")
        return success_count

    def relay(self, event_type: str, payload: Dict[str, Any]) -> None:
        """事件中心订阅者：把事件转成WebSocket消息"""
        message = {"type": event_type, **payload}
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is not None:
            task = loop.create_task(self.broadcast(message))
            # 保留引用直到任务结束
            self._tasks.add(task)
            task.add_done_callback(self._task_done)
        elif self._loop is not None and self._loop.is_running():
            # 后台线程（定时任务）发布的事件
            asyncio.run_coroutine_threadsafe(self.broadcast(message), self._loop)
        else:
            logger.debug(f"事件循环未运行，跳过推送 {event_type}")

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"❌ 推送事件失败: {error}")


# 全局WebSocket连接管理器
_manager: Optional[WebSocketManager] = None

def get_websocket_manager() -> WebSocketManager:
    """获取全局WebSocket管理器实例"""
    global _manager
    if _manager is None:
        _manager = WebSocketManager()
    return _manager
