"""
API路由模块
"""

from fastapi import APIRouter
from .vote_routes import router as vote_router
from .admin_session_routes import router as admin_session_router
from .schedule_routes import router as schedule_router
from .websocket_routes import router as ws_router

# 创建主路由器
api_router = APIRouter()

# 注册各个功能模块的路由
api_router.include_router(vote_router, prefix="/votes", tags=["成员投票"])
api_router.include_router(admin_session_router, prefix="/admin/vote-sessions", tags=["投票会话管理"])
api_router.include_router(schedule_router, prefix="/schedule", tags=["比赛日程"])
api_router.include_router(ws_router, prefix="/ws", tags=["WebSocket"])
