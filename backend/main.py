#!/usr/bin/env python3
"""
FCCG 周投票引擎 - 后端主入口
"""

import asyncio
import sys

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from clubvote.core.config import settings
from clubvote.api import api_router
from clubvote.core.database import SessionLocal, init_db
from clubvote.services.events import event_hub
from clubvote.services.session_manager import SessionManager
from clubvote.services.websocket_service import get_websocket_manager
from clubvote.services.weekly_jobs import WeeklyVoteScheduler

# 日志设置
logger.remove()
logger.add(
    sys.stderr,
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
    level=settings.LOG_LEVEL,
)
if settings.LOG_FILE:
    logger.add(
        settings.LOG_FILE,
        rotation="1 day",
        retention="30 days",
        level="DEBUG",
    )

app = FastAPI(
    title=settings.APP_NAME,
    description="俱乐部每周比赛日投票、统计与日程生成后端API",
    version=settings.VERSION,
)

# CORS设置
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 注册API路由
app.include_router(api_router, prefix="/api")

weekly_scheduler = WeeklyVoteScheduler(SessionLocal)
_unsubscribe_relay = None

@app.on_event("startup")
async def startup_event():
    """应用启动时的初始化"""
    global _unsubscribe_relay
    logger.info(f"🚀 启动{settings.APP_NAME}后端服务...")
    init_db()
    logger.info("✅ 数据库初始化完成")

    # 修复上次停机留下的会话状态（过期未结束、多个活跃会话）
    db = SessionLocal()
    try:
        fixed = SessionManager(db).validate_and_fix_session_state()
        if fixed["expired"] or fixed["duplicates"]:
            logger.info(f"🔧 会话状态已修复: {fixed}")
    finally:
        db.close()

    # 事件推送到WebSocket
    manager = get_websocket_manager()
    manager.bind_loop(asyncio.get_running_loop())
    _unsubscribe_relay = event_hub.subscribe("*", manager.relay)

    if settings.WEEKLY_JOB_ENABLED:
        weekly_scheduler.start()
    else:
        logger.info("⏸️ 每周定时任务已禁用")

@app.on_event("shutdown")
async def shutdown_event():
    """应用关闭时停止定时任务"""
    global _unsubscribe_relay
    weekly_scheduler.shutdown()
    if _unsubscribe_relay is not None:
        _unsubscribe_relay()
        _unsubscribe_relay = None
    logger.info("👋 服务已停止")

@app.get("/")
async def root():
    """根路径健康检查"""
    return {"message": f"{settings.APP_NAME}运行中", "status": "healthy"}

@app.get("/health")
async def health_check():
    """健康检查端点"""
    return {"status": "healthy", "service": "club-vote-engine"}

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="info"
    )
