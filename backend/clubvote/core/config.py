"""
应用配置模块
"""

from typing import List, Optional
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    """应用设置"""

    # 基础设置
    APP_NAME: str = "FCCG 周投票引擎"
    VERSION: str = "1.0.0"
    DEBUG: bool = True

    # 服务器设置
    HOST: str = "0.0.0.0"
    PORT: int = 8001
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    # 数据库设置
    DATABASE_URL: str = "sqlite:///./club_vote.db"
    DB_TIMEOUT: float = 5.0  # 存储层超时（秒），超时后抛出 StorageTimeoutError

    # 时间设置（俱乐部所在时区）
    TIMEZONE: str = "Asia/Seoul"
    VOTE_WINDOW_START: str = "00:01"  # 本周一开始收集意见
    VOTE_WINDOW_END: str = "17:00"    # 下周五截止

    # 日程推导设置
    SCHEDULE_POLICY: str = "max_count"  # max_count, threshold
    SCHEDULE_MIN_VOTES: int = 2
    DEFAULT_GAME_TIME: str = "待定"
    DEFAULT_GAME_LOCATION: str = "待定"
    DEFAULT_EVENT_TYPE: str = "MATCH"

    # 每周定时任务（每周一 00:01）
    WEEKLY_JOB_ENABLED: bool = True
    WEEKLY_JOB_HOUR: int = 0
    WEEKLY_JOB_MINUTE: int = 1

    # 日志设置
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None  # 例如 logs/club_vote_{time:YYYY-MM-DD}.log

    class Config:
        env_file = ".env"
        case_sensitive = True

# 全局设置实例
settings = Settings()
