"""
数据库配置
"""
from contextlib import contextmanager

from loguru import logger
from sqlalchemy import create_engine, event
from sqlalchemy.exc import OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import declarative_base, sessionmaker

from clubvote.core.config import settings
from clubvote.core.exceptions import StorageTimeoutError


def build_engine(database_url: str = settings.DATABASE_URL, **kwargs):
    """按配置创建数据库引擎，所有存储访问都带超时"""
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": settings.DB_TIMEOUT}
    else:
        connect_args = {}
        kwargs.setdefault("pool_timeout", settings.DB_TIMEOUT)
        kwargs.setdefault("pool_pre_ping", True)
    connect_args.update(kwargs.pop("connect_args", {}))

    new_engine = create_engine(
        database_url,
        connect_args=connect_args,
        echo=False,  # 设置为True可以看到SQL查询日志
        **kwargs
    )

    if new_engine.dialect.name == "sqlite":
        # SQLite默认不检查外键，级联删除依赖它
        @event.listens_for(new_engine, "connect")
        def _enable_sqlite_fk(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return new_engine


engine = build_engine()
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

def get_db():
    """获取数据库会话"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

@contextmanager
def storage_guard(db=None):
    """把存储层的超时/锁等待错误转换为 StorageTimeoutError（由调用方决定是否重试）"""
    try:
        yield
    except (OperationalError, PoolTimeoutError) as e:
        if db is not None:
            db.rollback()
        logger.warning(f"⚠️ 存储操作超时或不可用: {e}")
        raise StorageTimeoutError(f"存储操作超时，请稍后重试: {e.__class__.__name__}") from e

def init_db(bind=None):
    """初始化数据库"""
    # 导入所有模型
    from clubvote.models.vote_session import VoteSession, DisabledDay
    from clubvote.models.vote import Vote
    from clubvote.models.vote_result import VoteResult
    from clubvote.models.schedule_entry import ScheduleEntry, RosterMember

    # 创建所有表
    Base.metadata.create_all(bind=bind or engine)
    logger.info("数据库初始化完成")
