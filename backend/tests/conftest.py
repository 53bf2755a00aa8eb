# tests/conftest.py

import os

# 必须在导入 clubvote 之前设置，避免连接默认的文件数据库
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("WEEKLY_JOB_ENABLED", "false")

from datetime import datetime, timezone
from urllib.parse import quote

import pytest
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from starlette.testclient import TestClient

from clubvote.core.clock import FixedClock, get_clock
from clubvote.core.database import Base, build_engine, get_db, init_db
from clubvote.services.aggregation_engine import AggregationEngine, ResultCache, result_cache
from clubvote.services.events import EventHub, event_hub
from clubvote.services.schedule_deriver import ScheduleDeriver
from clubvote.services.session_manager import SessionManager
from clubvote.services.time_window import TimeWindowResolver
from clubvote.services.vote_ledger import VoteLedger

# 2025-10-22（周三）12:00 KST
WEDNESDAY_NOON_UTC = datetime(2025, 10, 22, 3, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="function")
def db_engine():
    engine = build_engine("sqlite://", poolclass=StaticPool)
    init_db(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture(scope="function")
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FixedClock(WEDNESDAY_NOON_UTC)


@pytest.fixture
def hub():
    return EventHub()


@pytest.fixture
def published(hub):
    """记录发布到测试事件中心的全部事件"""
    received = []
    hub.subscribe("*", lambda event_type, payload: received.append((event_type, payload)))
    return received


@pytest.fixture
def cache():
    return ResultCache()


@pytest.fixture
def resolver():
    return TimeWindowResolver("Asia/Seoul")


@pytest.fixture
def manager(db, clock, resolver, hub, cache):
    return SessionManager(db, clock=clock, resolver=resolver, hub=hub, cache=cache)


@pytest.fixture
def ledger(db, clock, hub):
    return VoteLedger(db, clock=clock, hub=hub)


@pytest.fixture
def aggregator(db, clock, hub, cache):
    return AggregationEngine(db, clock=clock, hub=hub, cache=cache)


@pytest.fixture
def deriver(db, clock, resolver, hub, cache):
    return ScheduleDeriver(db, clock=clock, resolver=resolver, hub=hub, cache=cache)


@pytest.fixture
def next_monday(resolver, clock):
    return resolver.next_week_monday(clock.now())


@pytest.fixture
def active_session(manager, next_monday):
    """下周（2025-10-27）的活跃投票会话"""
    return manager.create_session(next_monday)


@pytest.fixture(scope="function")
def test_client(session_factory, clock):
    """
    使用内存数据库和固定时钟的 TestClient（不触发启动事件，定时任务不会运行）
    """
    from main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    result_cache.clear()

    yield TestClient(app)

    app.dependency_overrides.clear()
    result_cache.clear()
    event_hub.clear()


@pytest.fixture
def member_headers():
    """构造身份请求头（名称按URL编码）"""
    def build(user_id: str, user_name: str):
        return {"X-User-Id": user_id, "X-User-Name": quote(user_name)}
    return build
