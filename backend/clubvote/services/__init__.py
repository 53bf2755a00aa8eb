# 业务逻辑服务包
from .session_manager import SessionManager
from .vote_ledger import VoteLedger
from .aggregation_engine import AggregationEngine
from .schedule_deriver import ScheduleDeriver
from .websocket_service import WebSocketManager

__all__ = ["SessionManager", "VoteLedger", "AggregationEngine", "ScheduleDeriver", "WebSocketManager"]
