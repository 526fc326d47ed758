"""Database package for the plan store."""
from .connection import close_db, get_engine, get_session_factory, init_db
from .models import Base, SalePlanRecord
from .plan_repository import SqlPlanStore

__all__ = [
    "Base",
    "SalePlanRecord",
    "SqlPlanStore",
    "close_db",
    "get_engine",
    "get_session_factory",
    "init_db",
]
