from .connection import (
    Base,
    async_session_maker,
    close_db,
    create_engine_from_settings,
    create_session_factory,
    engine,
    init_db,
)
from .upsert import insert_for

__all__ = [
    "Base",
    "async_session_maker",
    "close_db",
    "create_engine_from_settings",
    "create_session_factory",
    "engine",
    "init_db",
    "insert_for",
]
