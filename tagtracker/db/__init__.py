from tagtracker.db.base import Base
from tagtracker.db.config import DBSettings, get_db_settings
from tagtracker.db.engine import make_engine

__all__ = [
    "Base",
    "DBSettings",
    "get_db_settings",
    "make_engine",
]
