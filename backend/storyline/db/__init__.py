from storyline.db.base import Base
from storyline.db.session import build_engine, get_engine, get_sessionmaker, init_db

__all__ = ["Base", "build_engine", "get_engine", "get_sessionmaker", "init_db"]
