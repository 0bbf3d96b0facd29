"""
Database connection and session management for the SQL session registry
"""
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(database_url: str) -> Engine:
    """Create a synchronous engine; registry calls already run in worker threads."""
    connect_args = {}
    is_sqlite = database_url.startswith("sqlite")
    if is_sqlite:
        # Registry calls come from the request thread pool and the reaper thread
        connect_args["check_same_thread"] = False
    engine = create_engine(database_url, echo=False, pool_pre_ping=True, connect_args=connect_args)
    if is_sqlite:
        # SQLite ignores foreign keys (and ON DELETE CASCADE) unless asked per connection
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def build_session_maker(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False)
