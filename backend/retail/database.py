"""
Database Configuration
======================

This module sets up:
1. SQLAlchemy engine (the table store's connection pool)
2. Session factory (one session per request)
3. Base (declarative base for table entities)

Unlike a module-level engine, both are built from an explicit database URL so
the application and the tests can each point at their own database.
"""

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

# ============================================================================
# ENGINE
# ============================================================================
# - pool_pre_ping=True
#   Tests connections before use; a restarted database is reconnected
#   instead of failing the request.
#
# - check_same_thread=False (SQLite only)
#   FastAPI runs sync endpoints in a threadpool, so a connection may be used
#   from a thread other than the one that opened it.


def make_engine(database_url: str, echo: bool = False) -> Engine:
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False

    engine = create_engine(
        database_url,
        pool_pre_ping=True,
        echo=echo,
        connect_args=connect_args,
    )

    if database_url.startswith("sqlite"):
        # Wait for a concurrent writer instead of failing immediately
        @event.listens_for(engine, "connect")
        def _set_busy_timeout(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA busy_timeout = 5000")
            cursor.close()

    return engine


# ============================================================================
# SESSION FACTORY
# ============================================================================
# - autoflush=False
#   Nothing reaches the table store until an explicit commit, so each storage
#   write in the workflow is its own, independent commit.


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autoflush=False, bind=engine)


# ============================================================================
# DECLARATIVE BASE
# ============================================================================
# All table entities (customers, products, orders, queue messages) inherit
# from this Base. Base.metadata.create_all(bind=engine) creates the tables.

Base = declarative_base()


def init_db(engine: Engine) -> None:
    # Import for side effect: registers the entity tables on Base.metadata
    from retail import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
