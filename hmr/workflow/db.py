"""SQLAlchemy base, portable column types and engine wiring for drafts."""

from __future__ import annotations

from functools import lru_cache

from sqlalchemy import JSON, Engine, create_engine
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()
metadata = Base.metadata

# Portable column type (JSONB for Postgres, JSON for SQLite)
JSONType = JSONB().with_variant(JSON(), "sqlite")


def _engine_kwargs(url: str) -> dict:
    kwargs: dict = {}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in url:
            # In-memory SQLite needs StaticPool to share state across connections
            kwargs["poolclass"] = StaticPool
    return kwargs


@lru_cache(maxsize=4)
def engine_for_url(url: str, echo: bool = False) -> Engine:
    return create_engine(url, echo=echo, **_engine_kwargs(url))


def sessionmaker_for(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


__all__ = ["Base", "JSONType", "engine_for_url", "metadata", "sessionmaker_for"]
