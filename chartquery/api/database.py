from __future__ import annotations

from contextlib import contextmanager
from typing import Dict, Iterator
import logging

from sqlalchemy import create_engine
from sqlalchemy.engine import Connection, Engine, make_url
from sqlalchemy.exc import ArgumentError

from chartquery.api.config import get_settings

logger = logging.getLogger(__name__)

_ENGINE_CACHE: Dict[str, Engine] = {}


def redact(connection_string: str) -> str:
    """Connection string safe for logs (credentials removed)."""
    if "@" not in connection_string:
        return connection_string
    credentials, location = connection_string.split("@", 1)
    scheme = credentials.split("://", 1)[0]
    return f"{scheme}://***@{location}"


def _normalize_url(conn_str: str) -> str:
    # Prefer psycopg v3 when a bare 'postgresql://' URL would default to psycopg2.
    try:
        url = make_url(conn_str)
    except ArgumentError:
        logger.debug("Could not parse connection string %s; using it verbatim", redact(conn_str))
        return conn_str
    backend = url.get_backend_name()
    driver = url.get_driver_name() or ""
    if backend in {"postgresql", "postgres"} and driver in {"", "psycopg2", "psycopg2cffi"}:
        upgraded = url.set(drivername="postgresql+psycopg").render_as_string(hide_password=False)
        logger.info("Upgraded Postgres URL to psycopg v3 driver: %s", redact(upgraded))
        return upgraded
    return conn_str


def get_engine(connection_string: str | None = None) -> Engine:
    settings = get_settings()
    conn_str = connection_string or settings.database.connection_string
    if not conn_str:
        raise ValueError("Database connection string is required.")

    conn_str = _normalize_url(conn_str)
    if conn_str not in _ENGINE_CACHE:
        options = {"pool_pre_ping": True}
        if not conn_str.startswith("sqlite"):
            options["pool_size"] = settings.database.pool_size
            options["pool_timeout"] = settings.database.pool_timeout
        _ENGINE_CACHE[conn_str] = create_engine(conn_str, **options)
    return _ENGINE_CACHE[conn_str]


@contextmanager
def get_connection(connection_string: str | None = None) -> Iterator[Connection]:
    engine = get_engine(connection_string)
    with engine.connect() as conn:
        yield conn
