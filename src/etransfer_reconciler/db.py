"""Database connection helper."""

from __future__ import annotations

import psycopg
from psycopg.rows import dict_row

from etransfer_reconciler.config import get_database_url


async def get_connection(
    database_url: str | None = None,
) -> psycopg.AsyncConnection[dict[str, object]]:
    """Create and return a new asynchronous database connection."""
    return await psycopg.AsyncConnection.connect(
        database_url or get_database_url(), row_factory=dict_row
    )
