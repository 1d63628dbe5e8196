"""Order repository protocol and PostgreSQL implementation."""

from __future__ import annotations

from collections.abc import Collection
from decimal import Decimal
from typing import Literal, Protocol

from psycopg import sql

from etransfer_reconciler.db import get_connection
from etransfer_reconciler.models import Order, Recipient

OrderBy = Literal["date", "id"]

_COLUMNS = (
    "id",
    "external_order_id",
    "status",
    "total",
    "customer_name",
    "customer_email",
    "merchant_email",
    "date",
    "payment_received_customer_email_sent",
    "payment_received_merchant_email_sent",
)


class OrderRepository(Protocol):
    """Storage operations the reconciler needs from the order store."""

    async def get(self, order_id: int) -> Order | None: ...

    async def find_orders(
        self,
        *,
        status: str | None = None,
        exclude_statuses: Collection[str] = (),
        total: Decimal | None = None,
        external_order_id: str | None = None,
        customer_email: str | None = None,
        order_by: OrderBy = "date",
        limit: int | None = None,
    ) -> list[Order]: ...

    async def update_status(
        self, order_id: int, status: str, *, expected_status: str
    ) -> Order | None: ...

    async def mark_notification_sent(self, order_id: int, recipient: Recipient) -> bool: ...


class PostgresOrderRepository:
    """OrderRepository backed by the ``orders`` table.

    Results are always newest first. Email comparison is case-insensitive
    and ignores surrounding whitespace.
    """

    def __init__(self, database_url: str | None = None) -> None:
        self.database_url = database_url

    async def get(self, order_id: int) -> Order | None:
        query = sql.SQL("SELECT {columns} FROM orders WHERE id = %s").format(
            columns=_column_list()
        )
        async with await get_connection(self.database_url) as conn:
            cur = await conn.execute(query, (order_id,))
            row = await cur.fetchone()
        return Order.model_validate(row) if row else None

    async def find_orders(
        self,
        *,
        status: str | None = None,
        exclude_statuses: Collection[str] = (),
        total: Decimal | None = None,
        external_order_id: str | None = None,
        customer_email: str | None = None,
        order_by: OrderBy = "date",
        limit: int | None = None,
    ) -> list[Order]:
        clauses: list[sql.Composable] = []
        params: list[object] = []

        if status is not None:
            clauses.append(sql.SQL("status = %s"))
            params.append(status)
        if exclude_statuses:
            clauses.append(sql.SQL("status <> ALL(%s)"))
            params.append(list(exclude_statuses))
        if total is not None:
            clauses.append(sql.SQL("total = %s"))
            params.append(total)
        if external_order_id is not None:
            clauses.append(sql.SQL("external_order_id = %s"))
            params.append(external_order_id)
        if customer_email is not None:
            clauses.append(sql.SQL("LOWER(TRIM(customer_email)) = LOWER(TRIM(%s))"))
            params.append(customer_email)

        query = sql.SQL("SELECT {columns} FROM orders").format(columns=_column_list())
        if clauses:
            query += sql.SQL(" WHERE ") + sql.SQL(" AND ").join(clauses)
        query += sql.SQL(" ORDER BY {order} DESC").format(order=sql.Identifier(order_by))
        if limit is not None:
            query += sql.SQL(" LIMIT %s")
            params.append(limit)

        async with await get_connection(self.database_url) as conn:
            cur = await conn.execute(query, params)
            rows = await cur.fetchall()
        return [Order.model_validate(row) for row in rows]

    async def update_status(
        self, order_id: int, status: str, *, expected_status: str
    ) -> Order | None:
        """Set the status only if it still equals expected_status.

        Returns the updated order, or None when the row was changed by
        someone else (or no longer exists).
        """
        query = sql.SQL(
            "UPDATE orders SET status = %s WHERE id = %s AND status = %s "
            "RETURNING {columns}"
        ).format(columns=_column_list())
        async with await get_connection(self.database_url) as conn:
            cur = await conn.execute(query, (status, order_id, expected_status))
            row = await cur.fetchone()
        return Order.model_validate(row) if row else None

    async def mark_notification_sent(self, order_id: int, recipient: Recipient) -> bool:
        """Flip the recipient's sent flag from false to true.

        Returns False when the flag was already set.
        """
        column = sql.Identifier(recipient.flag_column)
        query = sql.SQL(
            "UPDATE orders SET {flag} = true WHERE id = %s AND {flag} = false RETURNING id"
        ).format(flag=column)
        async with await get_connection(self.database_url) as conn:
            cur = await conn.execute(query, (order_id,))
            row = await cur.fetchone()
        return row is not None


def _column_list() -> sql.Composable:
    return sql.SQL(", ").join(sql.Identifier(name) for name in _COLUMNS)
