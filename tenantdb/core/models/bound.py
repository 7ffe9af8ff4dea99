from __future__ import annotations

from typing import TYPE_CHECKING, Any

import sqlalchemy

from tenantdb.exceptions import QueryError

if TYPE_CHECKING:
    from tenantdb.core.connection.connection import TenantConnection


class BoundModel:
    """
    A model bound to one tenant connection.

    This is what `TenancyManager.get_model` hands out: the tenant's copy of the
    table plus the connection to run statements on. Filters given as keyword
    arguments are equality comparisons on the table columns.

    ```python
    orders = await manager.get_model("Order", tenant_id="acme")
    await orders.create(reference="A-1")
    await orders.all(reference="A-1")
    ```
    """

    __slots__ = ("table", "connection")

    def __init__(self, table: sqlalchemy.Table, connection: TenantConnection) -> None:
        self.table = table
        self.connection = connection

    @property
    def tenant_id(self) -> str:
        return self.connection.tenant_id

    def _where(self, filters: dict[str, Any]) -> list[sqlalchemy.ColumnElement[bool]]:
        clauses = []
        for key, value in filters.items():
            column = self.table.columns.get(key)
            if column is None:
                raise QueryError(
                    f'Table "{self.table.name}" has no column "{key}".',
                )
            clauses.append(column == value)
        return clauses

    def select(self, **filters: Any) -> sqlalchemy.Select:
        return sqlalchemy.select(self.table).where(*self._where(filters))

    async def create(self, **values: Any) -> Any:
        """
        Inserts one row and returns its primary key.
        """
        for key in values:
            if key not in self.table.columns:
                raise QueryError(f'Table "{self.table.name}" has no column "{key}".')
        return await self.connection.execute(self.table.insert().values(**values))

    async def all(self, **filters: Any) -> list[sqlalchemy.Row]:
        return await self.connection.fetch_all(self.select(**filters))

    async def first(self, **filters: Any) -> sqlalchemy.Row | None:
        return await self.connection.fetch_one(self.select(**filters).limit(1))

    async def count(self, **filters: Any) -> int:
        statement = (
            sqlalchemy.select(sqlalchemy.func.count())
            .select_from(self.table)
            .where(*self._where(filters))
        )
        return int(await self.connection.fetch_val(statement) or 0)

    async def delete(self, **filters: Any) -> int:
        """
        Deletes the matching rows and returns how many were removed.
        """
        return await self.connection.execute(self.table.delete().where(*self._where(filters)))

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.table.name!r} tenant={self.tenant_id!r}>"


__all__ = ["BoundModel"]
