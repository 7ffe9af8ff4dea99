from __future__ import annotations

import threading
from collections.abc import Iterator
from typing import Any

import sqlalchemy


class ModelDefinition:
    """
    A named, tenant independent description of a table.

    The definition keeps a template `sqlalchemy.Table` on a private `MetaData`.
    Tenant connections never share that table: every connection receives its
    own copy through `attach`, so each tenant engine works on its own metadata.

    Definitions are read-only once created.
    """

    __slots__ = ("name", "table")

    def __init__(self, name: str, table: sqlalchemy.Table) -> None:
        """
        Initializes a ModelDefinition from an existing table.

        Args:
            name (str): The unique model name. Lookups and registrations are
                        keyed on it.
            table (sqlalchemy.Table): The template table.

        Raises:
            ValueError: If `name` is empty.
        """
        if not name or not name.strip():
            raise ValueError("A model definition requires a non empty name.")
        self.name = name
        self.table = table

    @classmethod
    def from_columns(
        cls,
        name: str,
        *columns: sqlalchemy.Column | sqlalchemy.Constraint | sqlalchemy.Index,
        tablename: str | None = None,
        **table_kwargs: Any,
    ) -> ModelDefinition:
        """
        Declares a new definition from SQLAlchemy columns.

        Args:
            name (str): The model name.
            *columns: Columns, constraints and indexes of the table.
            tablename (str | None): The table name. Defaults to the lowercased
                                    model name.
            **table_kwargs (Any): Extra keyword arguments for `sqlalchemy.Table`.

        Returns:
            ModelDefinition: The new definition.
        """
        table = sqlalchemy.Table(
            tablename or name.lower(), sqlalchemy.MetaData(), *columns, **table_kwargs
        )
        return cls(name, table)

    @property
    def tablename(self) -> str:
        return self.table.name

    def attach(self, metadata: sqlalchemy.MetaData) -> sqlalchemy.Table:
        """
        Copies the template table into `metadata`.

        If the metadata already holds the table, the existing table is returned
        untouched, which makes attaching idempotent.
        """
        existing = metadata.tables.get(self.table.key)
        if existing is not None:
            return existing
        return self.table.to_metadata(metadata)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name!r} table={self.table.name!r}>"


class ModelDefinitionMap:
    """
    The registry of every model definition known to the process.

    A name maps to at most one definition. Registering a name a second time is
    a no-op, the first registration wins. Reads return snapshots so callers can
    iterate while other tasks or threads register new models.
    """

    def __init__(self) -> None:
        self._definitions: dict[str, ModelDefinition] = {}
        self._lock = threading.Lock()

    def has(self, name: str) -> bool:
        return name in self._definitions

    def get(self, name: str) -> ModelDefinition | None:
        return self._definitions.get(name)

    def set(self, name: str, definition: ModelDefinition) -> bool:
        """
        Stores `definition` under `name` unless the name is already taken.

        Returns:
            bool: `True` if the definition was stored, `False` if the name was
                  already present and nothing changed.
        """
        with self._lock:
            if name in self._definitions:
                return False
            self._definitions[name] = definition
            return True

    def all(self) -> list[tuple[str, ModelDefinition]]:
        """
        Returns a snapshot of every `(name, definition)` pair in registration
        order.
        """
        with self._lock:
            return list(self._definitions.items())

    def names(self) -> list[str]:
        with self._lock:
            return list(self._definitions)

    def __contains__(self, name: object) -> bool:
        return name in self._definitions

    def __len__(self) -> int:
        return len(self._definitions)

    def __iter__(self) -> Iterator[str]:
        return iter(self.names())

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.names()!r}>"


__all__ = ["ModelDefinition", "ModelDefinitionMap"]
