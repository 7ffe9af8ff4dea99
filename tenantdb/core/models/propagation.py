from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING

from loguru import logger

from tenantdb.core.models.definitions import ModelDefinition, ModelDefinitionMap

if TYPE_CHECKING:
    from tenantdb.core.connection.connection import TenantConnection
    from tenantdb.core.connection.registry import ConnectionRegistry


class ModelPropagator:
    """
    Makes a model known to every tenant connection.

    The definition is stored in the `ModelDefinitionMap` first, so connections
    created from then on receive it at creation time, and only afterwards
    attached to the connections already published in the `ConnectionRegistry`.

    Registering a name twice is a silent no-op: the first definition wins and
    no connection is touched again.
    """

    def __init__(self, definitions: ModelDefinitionMap, connections: ConnectionRegistry) -> None:
        self.definitions = definitions
        self.connections = connections

    def register(self, definition: ModelDefinition) -> bool:
        """
        Registers `definition` and attaches it to every live connection.

        Returns:
            bool: `True` if the model was new, `False` if the name was already
                  registered and nothing happened.
        """
        if not self.definitions.set(definition.name, definition):
            logger.debug(f"Model '{definition.name}' is already registered, skipping.")
            return False

        attached_to: list[TenantConnection] = []
        for connection in self.connections.snapshot():
            if connection.add_model(definition):
                attached_to.append(connection)
        logger.debug(
            f"Registered model '{definition.name}' on {len(attached_to)} live connection(s)."
        )
        return True

    def register_many(self, definitions: Iterable[ModelDefinition]) -> list[ModelDefinition]:
        """
        Registers several definitions in order and returns the ones that were new.
        """
        return [definition for definition in definitions if self.register(definition)]


__all__ = ["ModelPropagator"]
