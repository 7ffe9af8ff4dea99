from .bound import BoundModel
from .definitions import ModelDefinition, ModelDefinitionMap
from .propagation import ModelPropagator

__all__ = ["BoundModel", "ModelDefinition", "ModelDefinitionMap", "ModelPropagator"]
