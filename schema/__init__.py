"""
Schema discovery for deployments whose table and column names vary.
"""

from .catalog import SchemaCatalog
from .entities import ENTITIES, EntityShape, get_entity_shape
from .shape import ColumnInfo, ShapeDescriptor, ShapeResolver, build_shape, resolve_synonym

__all__ = [
    'SchemaCatalog',
    'ENTITIES',
    'EntityShape',
    'get_entity_shape',
    'ColumnInfo',
    'ShapeDescriptor',
    'ShapeResolver',
    'build_shape',
    'resolve_synonym',
]
