"""
Schema-adaptive query layer

Builds parameterized SQL from discovered shapes and applies per-role
row visibility.
"""

from .access import AccessPolicy, Caller, Role, normalize_role
from .builder import (
    SERVER_NOW,
    MutationSpec,
    QueryBuilder,
    QuerySpec,
    SqlParams,
    clamp_limit,
    clamp_page,
    like_pattern,
    page_offset,
    sort_direction,
)

__all__ = [
    'AccessPolicy',
    'Caller',
    'Role',
    'normalize_role',
    'SERVER_NOW',
    'MutationSpec',
    'QueryBuilder',
    'QuerySpec',
    'SqlParams',
    'clamp_limit',
    'clamp_page',
    'like_pattern',
    'page_offset',
    'sort_direction',
]
