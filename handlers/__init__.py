"""
Handler Registry - Maps operation names to handler functions

This module provides a centralized registry that routes operations to their
respective handler functions. Handlers are organized by resource family.

Architecture:
- Each handler module exports async functions: handle_<operation>(arguments, repos, caller)
- `arguments` merges path parameters, query string and JSON body
- Registry maps operation names to (handler_function, admin_only) tuples

Usage:
    from handlers import get_handler

    handler_info = get_handler(operation)
    if handler_info:
        handler, admin_only = handler_info
        result = await handler(arguments, repos, caller)
"""

from typing import Callable, Optional, Tuple

from . import record_handlers
from . import session_handlers
from . import stats_handlers
from . import user_handlers


# Handler registry: {operation: (handler_function, admin_only)}
HANDLER_REGISTRY = {
    # Patient records
    "list_records": (record_handlers.handle_list_records, False),
    "create_record": (record_handlers.handle_create_record, False),
    "update_record": (record_handlers.handle_update_record, False),
    "delete_record": (record_handlers.handle_delete_record, False),

    # Sessions and comments
    "list_sessions": (session_handlers.handle_list_sessions, False),
    "create_session": (session_handlers.handle_create_session, False),
    "attach_comment": (session_handlers.handle_attach_comment, False),
    "create_implicit_comment": (session_handlers.handle_create_implicit_comment, False),
    "list_session_comments": (session_handlers.handle_list_session_comments, False),
    "search_comments": (session_handlers.handle_search_comments, False),

    # Stats (always scoped to the caller)
    "stats_overview": (stats_handlers.handle_stats_overview, False),
    "stats_patients": (stats_handlers.handle_stats_patients, False),
    "stats_modules": (stats_handlers.handle_stats_modules, False),
    "stats_module_summary": (stats_handlers.handle_stats_module_summary, False),
    "stats_module_series": (stats_handlers.handle_stats_module_series, False),
    "stats_module_top_patients": (stats_handlers.handle_stats_module_top_patients, False),
    "stats_notes": (stats_handlers.handle_stats_notes, False),

    # User administration
    "list_users": (user_handlers.handle_list_users, True),
    "get_user": (user_handlers.handle_get_user, True),
    "update_user": (user_handlers.handle_update_user, True),
    "set_user_active": (user_handlers.handle_set_user_active, True),
    "delete_user": (user_handlers.handle_delete_user, True),
}


def get_handler(operation: str) -> Optional[Tuple[Callable, bool]]:
    """
    Get handler function and its role gate for an operation.

    Returns:
        (handler_function, admin_only) or None if not found
    """
    return HANDLER_REGISTRY.get(operation)


def list_operations() -> list:
    """List all registered operation names"""
    return list(HANDLER_REGISTRY.keys())
