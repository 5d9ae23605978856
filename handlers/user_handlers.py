"""
User Administration Handlers
Registered as administrator-only; the dispatcher checks the role first.
"""

from typing import Any

from models import UserActiveUpdate, UserUpdate
from query.access import Caller
from .common import dump, parse_body, parse_id


async def handle_list_users(arguments: dict, repos: Any, caller: Caller) -> list:
    """Handle GET /users?q=&role="""
    users = await repos.users.list_users(search=arguments.get("q"), role=arguments.get("role"))
    return dump(users)


async def handle_get_user(arguments: dict, repos: Any, caller: Caller) -> dict:
    return dump(await repos.users.get_user(parse_id(arguments.get("id"))))


async def handle_update_user(arguments: dict, repos: Any, caller: Caller) -> dict:
    """Handle PUT /users/{id} - name and email only"""
    user_id = parse_id(arguments.get("id"))
    data = parse_body(UserUpdate, {key: value for key, value in arguments.items() if key != "id"})
    return dump(await repos.users.update_user(user_id, data))


async def handle_set_user_active(arguments: dict, repos: Any, caller: Caller) -> dict:
    """Handle POST /users/{id}/active"""
    user_id = parse_id(arguments.get("id"))
    data = parse_body(UserActiveUpdate, {key: value for key, value in arguments.items() if key != "id"})
    return dump(await repos.users.set_active(user_id, data.active))


async def handle_delete_user(arguments: dict, repos: Any, caller: Caller) -> dict:
    """Handle DELETE /users/{id} - returns the deleted user"""
    user_id = parse_id(arguments.get("id"))
    return dump(await repos.users.delete_user(caller, user_id))
