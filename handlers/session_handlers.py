"""
Session and Comment Handlers
Clinical notes (sessions) and the comments attached to them.
"""

from typing import Any

from models import CommentCreate, ImplicitCommentCreate, SessionCreate
from query.access import Caller
from .common import dump, parse_body, parse_id, parse_optional_id


async def handle_list_sessions(arguments: dict, repos: Any, caller: Caller) -> list:
    """Handle GET /sessions?patient_id= (ownerId accepted as an alias)"""
    patient_id = parse_optional_id(
        arguments.get("patient_id", arguments.get("ownerId")), "patient_id"
    )
    notes = await repos.sessions.list_sessions(caller, patient_id=patient_id, limit=arguments.get("limit"))
    return dump(notes)


async def handle_create_session(arguments: dict, repos: Any, caller: Caller) -> dict:
    """Handle POST /sessions - the timestamp comes from the server clock"""
    data = parse_body(SessionCreate, arguments)
    note = await repos.sessions.create_session(caller, data)
    return dump(note)


async def handle_attach_comment(arguments: dict, repos: Any, caller: Caller) -> dict:
    """Handle POST /sessions/{id}/comments"""
    session_id = parse_id(arguments.get("id"), "session id")
    data = parse_body(CommentCreate, arguments)
    comment = await repos.comments.attach(caller, session_id, data.comment)
    return {"data": dump(comment)}


async def handle_create_implicit_comment(arguments: dict, repos: Any, caller: Caller) -> dict:
    """Handle POST /sessions/comments - closed session and comment in one transaction"""
    data = parse_body(ImplicitCommentCreate, arguments)
    result = await repos.comments.create_with_implicit_session(caller, data.patient_id, data.comment)
    return {"data": dump(result)}


async def handle_list_session_comments(arguments: dict, repos: Any, caller: Caller) -> dict:
    """Handle GET /sessions/{id}/comments - newest first"""
    session_id = parse_id(arguments.get("id"), "session id")
    comments = await repos.comments.list_for_session(caller, session_id)
    return {"data": dump(comments)}


async def handle_search_comments(arguments: dict, repos: Any, caller: Caller) -> dict:
    """Handle GET /sessions/comments?patient_id=&sex=&q=&limit=&order="""
    hits = await repos.comments.search(
        caller,
        patient_id=parse_optional_id(arguments.get("patient_id"), "patient_id"),
        sex=arguments.get("sex"),
        search=arguments.get("q"),
        limit=arguments.get("limit"),
        order=arguments.get("order"),
    )
    return {"data": dump(hits)}
