"""
HTTP transport for the clinical records API.

- Bearer-token authentication on every route except /health
- Each route collects path, query and body into one `arguments` dict and
  dispatches to the registered handler for its operation
- ServiceError subclasses map onto status codes; storage and discovery
  failures are logged with their operation and answered with a generic message
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

import jwt
import uvicorn
from fastapi import Body, Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.status import (
    HTTP_201_CREATED, HTTP_400_BAD_REQUEST, HTTP_500_INTERNAL_SERVER_ERROR, HTTP_503_SERVICE_UNAVAILABLE,
)

from config import AuthConfig, DatabaseConfig
from container import RepositoryContainer
from database import DatabaseConnection
from handlers import get_handler
from query.access import AccessPolicy, Caller
from utils.error_messages import STORAGE_EXCEPTIONS, classify_database_error
from utils.errors import AuthenticationError, NotFoundError, ServiceError

logger = logging.getLogger(__name__)


# ============================================================================
# Authentication
# ============================================================================

def get_caller(request: Request, authorization: Optional[str] = Header(None)) -> Caller:
    """Verify the bearer token and build the caller from its claims"""
    token = ""
    if authorization and authorization.startswith("Bearer "):
        token = authorization[len("Bearer "):].strip()
    if not token:
        raise AuthenticationError("Not authenticated")

    auth: AuthConfig = request.app.state.auth
    if not auth.secret:
        raise AuthenticationError("Invalid token")
    try:
        claims = jwt.decode(token, auth.secret, algorithms=[auth.algorithm])
    except jwt.PyJWTError:
        raise AuthenticationError("Invalid token")

    caller = Caller.from_claims(claims)
    if caller.id < 1:
        raise AuthenticationError("Invalid token")
    return caller


# ============================================================================
# Dispatch
# ============================================================================

async def call_handler(request: Request, operation: str, caller: Caller, arguments: dict) -> Any:
    """
    Run the handler registered for `operation`.

    Administrator-only operations are gated here, before the handler runs.
    Driver errors are classified into service errors after being logged.
    """
    handler_info = get_handler(operation)
    if not handler_info:
        raise NotFoundError(f"Unknown operation: {operation}")

    handler, admin_only = handler_info
    if admin_only:
        AccessPolicy(caller).require_admin()

    try:
        return await handler(arguments, request.app.state.repos, caller)
    except STORAGE_EXCEPTIONS as e:
        logger.error(f"Operation {operation} failed for user {caller.id}: {e}", exc_info=True)
        raise classify_database_error(e) from e
    except ServiceError as e:
        if e.status_code >= 500:
            logger.error(f"Operation {operation} failed for user {caller.id}: {e}", exc_info=True)
        raise


def _arguments(request: Request, body: Optional[dict] = None, **path: Any) -> dict:
    arguments = dict(request.query_params)
    if body:
        arguments.update(body)
    arguments.update(path)
    return arguments


# ============================================================================
# Application
# ============================================================================

def create_app(db: Optional[DatabaseConnection] = None, auth_config: Optional[AuthConfig] = None) -> FastAPI:
    """
    Build the application.

    With an explicit `db` the caller owns its lifecycle; otherwise the
    lifespan connects a pool from the environment and closes it on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_db = getattr(app.state, "repos", None) is None
        if owns_db:
            config = DatabaseConfig.from_environment()
            database = DatabaseConnection(config)
            await database.connect()
            app.state.db = database
            app.state.repos = RepositoryContainer(database)
            logger.info(f"Connected to database: {config.database} at {config.host}")
        yield
        if owns_db:
            await app.state.db.disconnect()
            logger.info("Database connection closed")

    app = FastAPI(title="Clinic Records API", lifespan=lifespan)
    app.state.auth = auth_config or AuthConfig.from_environment()
    if db is not None:
        app.state.db = db
        app.state.repos = RepositoryContainer(db)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.client_message})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=HTTP_400_BAD_REQUEST, content={"error": "Invalid request body"})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error(f"{request.method} {request.url.path} failed: {exc}", exc_info=exc)
        return JSONResponse(status_code=HTTP_500_INTERNAL_SERVER_ERROR, content={"error": "Internal error"})

    # ------------------------------------------------------------------
    # Health / identity
    # ------------------------------------------------------------------

    @app.get("/health")
    async def health_check(request: Request):
        database = getattr(request.app.state, "db", None)
        if database is not None and await database.check_connection():
            return {"status": "healthy", "database": "connected", "pool": await database.get_pool_stats()}
        return JSONResponse(
            status_code=HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unhealthy", "database": "unavailable"},
        )

    @app.get("/auth/me")
    async def who_am_i(caller: Caller = Depends(get_caller)):
        return {
            "id": caller.id,
            "role": caller.role.value or None,
            "first_name": caller.first_name,
            "last_name": caller.last_name,
            "email": caller.email,
        }

    # ------------------------------------------------------------------
    # Patient records
    # ------------------------------------------------------------------

    @app.get("/records")
    async def list_records(request: Request, caller: Caller = Depends(get_caller)):
        return await call_handler(request, "list_records", caller, _arguments(request))

    @app.post("/records", status_code=HTTP_201_CREATED)
    async def create_record(request: Request, payload: Optional[dict] = Body(None), caller: Caller = Depends(get_caller)):
        return await call_handler(request, "create_record", caller, _arguments(request, payload))

    @app.put("/records/{record_id}")
    async def update_record(request: Request, record_id: str, payload: Optional[dict] = Body(None),
                            caller: Caller = Depends(get_caller)):
        return await call_handler(request, "update_record", caller, _arguments(request, payload, id=record_id))

    @app.delete("/records/{record_id}")
    async def delete_record(request: Request, record_id: str, caller: Caller = Depends(get_caller)):
        return await call_handler(request, "delete_record", caller, _arguments(request, id=record_id))

    # ------------------------------------------------------------------
    # Sessions and comments
    # ------------------------------------------------------------------

    @app.get("/sessions")
    async def list_sessions(request: Request, caller: Caller = Depends(get_caller)):
        return await call_handler(request, "list_sessions", caller, _arguments(request))

    @app.post("/sessions", status_code=HTTP_201_CREATED)
    async def create_session(request: Request, payload: Optional[dict] = Body(None), caller: Caller = Depends(get_caller)):
        return await call_handler(request, "create_session", caller, _arguments(request, payload))

    @app.post("/sessions/comments")
    async def create_implicit_comment(request: Request, payload: Optional[dict] = Body(None),
                                      caller: Caller = Depends(get_caller)):
        return await call_handler(request, "create_implicit_comment", caller, _arguments(request, payload))

    @app.get("/sessions/comments")
    async def search_comments(request: Request, caller: Caller = Depends(get_caller)):
        return await call_handler(request, "search_comments", caller, _arguments(request))

    @app.post("/sessions/{session_id}/comments")
    async def attach_comment(request: Request, session_id: str, payload: Optional[dict] = Body(None),
                             caller: Caller = Depends(get_caller)):
        return await call_handler(request, "attach_comment", caller, _arguments(request, payload, id=session_id))

    @app.get("/sessions/{session_id}/comments")
    async def list_session_comments(request: Request, session_id: str, caller: Caller = Depends(get_caller)):
        return await call_handler(request, "list_session_comments", caller, _arguments(request, id=session_id))

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    @app.get("/stats/overview")
    async def stats_overview(request: Request, caller: Caller = Depends(get_caller)):
        return await call_handler(request, "stats_overview", caller, _arguments(request))

    @app.get("/stats/pacientes")
    async def stats_patients(request: Request, caller: Caller = Depends(get_caller)):
        return await call_handler(request, "stats_patients", caller, _arguments(request))

    @app.get("/stats/modulos")
    async def stats_modules(request: Request, caller: Caller = Depends(get_caller)):
        return await call_handler(request, "stats_modules", caller, _arguments(request))

    @app.get("/stats/modulo/{module_type}/summary")
    async def stats_module_summary(request: Request, module_type: str, caller: Caller = Depends(get_caller)):
        return await call_handler(request, "stats_module_summary", caller, _arguments(request, type=module_type))

    @app.get("/stats/modulo/{module_type}/series")
    async def stats_module_series(request: Request, module_type: str, caller: Caller = Depends(get_caller)):
        return await call_handler(request, "stats_module_series", caller, _arguments(request, type=module_type))

    @app.get("/stats/modulo/{module_type}/top-pacientes")
    async def stats_module_top_patients(request: Request, module_type: str, caller: Caller = Depends(get_caller)):
        return await call_handler(
            request, "stats_module_top_patients", caller, _arguments(request, type=module_type))

    @app.get("/stats/notas")
    async def stats_notes(request: Request, caller: Caller = Depends(get_caller)):
        return await call_handler(request, "stats_notes", caller, _arguments(request))

    # ------------------------------------------------------------------
    # User administration
    # ------------------------------------------------------------------

    @app.get("/users")
    async def list_users(request: Request, caller: Caller = Depends(get_caller)):
        return await call_handler(request, "list_users", caller, _arguments(request))

    @app.get("/users/{user_id}")
    async def get_user(request: Request, user_id: str, caller: Caller = Depends(get_caller)):
        return await call_handler(request, "get_user", caller, _arguments(request, id=user_id))

    @app.put("/users/{user_id}")
    async def update_user(request: Request, user_id: str, payload: Optional[dict] = Body(None),
                          caller: Caller = Depends(get_caller)):
        return await call_handler(request, "update_user", caller, _arguments(request, payload, id=user_id))

    @app.post("/users/{user_id}/active")
    async def set_user_active(request: Request, user_id: str, payload: Optional[dict] = Body(None),
                              caller: Caller = Depends(get_caller)):
        return await call_handler(request, "set_user_active", caller, _arguments(request, payload, id=user_id))

    @app.delete("/users/{user_id}")
    async def delete_user(request: Request, user_id: str, caller: Caller = Depends(get_caller)):
        return await call_handler(request, "delete_user", caller, _arguments(request, id=user_id))

    return app


def run_http_server(host: str = "0.0.0.0", port: int = 3000, log_level: str = "info"):
    """
    Run the API with uvicorn.

    Args:
        host: Host to bind to
        port: Port to listen on
    """
    uvicorn.run(create_app(), host=host, port=port, log_level=log_level.lower())
