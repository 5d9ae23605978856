"""
Service error taxonomy

Every failure the record and reporting layers can raise. The HTTP transport
maps each class to a status code; classes with `expose = False` are reported
to callers with a generic message only, their detail stays in the server log.
"""

from typing import Optional


class ServiceError(Exception):
    """Base class for all service errors"""

    status_code: int = 500
    public_message: str = "Internal error"
    expose: bool = False

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.public_message)
        self.message = message or self.public_message

    @property
    def client_message(self) -> str:
        """Message safe to return to the caller"""
        return self.message if self.expose else self.public_message


class ValidationError(ServiceError):
    """Malformed or missing required input"""
    status_code = 400
    public_message = "Invalid request"
    expose = True


class NoFieldsToUpdateError(ValidationError):
    """Update request carried no editable field"""
    public_message = "Nothing to update"


class AuthenticationError(ServiceError):
    """Missing or invalid credential token"""
    status_code = 401
    public_message = "Not authenticated"
    expose = True


class AuthorizationError(ServiceError):
    """Authenticated, but the role forbids the action"""
    status_code = 403
    public_message = "Forbidden"
    expose = True


class NotFoundError(ServiceError):
    """Row missing, or excluded by the ownership filter"""
    status_code = 404
    public_message = "Not found"
    expose = True


class ConflictError(ServiceError):
    """Uniqueness violation"""
    status_code = 409
    public_message = "Conflict"
    expose = True


class SchemaNotFoundError(ServiceError):
    """None of the candidate physical tables exist"""

    def __init__(self, entity: str, candidates: tuple[str, ...] = ()):
        super().__init__(f"No table found for '{entity}' (tried: {', '.join(candidates)})")
        self.entity = entity
        self.candidates = candidates


class NoMappableColumnsError(ServiceError):
    """Discovery succeeded but no requested field maps to a real column"""

    def __init__(self, table: str):
        super().__init__(f"No mappable columns on table '{table}'")
        self.table = table


class StorageError(ServiceError):
    """Underlying storage or transport failure"""
