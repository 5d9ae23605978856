"""
Error Message Utilities

Turns PostgreSQL failures into service errors with human-readable messages.
Only the constraint-level explanation reaches the caller; raw driver text
(which can carry SQL and column names) is kept for the server log.
"""

import re

import asyncpg

from utils.errors import ConflictError, ServiceError, StorageError, ValidationError

# Human-readable constraint explanations
CONSTRAINT_MESSAGES = {
    "usuarios_email_key": "A user with this email is already registered.",
    "users_email_key": "A user with this email is already registered.",
    "pacientes_sexo_check": "Sex must be 'M' or 'F'.",
    "pacientes_edad_check": "Age must be between 0 and 120.",
    "sesiones_paciente_id_fkey": "The referenced patient does not exist.",
    "comentarios_sesion_sesion_id_fkey": "The referenced session does not exist.",
}

# Messages raised by database triggers that are safe to show as-is
TRIGGER_MESSAGES = {
    "El usuario asignado no es TERAPEUTA": "The assigned user is not a clinician. Choose a valid clinician.",
}

_CONSTRAINT_RE = re.compile(r'constraint "(\w+)"')

# Driver and transport failures that map onto StorageError
STORAGE_EXCEPTIONS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)


def _constraint_name(error: Exception) -> str:
    name = getattr(error, "constraint_name", None)
    if name:
        return name
    match = _CONSTRAINT_RE.search(str(error))
    return match.group(1) if match else ""


def enhance_error_message(error: Exception) -> str:
    """
    Build a caller-facing explanation for a database error.

    Handles:
    - Unique violations (duplicate identifying value)
    - Foreign key violations (missing referenced row)
    - Check constraint violations (with a known explanation when available)
    - Trigger-raised business rules

    Returns a generic message when nothing matches.
    """
    error_str = str(error)

    for marker, message in TRIGGER_MESSAGES.items():
        if marker in error_str:
            return message

    constraint = _constraint_name(error)
    if constraint in CONSTRAINT_MESSAGES:
        return CONSTRAINT_MESSAGES[constraint]

    if isinstance(error, asyncpg.UniqueViolationError) or "duplicate key value" in error_str:
        return "Duplicate entry: a record with this value already exists."
    if isinstance(error, asyncpg.ForeignKeyViolationError) or "violates foreign key constraint" in error_str:
        return "The referenced record does not exist."
    if isinstance(error, asyncpg.CheckViolationError) or "violates check constraint" in error_str:
        return "A value is outside the allowed range."
    if isinstance(error, asyncpg.NotNullViolationError) or "violates not-null constraint" in error_str:
        return "A required field is missing."

    return "Internal error"


def classify_database_error(error: Exception) -> ServiceError:
    """Map a driver exception onto the service error taxonomy"""
    if isinstance(error, ServiceError):
        return error

    message = enhance_error_message(error)
    if isinstance(error, asyncpg.UniqueViolationError):
        return ConflictError(message)
    if isinstance(error, (asyncpg.ForeignKeyViolationError,
                          asyncpg.CheckViolationError,
                          asyncpg.NotNullViolationError)):
        return ValidationError(message)
    if isinstance(error, asyncpg.RaiseError) and message != "Internal error":
        return ValidationError(message)
    return StorageError(str(error))
