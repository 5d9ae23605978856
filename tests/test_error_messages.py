"""
Tests for database error classification and caller-facing messages
"""

import asyncpg
import pytest

from utils.error_messages import classify_database_error, enhance_error_message
from utils.errors import (
    ConflictError, NoFieldsToUpdateError, NoMappableColumnsError, NotFoundError,
    SchemaNotFoundError, ServiceError, StorageError, ValidationError,
)


class TestEnhanceErrorMessage:
    """Test error message enhancement for various error types."""

    def test_known_constraint(self):
        error = Exception('duplicate key value violates unique constraint "usuarios_email_key"')
        assert enhance_error_message(error) == "A user with this email is already registered."

    def test_check_constraint(self):
        error = Exception('new row for relation "pacientes" violates check constraint "pacientes_edad_check"')
        assert enhance_error_message(error) == "Age must be between 0 and 120."

    def test_unknown_unique_violation(self):
        error = Exception('duplicate key value violates unique constraint "some_other_key"')
        assert enhance_error_message(error) == "Duplicate entry: a record with this value already exists."

    def test_foreign_key_violation(self):
        error = Exception('insert or update on table "x" violates foreign key constraint "x_y_fkey"')
        assert enhance_error_message(error) == "The referenced record does not exist."

    def test_trigger_message(self):
        error = Exception("El usuario asignado no es TERAPEUTA")
        assert "not a clinician" in enhance_error_message(error)

    def test_nothing_matches(self):
        assert enhance_error_message(Exception('column "nombres" does not exist')) == "Internal error"


class TestClassifyDatabaseError:

    def test_unique_violation_is_conflict(self):
        error = asyncpg.UniqueViolationError('duplicate key value violates unique constraint "usuarios_email_key"')
        result = classify_database_error(error)
        assert isinstance(result, ConflictError)
        assert result.status_code == 409

    def test_check_violation_is_validation(self):
        error = asyncpg.CheckViolationError('violates check constraint "pacientes_sexo_check"')
        result = classify_database_error(error)
        assert isinstance(result, ValidationError)
        assert result.client_message == "Sex must be 'M' or 'F'."

    def test_other_errors_are_generic(self):
        error = asyncpg.UndefinedColumnError('column "nombres" does not exist')
        result = classify_database_error(error)
        assert isinstance(result, StorageError)
        assert result.client_message == "Internal error"
        assert "nombres" not in result.client_message

    def test_transport_errors_are_generic(self):
        result = classify_database_error(OSError("connection refused"))
        assert isinstance(result, StorageError)

    def test_service_errors_pass_through(self):
        error = NotFoundError("Patient not found")
        assert classify_database_error(error) is error


class TestErrorTaxonomy:

    @pytest.mark.parametrize("error, status", [
        (ValidationError("bad"), 400),
        (NoFieldsToUpdateError(), 400),
        (NotFoundError(), 404),
        (ConflictError(), 409),
        (SchemaNotFoundError("patient", ("pacientes",)), 500),
        (NoMappableColumnsError("pacientes"), 500),
        (StorageError("boom"), 500),
    ])
    def test_status_codes(self, error, status):
        assert isinstance(error, ServiceError)
        assert error.status_code == status

    def test_internal_detail_is_hidden(self):
        error = SchemaNotFoundError("patient", ("pacientes", "tbl_pacientes"))
        assert "pacientes" in str(error)
        assert error.client_message == "Internal error"

    def test_exposed_messages(self):
        assert NoFieldsToUpdateError().client_message == "Nothing to update"
        assert NotFoundError("Session not found").client_message == "Session not found"
