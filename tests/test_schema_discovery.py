"""
Tests for request-time schema discovery (catalog lookup + synonym resolution)
"""

import pytest

from schema import ColumnInfo, ShapeDescriptor, ShapeResolver, SchemaCatalog, build_shape, resolve_synonym
from schema.entities import COMMENT, MODULE_RUN, PATIENT, SESSION, USER
from tests.fake_db import FakeDatabase, PATIENT_COLUMNS, SESSION_COLUMNS, STANDARD_TABLES
from utils.errors import SchemaNotFoundError


def resolver_for(db, entity):
    return ShapeResolver(SchemaCatalog(db), entity)


class TestResolveSynonym:

    def test_first_present_synonym_wins(self):
        assert resolve_synonym(["apellido", "apellidos"], PATIENT.synonyms["last_name"]) == "apellidos"

    def test_priority_follows_synonym_order_not_column_order(self):
        columns = ["created_at", "fecha_ingreso"]
        assert resolve_synonym(columns, PATIENT.synonyms["created_at"]) == "fecha_ingreso"

    def test_no_synonym_present(self):
        assert resolve_synonym(["id", "foo"], PATIENT.synonyms["age"]) is None

    @pytest.mark.parametrize("field, columns, expected", [
        ("clinician_id", ["id_terapeuta", "usuario_id"], "usuario_id"),
        ("birth_date", ["fnac", "fecha"], "fecha"),
        ("active", ["is_active", "estado"], "estado"),
    ])
    def test_patient_synonym_priority(self, field, columns, expected):
        assert resolve_synonym(columns, PATIENT.synonyms[field]) == expected


class TestColumnInfo:

    @pytest.mark.parametrize("data_type", [
        "timestamp without time zone", "timestamp with time zone", "DATE", "Timestamp",
    ])
    def test_date_like_types(self, data_type):
        assert ColumnInfo("x", data_type).is_date_like

    @pytest.mark.parametrize("data_type", ["text", "integer", "character varying", "time without time zone"])
    def test_not_date_like(self, data_type):
        assert not ColumnInfo("x", data_type).is_date_like

    def test_boolean(self):
        assert ColumnInfo("activo", "boolean").is_boolean
        assert not ColumnInfo("estado", "character varying").is_boolean

    @pytest.mark.parametrize("data_type", ["smallint", "integer", "bigint", "numeric", "double precision"])
    def test_numeric(self, data_type):
        assert ColumnInfo("activo", data_type).is_numeric
        assert not ColumnInfo("activo", data_type).is_text

    @pytest.mark.parametrize("data_type", ["text", "character varying", "character"])
    def test_text(self, data_type):
        assert ColumnInfo("estado", data_type).is_text
        assert not ColumnInfo("estado", data_type).is_numeric


class TestShapeDescriptor:

    def test_field_map_must_reference_real_columns(self):
        with pytest.raises(ValueError):
            ShapeDescriptor(table="t", field_map={"id": "missing"}, columns=frozenset({"id"}))

    def test_build_shape_maps_every_field(self):
        shape = build_shape("pacientes", [ColumnInfo(n, t) for n, t in PATIENT_COLUMNS], PATIENT.synonyms)
        assert set(shape.field_map) == set(PATIENT.fields)
        assert shape.column("first_name") == "nombres"
        assert shape.column("clinician_id") == "terapeuta_id"
        assert shape.info("active").is_boolean
        assert shape.is_date_like("birth_date")
        assert shape.has("id", "sex")

    def test_absent_field_is_none(self):
        columns = [ColumnInfo("id", "integer"), ColumnInfo("nombre", "text")]
        shape = build_shape("pacientes", columns, PATIENT.synonyms)
        assert shape.column("age") is None
        assert not shape.has("first_name", "age")
        assert not shape.is_date_like("created_at")


class TestShapeResolver:

    @pytest.mark.asyncio
    async def test_discovery_is_deterministic(self):
        """Two discoveries against an unchanged catalog give identical shapes"""
        db = FakeDatabase(STANDARD_TABLES)
        first = await resolver_for(db, SESSION).discover()
        second = await resolver_for(db, SESSION).discover()
        assert first == second
        assert first.table == "sesiones"
        assert first.column("occurred_at") == "fecha_inicio"
        assert first.column("status") == "estado"

    @pytest.mark.asyncio
    async def test_first_candidate_with_columns_wins(self):
        db = FakeDatabase({
            "notas": [("id", "integer"), ("observacion", "text")],
            "bitacora": [("id", "integer"), ("detalle", "text"), ("fecha", "date")],
        })
        shape = await resolver_for(db, SESSION).discover()
        assert shape.table == "bitacora"
        assert shape.column("note") == "detalle"
        assert db.probes == ["sesiones", "bitacora"]

    @pytest.mark.asyncio
    async def test_never_cached(self):
        """A column added between calls is picked up by the next discovery"""
        db = FakeDatabase({"sesiones": list(SESSION_COLUMNS)})
        db.remove_column("sesiones", "titulo")
        before = await resolver_for(db, SESSION).discover()
        db.tables["sesiones"].append(("titulo", "character varying"))
        after = await resolver_for(db, SESSION).discover()
        assert before.column("title") is None
        assert after.column("title") == "titulo"

    @pytest.mark.asyncio
    async def test_missing_table_raises(self):
        db = FakeDatabase({})
        with pytest.raises(SchemaNotFoundError) as exc_info:
            await resolver_for(db, COMMENT).discover()
        assert exc_info.value.entity == "comment"
        assert db.probes == list(COMMENT.table_candidates)

    @pytest.mark.asyncio
    async def test_missing_table_optional(self):
        db = FakeDatabase({"usuarios": []})
        assert await resolver_for(db, MODULE_RUN).discover_optional() is None
        assert await resolver_for(db, USER).discover_optional() is None

    @pytest.mark.asyncio
    async def test_catalog_errors_propagate(self):
        db = FakeDatabase(STANDARD_TABLES)
        db.catalog_error = OSError("connection reset")
        with pytest.raises(OSError):
            await resolver_for(db, PATIENT).discover()
