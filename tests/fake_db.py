"""
In-memory stand-in for DatabaseConnection

Catalog probes are answered from a {table: [(column, data_type), ...]}
dictionary. Every other statement is recorded as (method, sql, args) and
answered from a scripted response queue, in call order; a scripted exception
is raised instead of returned.
"""

from contextlib import asynccontextmanager
from typing import Any, Dict, List, Tuple

from schema.catalog import CATALOG_QUERY

TIMESTAMP = "timestamp without time zone"
VARCHAR = "character varying"

# Mirrors schema.sql
PATIENT_COLUMNS = [
    ("id", "integer"),
    ("nombres", VARCHAR),
    ("apellidos", VARCHAR),
    ("sexo", "character"),
    ("edad", "integer"),
    ("fecha_nacimiento", "date"),
    ("terapeuta_id", "integer"),
    ("activo", "boolean"),
    ("fecha_ingreso", TIMESTAMP),
    ("fecha_modifica", TIMESTAMP),
]
SESSION_COLUMNS = [
    ("id", "integer"),
    ("paciente_id", "integer"),
    ("terapeuta_id", "integer"),
    ("fecha_inicio", TIMESTAMP),
    ("fecha_fin", TIMESTAMP),
    ("estado", VARCHAR),
    ("titulo", VARCHAR),
    ("nota", "text"),
]
RUN_COLUMNS = [
    ("id", "integer"),
    ("sesion_id", "integer"),
    ("paciente_id", "integer"),
    ("terapeuta_id", "integer"),
    ("tipo", VARCHAR),
    ("inicio", TIMESTAMP),
    ("fin", TIMESTAMP),
]
COMMENT_COLUMNS = [
    ("id", "integer"),
    ("sesion_id", "integer"),
    ("autor_id", "integer"),
    ("texto", "text"),
    ("fecha_crea", TIMESTAMP),
    ("fecha_modifica", TIMESTAMP),
]
USER_COLUMNS = [
    ("id", "integer"),
    ("rol", VARCHAR),
    ("nombre", VARCHAR),
    ("apellido", VARCHAR),
    ("email", VARCHAR),
    ("activo", "boolean"),
    ("fecha_crea", TIMESTAMP),
    ("fecha_modifica", TIMESTAMP),
]
AUDIT_COLUMNS = [
    ("id", "integer"),
    ("usuario_id", "integer"),
    ("accion", VARCHAR),
    ("entidad", VARCHAR),
    ("entidad_id", "integer"),
    ("detalle", "jsonb"),
    ("timestamp", TIMESTAMP),
]

STANDARD_TABLES = {
    "pacientes": PATIENT_COLUMNS,
    "sesiones": SESSION_COLUMNS,
    "runs_modulo": RUN_COLUMNS,
    "comentarios_sesion": COMMENT_COLUMNS,
    "usuarios": USER_COLUMNS,
    "auditoria": AUDIT_COLUMNS,
}


class _Executor:
    """Statement API shared by the pool stand-in and its connections"""

    db: "FakeDatabase"

    async def fetch(self, sql: str, *args, timeout=None):
        if sql == CATALOG_QUERY:
            return self.db._probe(args[0])
        return self.db._answer("fetch", sql, args, [])

    async def fetchrow(self, sql: str, *args, timeout=None):
        return self.db._answer("fetchrow", sql, args, None)

    async def fetchval(self, sql: str, *args, column: int = 0, timeout=None):
        return self.db._answer("fetchval", sql, args, None)

    async def execute(self, sql: str, *args, timeout=None):
        return self.db._answer("execute", sql, args, "INSERT 0 1")


class FakeConnection(_Executor):
    """One checked-out connection; nested transactions are savepoints"""

    def __init__(self, db: "FakeDatabase"):
        self.db = db

    @asynccontextmanager
    async def transaction(self):
        self.db.events.append("savepoint")
        try:
            yield self
        except BaseException:
            self.db.events.append("rollback to savepoint")
            raise
        else:
            self.db.events.append("release savepoint")


class FakeDatabase(_Executor):
    """Stand-in for DatabaseConnection"""

    def __init__(self, tables: Dict[str, List[Tuple[str, str]]] = None):
        self.db = self
        self.tables = {name: list(columns) for name, columns in (tables or {}).items()}
        self.statements: List[Tuple[str, str, list]] = []
        self.probes: List[str] = []
        self.responses: List[Any] = []
        self.events: List[str] = []
        self.catalog_error: BaseException = None
        self.healthy = True

    # ------------------------------------------------------------------
    # Test controls
    # ------------------------------------------------------------------

    def script(self, *responses) -> "FakeDatabase":
        """Queue responses for the next non-catalog statements"""
        self.responses.extend(responses)
        return self

    def drop_table(self, name: str):
        self.tables.pop(name, None)

    def retype(self, table: str, column: str, data_type: str):
        self.tables[table] = [(c, data_type if c == column else t) for c, t in self.tables[table]]

    def remove_column(self, table: str, column: str):
        self.tables[table] = [(c, t) for c, t in self.tables[table] if c != column]

    def sql(self, method: str = None) -> List[str]:
        return [sql for m, sql, _ in self.statements if method is None or m == method]

    def last(self, method: str = None) -> Tuple[str, list]:
        matches = [(sql, args) for m, sql, args in self.statements if method is None or m == method]
        return matches[-1]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _probe(self, table: str):
        self.probes.append(table)
        if self.catalog_error is not None:
            raise self.catalog_error
        return [{"column_name": name, "data_type": data_type} for name, data_type in self.tables.get(table, [])]

    def _answer(self, method: str, sql: str, args: tuple, default: Any):
        self.statements.append((method, " ".join(sql.split()), list(args)))
        response = self.responses.pop(0) if self.responses else default
        if isinstance(response, BaseException):
            raise response
        return response

    # ------------------------------------------------------------------
    # DatabaseConnection surface
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def transaction(self):
        self.events.append("begin")
        try:
            yield FakeConnection(self)
        except BaseException:
            self.events.append("rollback")
            raise
        else:
            self.events.append("commit")
        finally:
            self.events.append("release")

    async def check_connection(self) -> bool:
        return self.healthy

    async def get_pool_stats(self) -> Dict[str, Any]:
        return {"status": "connected", "size": 1, "idle": 1}
