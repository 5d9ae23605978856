"""
Stats Service - dashboard and report aggregates

Every report is scoped to the calling clinician, whatever their role. Shapes
for patients, sessions, module runs and comments are discovered
independently; a metric runs only when the columns it needs resolved (and,
for time windows, carry a date-like declared type). Otherwise it yields its
empty default.

Metrics are isolated from each other: a storage failure inside one metric is
logged and replaced by that metric's default.

Parameter $1 is always the caller's id.
"""

import logging
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

from database import DatabaseConnection
from models import (
    DailyCount, ModuleCount, ModuleSummary, Overview,
    PatientModuleCount, PatientReportPage, PatientReportRow, SessionNote,
)
from query.access import Caller
from query.builder import (
    QueryBuilder, QuerySpec, SqlParams,
    clamp_limit, clamp_page, page_offset, quote_ident, sort_direction,
)
from schema.catalog import SchemaCatalog
from schema.entities import COMMENT, MODULE_RUN, PATIENT, SESSION, EntityShape
from schema.shape import ShapeDescriptor, ShapeResolver
from utils.error_messages import STORAGE_EXCEPTIONS

logger = logging.getLogger(__name__)

T = TypeVar("T")

REPORT_DEFAULT_LIMIT = 10
REPORT_MAX_LIMIT = 200
TOP_PATIENTS_DEFAULT_LIMIT = 10
NOTES_DEFAULT_LIMIT = 30
NOTES_MAX_LIMIT = 200

ULTRASONIC = "ULTRASONICOS"
PUSH_BUTTON = "PULSADORES"


def normalize_module_type(raw: Any) -> str:
    """Canonical module category: A/ULTRA* and B/PULS* fold together, the rest upper-cased"""
    code = str(raw or "").strip().upper()
    if code == "A" or code.startswith("ULTRA"):
        return ULTRASONIC
    if code == "B" or code.startswith("PULS"):
        return PUSH_BUTTON
    return code


def module_type_sql(column_ref: str) -> str:
    """SQL expression applying `normalize_module_type` to a column"""
    code = f"UPPER(TRIM(CAST({column_ref} AS TEXT)))"
    return (
        f"CASE WHEN {code} = 'A' OR {code} LIKE 'ULTRA%' THEN '{ULTRASONIC}' "
        f"WHEN {code} = 'B' OR {code} LIKE 'PULS%' THEN '{PUSH_BUTTON}' "
        f"ELSE {code} END"
    )


class AggregationWindow:
    """Trailing time window in days, clamped to [1, 365]"""

    DEFAULT_DAYS = 30
    MAX_DAYS = 365

    def __init__(self, days: Any = None):
        self.days = clamp_limit(days, default=self.DEFAULT_DAYS, maximum=self.MAX_DAYS)

    def condition(self, column_ref: str, params: SqlParams) -> str:
        return f"{column_ref} >= NOW() - make_interval(days => {params.add(self.days)})"


class _RunSource:
    """
    FROM clause and ownership condition for module runs.

    Runs are owned directly when they carry a clinician column, otherwise
    through their session.
    """

    def __init__(self, runs: QueryBuilder, sessions: Optional[QueryBuilder], from_clause: str, owner: str):
        self.runs = runs
        self.sessions = sessions
        self.from_clause = from_clause
        self.owner = owner

    @classmethod
    def build(cls, run: Optional[ShapeDescriptor], ses: Optional[ShapeDescriptor]) -> Optional["_RunSource"]:
        if run is None or not run.has("module_type") or not run.is_date_like("started_at"):
            return None
        r = QueryBuilder(run, "r")
        if run.has("clinician_id"):
            return cls(r, None, r.table, f"{r.ref('clinician_id')} = $1")
        if ses is not None and run.has("session_id") and ses.has("id", "clinician_id"):
            s = QueryBuilder(ses, "s")
            from_clause = f"{r.table} JOIN {s.table} ON {s.ref('id')} = {r.ref('session_id')}"
            return cls(r, s, from_clause, f"{s.ref('clinician_id')} = $1")
        return None

    def patient_ref(self) -> Optional[str]:
        if self.runs.ref("patient_id"):
            return self.runs.ref("patient_id")
        return self.sessions.ref("patient_id") if self.sessions else None


class StatsService:
    """Self-scoped reports over independently discovered shapes."""

    def __init__(self, db: DatabaseConnection):
        self.db = db

    async def _discover(self, entity: EntityShape) -> Optional[ShapeDescriptor]:
        return await ShapeResolver(SchemaCatalog(self.db), entity).discover_optional()

    async def _metric(self, name: str, default: T, compute: Callable[[], Awaitable[T]]) -> T:
        try:
            return await compute()
        except STORAGE_EXCEPTIONS as e:
            logger.warning(f"⚠️  Metric '{name}' unavailable, using default: {e}", exc_info=True)
            return default

    async def _count(self, sql: str, params: SqlParams) -> int:
        value = await self.db.fetchval(" ".join(sql.split()), *params.values)
        return int(value or 0)

    # ------------------------------------------------------------------
    # Overview
    # ------------------------------------------------------------------

    @staticmethod
    def _patient_scope(p: QueryBuilder, ses: Optional[ShapeDescriptor]) -> Optional[str]:
        """Condition restricting patients (alias p) to the caller, or None when unscopable"""
        if p.ref("clinician_id"):
            return f"{p.ref('clinician_id')} = $1"
        if ses is not None and p.ref("id") and ses.has("patient_id", "clinician_id"):
            s = QueryBuilder(ses, "s")
            return (
                f"EXISTS (SELECT 1 FROM {s.table} "
                f"WHERE {s.ref('patient_id')} = {p.ref('id')} AND {s.ref('clinician_id')} = $1)"
            )
        return None

    async def _patient_total(self, caller_id: int, pat, ses) -> int:
        if pat is None or not pat.has("id"):
            return 0
        p = QueryBuilder(pat, "p")
        scope = self._patient_scope(p, ses)
        if scope is None:
            return 0
        return await self._count(f"SELECT COUNT(*) FROM {p.table} WHERE {scope}", SqlParams([caller_id]))

    async def _new_patients(self, caller_id: int, pat, ses, window: AggregationWindow) -> int:
        params = SqlParams([caller_id])
        if pat is not None and pat.has("clinician_id") and pat.is_date_like("created_at"):
            p = QueryBuilder(pat)
            return await self._count(
                f"SELECT COUNT(*) FROM {p.table} "
                f"WHERE {p.ref('clinician_id')} = $1 AND {window.condition(p.ref('created_at'), params)}",
                params,
            )
        # Fallback: distinct patients seen in the caller's recent sessions
        if ses is not None and ses.has("clinician_id", "patient_id") and ses.is_date_like("occurred_at"):
            s = QueryBuilder(ses)
            return await self._count(
                f"SELECT COUNT(DISTINCT {s.ref('patient_id')}) FROM {s.table} "
                f"WHERE {s.ref('clinician_id')} = $1 AND {window.condition(s.ref('occurred_at'), params)}",
                params,
            )
        return 0

    async def _notes_since(self, caller_id: int, ses, window: AggregationWindow) -> int:
        if ses is None or not ses.has("clinician_id") or not ses.is_date_like("occurred_at"):
            return 0
        params = SqlParams([caller_id])
        s = QueryBuilder(ses)
        return await self._count(
            f"SELECT COUNT(*) FROM {s.table} "
            f"WHERE {s.ref('clinician_id')} = $1 AND {window.condition(s.ref('occurred_at'), params)}",
            params,
        )

    async def _module_counts(self, caller_id: int, run, ses, window: AggregationWindow) -> List[ModuleCount]:
        source = _RunSource.build(run, ses)
        if source is None:
            return []
        params = SqlParams([caller_id])
        module_type = module_type_sql(source.runs.ref("module_type"))
        sql = (
            f"SELECT {module_type} AS module_type, COUNT(*)::int AS total "
            f"FROM {source.from_clause} "
            f"WHERE {source.owner} AND {window.condition(source.runs.ref('started_at'), params)} "
            f"GROUP BY 1 ORDER BY total DESC"
        )
        rows = await self.db.fetch(sql, *params.values)
        return [ModuleCount(**dict(row)) for row in rows]

    async def overview(self, caller: Caller) -> Overview:
        """Patient totals, new patients and notes over 7/30 days, module runs over 30 days"""
        pat = await self._discover(PATIENT)
        ses = await self._discover(SESSION)
        run = await self._discover(MODULE_RUN)

        week, month = AggregationWindow(7), AggregationWindow(30)
        result = Overview()
        result.patients.total = await self._metric(
            "patients.total", 0, lambda: self._patient_total(caller.id, pat, ses))
        result.patients.last_7d = await self._metric(
            "patients.last_7d", 0, lambda: self._new_patients(caller.id, pat, ses, week))
        result.patients.last_30d = await self._metric(
            "patients.last_30d", 0, lambda: self._new_patients(caller.id, pat, ses, month))
        result.notes.last_7d = await self._metric(
            "notes.last_7d", 0, lambda: self._notes_since(caller.id, ses, week))
        result.notes.last_30d = await self._metric(
            "notes.last_30d", 0, lambda: self._notes_since(caller.id, ses, month))
        result.modules_30d = await self._metric(
            "modules_30d", [], lambda: self._module_counts(caller.id, run, ses, month))
        return result

    # ------------------------------------------------------------------
    # Patient audit report
    # ------------------------------------------------------------------

    async def patient_report(
        self,
        caller: Caller,
        search: Optional[str] = None,
        sex: Optional[str] = None,
        order: Optional[str] = None,
        limit: Any = None,
        page: Any = None,
    ) -> PatientReportPage:
        """
        Paginated patients of the caller with derived dates and comment counts.

        Created/updated fall back to the first/last session date when the
        patient has no date-like column of its own. The comment count is 0
        when comments cannot be joined through sessions.
        """
        limit = clamp_limit(limit, default=REPORT_DEFAULT_LIMIT, maximum=REPORT_MAX_LIMIT)
        page = clamp_page(page)
        empty = PatientReportPage(total=0, page=page, limit=limit, data=[])

        pat = await self._discover(PATIENT)
        ses = await self._discover(SESSION)
        cmt = await self._discover(COMMENT)
        if pat is None or not pat.has("id"):
            return empty

        p = QueryBuilder(pat, "p")
        scope = self._patient_scope(p, ses)
        if scope is None:
            return empty

        sex_code = str(sex or "").strip().upper()
        spec = QuerySpec(
            text_search=search,
            equality_filters={"sex": sex_code} if sex_code in ("M", "F") else {},
        )
        extra = [scope]
        active = p.active_condition()
        if active:
            extra.append(active)

        count_sql, count_values = p.build_count(spec, extra, SqlParams([caller.id]))
        params = SqlParams([caller.id])
        where_clause = p.where_clause(spec, params, extra)

        created = self._derived_date(p, ses, "created_at", "MIN")
        updated = self._derived_date(p, ses, "updated_at", "MAX")
        comments = self._comment_count(p, ses, cmt)

        total = await self._metric(
            "patients.report.total", 0,
            lambda: self._count(count_sql, SqlParams(count_values)),
        )

        order_expr = updated if updated != "NULL" else (created if created != "NULL" else p.ref("id"))
        page_params = SqlParams(params.values)
        columns = [
            ("id", p.ref("id")),
            ("last_name", p.ref("last_name") or "''"),
            ("first_name", p.ref("first_name") or "''"),
            ("sex", p.ref("sex") or "NULL"),
            ("age", p.ref("age") or "NULL"),
            ("clinician_id", p.ref("clinician_id") or "NULL"),
            ("created_at", created),
            ("updated_at", updated),
            ("comment_count", comments),
        ]
        sql = (
            f"SELECT {', '.join(f'{expr} AS {quote_ident(name)}' for name, expr in columns)} "
            f"FROM {p.table} {where_clause} "
            f"ORDER BY {order_expr} {sort_direction(order)} "
            f"LIMIT {page_params.add(limit)} OFFSET {page_params.add(page_offset(page, limit))}"
        )

        async def fetch_page() -> List[PatientReportRow]:
            rows = await self.db.fetch(sql, *page_params.values)
            return [PatientReportRow(**dict(row)) for row in rows]

        data = await self._metric("patients.report.page", [], fetch_page)
        return PatientReportPage(total=total, page=page, limit=limit, data=data)

    @staticmethod
    def _derived_date(p: QueryBuilder, ses: Optional[ShapeDescriptor], canonical_field: str, aggregate: str) -> str:
        if p.shape.is_date_like(canonical_field):
            return p.ref(canonical_field)
        if (ses is not None and p.ref("id") and ses.has("patient_id", "clinician_id")
                and ses.is_date_like("occurred_at")):
            s = QueryBuilder(ses, "sd")
            return (
                f"(SELECT {aggregate}({s.ref('occurred_at')}) FROM {s.table} "
                f"WHERE {s.ref('patient_id')} = {p.ref('id')} AND {s.ref('clinician_id')} = $1)"
            )
        return "NULL"

    @staticmethod
    def _comment_count(p: QueryBuilder, ses: Optional[ShapeDescriptor], cmt: Optional[ShapeDescriptor]) -> str:
        if (cmt is None or ses is None or not cmt.has("session_id")
                or not ses.has("id", "patient_id", "clinician_id")):
            return "0"
        c = QueryBuilder(cmt, "c")
        s = QueryBuilder(ses, "sc")
        return (
            f"(SELECT COUNT(*) FROM {c.table} JOIN {s.table} ON {s.ref('id')} = {c.ref('session_id')} "
            f"WHERE {s.ref('patient_id')} = {p.ref('id')} AND {s.ref('clinician_id')} = $1)::int"
        )

    # ------------------------------------------------------------------
    # Modules
    # ------------------------------------------------------------------

    async def modules(self, caller: Caller, days: Any = None) -> List[ModuleCount]:
        """Run counts per canonical module type over the window"""
        run = await self._discover(MODULE_RUN)
        ses = await self._discover(SESSION)
        window = AggregationWindow(days)
        return await self._metric("modules", [], lambda: self._module_counts(caller.id, run, ses, window))

    async def _module_source(self, module_type: Any, days: Any):
        run = await self._discover(MODULE_RUN)
        ses = await self._discover(SESSION)
        return _RunSource.build(run, ses), normalize_module_type(module_type), AggregationWindow(days)

    @staticmethod
    def _module_where(source: _RunSource, module_type: str, window: AggregationWindow, params: SqlParams) -> str:
        return (
            f"{source.owner} "
            f"AND {module_type_sql(source.runs.ref('module_type'))} = {params.add(module_type)} "
            f"AND {window.condition(source.runs.ref('started_at'), params)}"
        )

    async def module_summary(self, caller: Caller, module_type: Any, days: Any = None) -> ModuleSummary:
        """Run count, finished-run count and average/p95 duration (seconds) for one module type"""
        source, module_type, window = await self._module_source(module_type, days)
        if source is None:
            return ModuleSummary()

        params = SqlParams([caller.id])
        where_clause = self._module_where(source, module_type, window, params)
        r = source.runs
        if r.shape.is_date_like("ended_at"):
            end, start = r.ref("ended_at"), r.ref("started_at")
            duration = f"EXTRACT(EPOCH FROM ({end} - {start}))"
            finished = f"FILTER (WHERE {end} IS NOT NULL)"
            select_clause = (
                f"COUNT(*)::int AS total, "
                f"(COUNT(*) {finished})::int AS total_with_end, "
                f"ROUND((AVG({duration}) {finished})::numeric, 2) AS avg_duration_s, "
                f"ROUND((PERCENTILE_CONT(0.95) WITHIN GROUP (ORDER BY {duration}) {finished})::numeric, 2) "
                f"AS p95_duration_s"
            )
        else:
            select_clause = (
                "COUNT(*)::int AS total, 0 AS total_with_end, "
                "NULL::numeric AS avg_duration_s, NULL::numeric AS p95_duration_s"
            )
        sql = f"SELECT {select_clause} FROM {source.from_clause} WHERE {where_clause}"

        async def compute() -> ModuleSummary:
            row = await self.db.fetchrow(sql, *params.values)
            return ModuleSummary(**dict(row)) if row is not None else ModuleSummary()

        return await self._metric(f"module.{module_type}.summary", ModuleSummary(), compute)

    async def module_series(self, caller: Caller, module_type: Any, days: Any = None) -> List[DailyCount]:
        """Runs per calendar day for one module type"""
        source, module_type, window = await self._module_source(module_type, days)
        if source is None:
            return []

        params = SqlParams([caller.id])
        where_clause = self._module_where(source, module_type, window, params)
        sql = (
            f"SELECT date_trunc('day', {source.runs.ref('started_at')})::date AS day, COUNT(*)::int AS total "
            f"FROM {source.from_clause} WHERE {where_clause} GROUP BY 1 ORDER BY 1"
        )

        async def compute() -> List[DailyCount]:
            rows = await self.db.fetch(sql, *params.values)
            return [DailyCount(**dict(row)) for row in rows]

        return await self._metric(f"module.{module_type}.series", [], compute)

    async def module_top_patients(
        self, caller: Caller, module_type: Any, days: Any = None, limit: Any = None
    ) -> List[PatientModuleCount]:
        """Patients with the most runs of one module type"""
        source, module_type, window = await self._module_source(module_type, days)
        if source is None or source.patient_ref() is None:
            return []

        params = SqlParams([caller.id])
        where_clause = self._module_where(source, module_type, window, params)
        limit = clamp_limit(limit, default=TOP_PATIENTS_DEFAULT_LIMIT, maximum=REPORT_MAX_LIMIT)
        sql = (
            f"SELECT {source.patient_ref()} AS patient_id, COUNT(*)::int AS total "
            f"FROM {source.from_clause} WHERE {where_clause} "
            f"GROUP BY 1 ORDER BY total DESC LIMIT {params.add(limit)}"
        )

        async def compute() -> List[PatientModuleCount]:
            rows = await self.db.fetch(sql, *params.values)
            return [PatientModuleCount(**dict(row)) for row in rows]

        return await self._metric(f"module.{module_type}.top_patients", [], compute)

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------

    async def recent_notes(self, caller: Caller, limit: Any = None) -> List[SessionNote]:
        """The caller's most recent notes"""
        ses = await self._discover(SESSION)
        if ses is None or not ses.has("clinician_id") or not ses.is_date_like("occurred_at"):
            return []

        spec = QuerySpec(
            equality_filters={"clinician_id": caller.id},
            sort_preference=("occurred_at",),
            limit=clamp_limit(limit, default=NOTES_DEFAULT_LIMIT, maximum=NOTES_MAX_LIMIT),
        )
        sql, params = QueryBuilder(ses).build_select(
            spec, ("id", "patient_id", "clinician_id", "occurred_at", "title", "note"))

        async def compute() -> List[SessionNote]:
            rows = await self.db.fetch(sql, *params)
            return [SessionNote(**dict(row)) for row in rows]

        return await self._metric("notes.recent", [], compute)
