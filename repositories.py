"""
Repository layer for database operations
Provides schema-adaptive CRUD for patients, sessions, comments and users

Every operation discovers the physical shape of its entity first (one or more
catalog round-trips), then builds parameterized SQL against the columns that
actually exist. Nothing about the physical schema is cached between calls.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from database import DatabaseConnection
from models import (
    PatientRecord, PatientCreate, PatientUpdate,
    SessionNote, SessionCreate,
    SessionComment, ImplicitCommentResult, CommentSearchHit,
    UserRecord, UserUpdate,
)
from query.access import AccessPolicy, Caller, normalize_role
from query.builder import (
    LIKE_ESCAPE, MAX_LIMIT, SERVER_NOW,
    MutationSpec, QueryBuilder, QuerySpec, SqlParams,
    clamp_limit, like_pattern, quote_ident, sort_direction,
)
from schema.catalog import SchemaCatalog
from schema.entities import AUDIT, COMMENT, PATIENT, SESSION, USER, EntityShape
from schema.shape import ShapeDescriptor, ShapeResolver
from utils.errors import (
    ConflictError, NoFieldsToUpdateError, NoMappableColumnsError,
    NotFoundError, ValidationError,
)

logger = logging.getLogger(__name__)

PATIENT_FIELDS = (
    "id", "first_name", "last_name", "sex", "age", "birth_date",
    "clinician_id", "created_at", "updated_at",
)
SESSION_FIELDS = ("id", "patient_id", "clinician_id", "occurred_at", "title", "note")
COMMENT_FIELDS = ("id", "session_id", "author_id", "body", "created_at", "updated_at")
USER_FIELDS = ("id", "role", "first_name", "last_name", "email", "active", "created_at", "updated_at")

USER_LIST_LIMIT = 200
CLOSED_SESSION_STATUS = "CERRADA"

# Audit action codes
ACTION_ATTACH_COMMENT = "CREAR_COMENTARIO_SESION"
ACTION_IMPLICIT_COMMENT = "CREAR_BITACORA_COMENTARIO"


def _row_count(status: str) -> int:
    """Affected-row count from a command status such as 'UPDATE 1'"""
    try:
        return int(str(status).rsplit(" ", 1)[-1])
    except ValueError:
        return 0


def _sex_code(raw: Any) -> Optional[str]:
    code = str(raw or "").strip().upper()
    return code if code in ("M", "F") else None


class BaseRepository:
    """Base repository with shape discovery"""

    entity: Optional[EntityShape] = None

    def __init__(self, db: DatabaseConnection):
        self.db = db

    def resolver(self, entity: Optional[EntityShape] = None, executor=None) -> ShapeResolver:
        """Resolver for `entity` (default: this repository's) over `executor` (default: the pool)"""
        return ShapeResolver(SchemaCatalog(executor or self.db), entity or self.entity)

    async def discover(self, entity: Optional[EntityShape] = None, executor=None) -> ShapeDescriptor:
        return await self.resolver(entity, executor).discover()


# ============================================================================
# Audit trail
# ============================================================================

class AuditTrail(BaseRepository):
    """
    Append-only audit log, written best-effort.

    `record` never raises: a failed write is logged at warning level and
    reported as False. Inside a transaction the write runs in a savepoint so
    a failure cannot abort the caller's unit of work.
    """

    entity = AUDIT

    async def record(
        self,
        actor_id: Any,
        action: str,
        entity_kind: str,
        entity_id: Any,
        detail: Optional[Dict[str, Any]] = None,
        executor=None,
    ) -> bool:
        try:
            if executor is None or executor is self.db:
                await self._write(self.db, actor_id, action, entity_kind, entity_id, detail)
            else:
                async with executor.transaction():
                    await self._write(executor, actor_id, action, entity_kind, entity_id, detail)
        except Exception as e:
            logger.warning(f"⚠️  Audit entry {action} for {entity_kind}#{entity_id} not recorded: {e}")
            return False
        return True

    async def _write(self, executor, actor_id, action, entity_kind, entity_id, detail):
        shape = await self.resolver(executor=executor).discover_optional()
        if shape is None:
            raise NoMappableColumnsError(AUDIT.table_candidates[0])

        mutation = (
            MutationSpec()
            .set("actor_id", actor_id)
            .set("action", action)
            .set("entity_kind", entity_kind)
            .set("entity_id", entity_id)
            .set("detail", json.dumps(detail or {}))
        )
        sql, params = QueryBuilder(shape).build_insert(mutation)
        await executor.execute(sql, *params)


# ============================================================================
# Patients
# ============================================================================

class PatientRepository(BaseRepository):
    """Repository for patient records"""

    entity = PATIENT

    @staticmethod
    def _defaults(builder: QueryBuilder) -> Dict[str, str]:
        # Missing timestamps fall back to the server clock; a missing
        # "updated" column mirrors "created" when that exists.
        return {"created_at": "NOW()", "updated_at": builder.ref("created_at") or "NOW()"}

    async def list_patients(
        self,
        caller: Caller,
        search: Optional[str] = None,
        sex: Optional[str] = None,
        order: Optional[str] = None,
        limit: Any = None,
        show_all: bool = False,
        mine: bool = False,
    ) -> List[PatientRecord]:
        """
        List patients visible to the caller.

        Clinicians only ever see their own patients. Administrators see every
        patient unless they ask for `mine`; `show_all` overrides `mine`.
        Soft-deleted rows are hidden.
        """
        shape = await self.discover()
        builder = QueryBuilder(shape)
        policy = AccessPolicy(caller)

        filters = dict(policy.ownership_filter(shape, scope_to_self=mine and not show_all))
        sex_code = _sex_code(sex)
        if sex_code:
            filters["sex"] = sex_code

        active = builder.active_condition()
        extra = [active] if active else []

        spec = QuerySpec(
            text_search=search,
            equality_filters=filters,
            sort_direction=sort_direction(order),
            limit=clamp_limit(limit),
        )
        sql, params = builder.build_select(spec, PATIENT_FIELDS, self._defaults(builder), extra)
        rows = await self.db.fetch(sql, *params)
        return [PatientRecord(**dict(row)) for row in rows]

    async def create_patient(self, caller: Caller, data: PatientCreate) -> PatientRecord:
        """
        Create a patient.

        The owner is the calling clinician; an administrator must name one.
        """
        shape = await self.discover()
        builder = QueryBuilder(shape)
        policy = AccessPolicy(caller)

        mutation = (
            MutationSpec()
            .set("first_name", data.first_name)
            .set("last_name", data.last_name)
            .set("sex", data.sex)
            .set("age", data.age)
            .set("birth_date", data.birth_date)
        )
        if shape.has("clinician_id"):
            mutation.set("clinician_id", policy.owner_for_create(data.clinician_id))
        flags = builder.flag_values("active")
        if flags is not None:
            mutation.set("active", flags[0])

        sql, params = builder.build_insert(mutation, PATIENT_FIELDS, self._defaults(builder))
        row = await self.db.fetchrow(sql, *params)
        logger.info(f"Patient {row['id']} created by user {caller.id}")
        return PatientRecord(**dict(row))

    async def update_patient(self, caller: Caller, patient_id: int, data: PatientUpdate) -> PatientRecord:
        """
        Apply the fields present in `data` to one patient.

        Sex never changes after creation. Only administrators may reassign the
        owner. A row the caller does not own is reported as not found.
        """
        policy = AccessPolicy(caller)
        provided = data.model_fields_set

        mutation = MutationSpec()
        for name in ("first_name", "last_name", "age", "birth_date"):
            if name not in provided:
                continue
            value = getattr(data, name)
            if value is None and name in ("first_name", "last_name"):
                continue
            mutation.set(name, value)
        if "clinician_id" in provided and policy.may_reassign_owner:
            mutation.set("clinician_id", data.clinician_id)

        if not mutation:
            raise NoFieldsToUpdateError()

        shape = await self.discover()
        builder = QueryBuilder(shape)
        sql, params = builder.build_update(
            patient_id, mutation, PATIENT_FIELDS,
            filters=policy.ownership_filter(shape),
            defaults=self._defaults(builder),
        )
        row = await self.db.fetchrow(sql, *params)
        if row is None:
            raise NotFoundError("Patient not found")
        return PatientRecord(**dict(row))

    async def delete_patient(self, caller: Caller, patient_id: int) -> bool:
        """Soft-delete through the active flag when one exists, hard delete otherwise"""
        shape = await self.discover()
        policy = AccessPolicy(caller)
        sql, params = QueryBuilder(shape).build_delete(patient_id, policy.ownership_filter(shape))
        status = await self.db.execute(sql, *params)
        if _row_count(status) == 0:
            raise NotFoundError("Patient not found")
        logger.info(f"Patient {patient_id} deleted by user {caller.id} ({status})")
        return True


# ============================================================================
# Sessions / notes
# ============================================================================

class SessionRepository(BaseRepository):
    """Repository for sessions (clinical notes)"""

    entity = SESSION
    defaults = {"occurred_at": "NOW()"}

    async def list_sessions(self, caller: Caller, patient_id: Optional[int] = None, limit: Any = None) -> List[SessionNote]:
        """Notes visible to the caller, newest first, optionally for one patient"""
        shape = await self.discover()
        builder = QueryBuilder(shape)

        filters = dict(AccessPolicy(caller).ownership_filter(shape))
        if patient_id is not None:
            filters["patient_id"] = patient_id

        spec = QuerySpec(
            equality_filters=filters,
            sort_preference=("occurred_at", "id"),
            limit=clamp_limit(limit),
        )
        sql, params = builder.build_select(spec, SESSION_FIELDS, self.defaults)
        rows = await self.db.fetch(sql, *params)
        return [SessionNote(**dict(row)) for row in rows]

    async def create_session(self, caller: Caller, data: SessionCreate) -> SessionNote:
        """Create a note stamped with the server clock"""
        shape = await self.discover()
        policy = AccessPolicy(caller)

        mutation = MutationSpec().set("patient_id", data.patient_id)
        mutation.set("clinician_id", policy.owner_for_create(data.clinician_id, require_explicit=False))
        if data.title is not None:
            mutation.set("title", data.title)
        mutation.set("note", data.note).set("occurred_at", SERVER_NOW)

        sql, params = QueryBuilder(shape).build_insert(mutation, SESSION_FIELDS, self.defaults)
        row = await self.db.fetchrow(sql, *params)
        return SessionNote(**dict(row))

    async def find_visible(self, caller: Caller, session_id: int, executor=None) -> Optional[SessionNote]:
        """The session if it exists and the caller may see it, else None"""
        executor = executor or self.db
        shape = await self.discover(executor=executor)
        if not shape.has("id"):
            raise NoMappableColumnsError(shape.table)

        filters = {"id": session_id}
        filters.update(AccessPolicy(caller).ownership_filter(shape))
        spec = QuerySpec(equality_filters=filters, sort_preference=("id",), limit=1)
        sql, params = QueryBuilder(shape).build_select(spec, SESSION_FIELDS, self.defaults)
        row = await executor.fetchrow(sql, *params)
        return SessionNote(**dict(row)) if row is not None else None

    async def open_closed_session(self, executor, caller: Caller, patient_id: int) -> Any:
        """
        Insert a session that starts and ends now, already closed.
        Runs on `executor` so it can join the caller's transaction.
        """
        shape = await self.discover(executor=executor)
        mutation = (
            MutationSpec()
            .set("patient_id", patient_id)
            .set("clinician_id", caller.id)
            .set("occurred_at", SERVER_NOW)
            .set("ended_at", SERVER_NOW)
            .set("status", CLOSED_SESSION_STATUS)
        )
        sql, params = QueryBuilder(shape).build_insert(mutation, ("id",))
        session_id = await executor.fetchval(sql, *params)
        if session_id is None:
            raise NoMappableColumnsError(shape.table)
        return session_id


# ============================================================================
# Comments
# ============================================================================

class CommentRepository(BaseRepository):
    """Repository for session comments"""

    entity = COMMENT

    def __init__(self, db: DatabaseConnection, sessions: SessionRepository, audit: AuditTrail):
        super().__init__(db)
        self.sessions = sessions
        self.audit = audit

    async def _insert(self, executor, shape: ShapeDescriptor, session_id: Any, author_id: Any, text: str) -> SessionComment:
        mutation = (
            MutationSpec()
            .set("session_id", session_id)
            .set("author_id", author_id)
            .set("body", text)
        )
        sql, params = QueryBuilder(shape).build_insert(mutation, COMMENT_FIELDS)
        row = await executor.fetchrow(sql, *params)
        return SessionComment(**dict(row))

    async def attach(self, caller: Caller, session_id: int, text: str) -> SessionComment:
        """
        Attach a comment to an existing session.

        A missing or invisible session raises NotFoundError before anything
        is written (no comment, no audit entry).
        """
        session = await self.sessions.find_visible(caller, session_id)
        if session is None:
            raise NotFoundError("Session not found")

        shape = await self.discover()
        comment = await self._insert(self.db, shape, session_id, caller.id, text)
        await self.audit.record(
            caller.id, ACTION_ATTACH_COMMENT, shape.table, comment.id,
            {"session_id": session_id, "length": len(text)},
        )
        return comment

    async def create_with_implicit_session(self, caller: Caller, patient_id: int, text: str) -> ImplicitCommentResult:
        """
        Create a closed session and attach a comment to it, atomically.

        Both inserts share one connection and one transaction; if either
        fails neither row persists.
        """
        async with self.db.transaction() as conn:
            session_id = await self.sessions.open_closed_session(conn, caller, patient_id)
            shape = await self.discover(executor=conn)
            comment = await self._insert(conn, shape, session_id, caller.id, text)
            await self.audit.record(
                caller.id, ACTION_IMPLICIT_COMMENT, shape.table, comment.id,
                {"session_id": session_id, "patient_id": patient_id, "length": len(text)},
                executor=conn,
            )

        logger.info(f"Comment {comment.id} logged on new session {session_id} for patient {patient_id}")
        return ImplicitCommentResult(session_id=session_id, comment=comment)

    async def list_for_session(self, caller: Caller, session_id: int) -> List[SessionComment]:
        """Comments on one visible session, newest first"""
        session = await self.sessions.find_visible(caller, session_id)
        if session is None:
            raise NotFoundError("Session not found")

        shape = await self.discover()
        spec = QuerySpec(
            equality_filters={"session_id": session_id},
            sort_preference=("created_at", "id"),
            limit=MAX_LIMIT,
        )
        sql, params = QueryBuilder(shape).build_select(spec, COMMENT_FIELDS)
        rows = await self.db.fetch(sql, *params)
        return [SessionComment(**dict(row)) for row in rows]

    async def search(
        self,
        caller: Caller,
        patient_id: Optional[int] = None,
        sex: Optional[str] = None,
        search: Optional[str] = None,
        limit: Any = None,
        order: Optional[str] = None,
    ) -> List[CommentSearchHit]:
        """
        Comments joined with their session and patient.

        The session is joined only when both join keys resolved, the patient
        only when the session joined and its keys resolved; fields from a
        table that could not be joined come back NULL and filters on them are
        dropped.
        """
        comment_shape = await self.discover()
        session_shape = await self.resolver(SESSION).discover_optional()
        patient_shape = await self.resolver(PATIENT).discover_optional()

        c = QueryBuilder(comment_shape, "c")
        s = None
        if session_shape is not None and session_shape.has("id") and comment_shape.has("session_id"):
            s = QueryBuilder(session_shape, "s")
        p = None
        if s is not None and patient_shape is not None and patient_shape.has("id") and session_shape.has("patient_id"):
            p = QueryBuilder(patient_shape, "p")

        columns = [
            ("id", c.ref("id")),
            ("body", c.ref("body")),
            ("created_at", c.ref("created_at")),
            ("author_id", c.ref("author_id")),
            ("session_id", s.ref("id") if s else c.ref("session_id")),
            ("patient_id", s.ref("patient_id") if s else None),
            ("clinician_id", s.ref("clinician_id") if s else None),
            ("patient_first_name", p.ref("first_name") if p else None),
            ("patient_last_name", p.ref("last_name") if p else None),
            ("patient_sex", p.ref("sex") if p else None),
        ]
        select_clause = ", ".join(f"{expr or 'NULL'} AS {quote_ident(name)}" for name, expr in columns)

        from_clause = c.table
        if s is not None:
            from_clause += f" JOIN {s.table} ON {s.ref('id')} = {c.ref('session_id')}"
        if p is not None:
            from_clause += f" LEFT JOIN {p.table} ON {p.ref('id')} = {s.ref('patient_id')}"

        params = SqlParams()
        conditions = []
        if s is not None:
            conditions.extend(s.equality_conditions(AccessPolicy(caller).ownership_filter(session_shape), params))
            if patient_id is not None:
                conditions.extend(s.equality_conditions({"patient_id": patient_id}, params))
        elif not caller.is_admin:
            conditions.extend(c.equality_conditions({"author_id": caller.id}, params))

        sex_code = _sex_code(sex)
        if sex_code and p is not None:
            conditions.extend(p.equality_conditions({"sex": sex_code}, params))

        term = (search or "").strip()
        if term:
            targets = [c.ref("body")]
            if p is not None:
                targets.extend([p.ref("first_name"), p.ref("last_name")])
            targets = [t for t in targets if t]
            if targets:
                placeholder = params.add(like_pattern(term))
                conditions.append("(" + " OR ".join(f"{t} ILIKE {placeholder} {LIKE_ESCAPE}" for t in targets) + ")")

        where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        order_clause = c.order_clause(("created_at", "id"), order)
        limit_clause = f"LIMIT {params.add(clamp_limit(limit))}"

        sql = f"SELECT {select_clause} FROM {from_clause} {where_clause} {order_clause} {limit_clause}"
        rows = await self.db.fetch(" ".join(sql.split()), *params.values)
        return [CommentSearchHit(**dict(row)) for row in rows]


# ============================================================================
# Users
# ============================================================================

class UserRepository(BaseRepository):
    """Repository for user accounts (administration only; credentials stay external)"""

    entity = USER

    async def list_users(self, search: Optional[str] = None, role: Optional[str] = None) -> List[UserRecord]:
        """Users matching a name/email substring and a role, newest id first"""
        shape = await self.discover()
        builder = QueryBuilder(shape)
        params = SqlParams()

        filters = {}
        if role:
            filters["role"] = normalize_role(role).value or str(role).strip().upper()

        extra = []
        term = (search or "").strip().lower()
        targets = [ref for ref in (builder.ref(f) for f in ("first_name", "last_name", "email")) if ref]
        if term and targets:
            placeholder = params.add(like_pattern(term))
            extra.append("(" + " OR ".join(f"LOWER({t}) LIKE {placeholder} {LIKE_ESCAPE}" for t in targets) + ")")

        spec = QuerySpec(equality_filters=filters, sort_preference=("id",), limit=USER_LIST_LIMIT)
        sql, values = builder.build_select(spec, USER_FIELDS, extra_conditions=extra, params=params)
        rows = await self.db.fetch(sql, *values)
        return [UserRecord(**dict(row)) for row in rows]

    async def get_user(self, user_id: int) -> UserRecord:
        shape = await self.discover()
        spec = QuerySpec(equality_filters={"id": user_id}, sort_preference=("id",), limit=1)
        sql, params = QueryBuilder(shape).build_select(spec, USER_FIELDS)
        row = await self.db.fetchrow(sql, *params)
        if row is None:
            raise NotFoundError("User not found")
        return UserRecord(**dict(row))

    async def update_user(self, user_id: int, data: UserUpdate) -> UserRecord:
        """
        Update name and email. Role and active flag are not editable here.
        The email must stay unique (case-insensitive) across users.
        """
        mutation = MutationSpec()
        for name in ("first_name", "last_name", "email"):
            if name in data.model_fields_set and getattr(data, name) is not None:
                mutation.set(name, getattr(data, name))
        if not mutation:
            raise NoFieldsToUpdateError()

        shape = await self.discover()
        builder = QueryBuilder(shape)

        if data.email and shape.has("id", "email"):
            dupe = await self.db.fetchval(
                f"SELECT 1 FROM {builder.table} "
                f"WHERE LOWER({builder.ref('email')}) = LOWER($1) AND {builder.ref('id')} <> $2 LIMIT 1",
                data.email, user_id,
            )
            if dupe:
                raise ConflictError("Email is already registered")

        sql, params = builder.build_update(user_id, mutation, USER_FIELDS)
        row = await self.db.fetchrow(sql, *params)
        if row is None:
            raise NotFoundError("User not found")
        return UserRecord(**dict(row))

    async def set_active(self, user_id: int, active: bool) -> UserRecord:
        shape = await self.discover()
        if not shape.has("active"):
            raise NoMappableColumnsError(shape.table)

        sql, params = QueryBuilder(shape).build_update(user_id, MutationSpec().set("active", active), USER_FIELDS)
        row = await self.db.fetchrow(sql, *params)
        if row is None:
            raise NotFoundError("User not found")
        logger.info(f"User {user_id} {'activated' if active else 'deactivated'}")
        return UserRecord(**dict(row))

    async def delete_user(self, caller: Caller, user_id: int) -> UserRecord:
        """Hard delete; administrators cannot delete their own account"""
        if caller.id == user_id:
            raise ValidationError("You cannot delete your own account")

        shape = await self.discover()
        sql, params = QueryBuilder(shape).build_delete(user_id, returning=USER_FIELDS, soft=False)
        row = await self.db.fetchrow(sql, *params)
        if row is None:
            raise NotFoundError("User not found")
        logger.info(f"User {user_id} deleted by user {caller.id}")
        return UserRecord(**dict(row))
