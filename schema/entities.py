"""
Entity Shape Registry

Lists, for each canonical entity, the physical table names a deployment may
use and, for each canonical field, the column names that may carry it.
Order matters in both: the first candidate found wins.
"""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class EntityShape:
    """Candidate tables and per-field synonym lists for one canonical entity."""
    name: str
    table_candidates: tuple[str, ...]
    synonyms: dict[str, tuple[str, ...]] = field(default_factory=dict)

    @property
    def fields(self) -> tuple[str, ...]:
        return tuple(self.synonyms)


# =============================================================================
# Entity Registry
# =============================================================================

PATIENT = EntityShape(
    name="patient",
    table_candidates=("pacientes", "cliente_paciente", "tbl_pacientes"),
    synonyms={
        "id": ("id", "paciente_id", "id_paciente"),
        "first_name": ("nombres", "nombre", "primer_nombre"),
        "last_name": ("apellidos", "apellido", "apellido_paterno", "apellido_materno"),
        "birth_date": ("fecha_nacimiento", "fecha", "fnac", "fec_nac"),
        "sex": ("sexo", "sexo_enum", "genero"),
        "age": ("edad", "age", "anios", "años", "anos"),
        "active": ("activo", "estado", "is_active"),
        "clinician_id": ("terapeuta_id", "usuario_id", "id_terapeuta", "id_usuario", "creado_por", "registrado_por"),
        "created_at": ("fecha_ingreso", "creado", "created_at", "fecha_alta", "fecha_creacion"),
        "updated_at": ("fecha_modifica", "actualizado", "updated_at", "fecha_actualizacion", "modificado", "modificado_en"),
    },
)

SESSION = EntityShape(
    name="session",
    table_candidates=("sesiones", "bitacora", "notas_terapia", "notas", "sesion"),
    synonyms={
        "id": ("id", "sesion_id", "id_sesion", "nota_id", "id_nota"),
        "patient_id": ("paciente_id", "id_paciente", "cliente_paciente_id"),
        "clinician_id": ("terapeuta_id", "id_terapeuta", "usuario_id", "id_usuario"),
        "occurred_at": ("fecha", "fecha_inicio", "created_at", "creado", "ts", "timestamp"),
        "ended_at": ("fecha_fin", "fin", "ended_at"),
        "status": ("estado", "status"),
        "note": ("nota", "observacion", "observaciones", "detalle", "descripcion", "texto"),
        "title": ("titulo", "asunto", "subject"),
    },
)

MODULE_RUN = EntityShape(
    name="module_run",
    table_candidates=("runs_modulo", "runs", "actividades", "modulo_usos", "ejecuciones"),
    synonyms={
        "id": ("id", "run_id", "id_run", "actividad_id"),
        "session_id": ("sesion_id", "id_sesion", "nota_id"),
        "patient_id": ("paciente_id", "id_paciente"),
        "clinician_id": ("terapeuta_id", "id_terapeuta", "usuario_id"),
        "module_type": ("tipo", "modulo", "modulo_tipo", "nombre_modulo"),
        "started_at": ("inicio", "started_at", "fecha_inicio", "ts_inicio"),
        "ended_at": ("fin", "ended_at", "fecha_fin", "ts_fin"),
    },
)

COMMENT = EntityShape(
    name="comment",
    table_candidates=("comentarios_sesion", "comentarios", "comentario_sesion", "bitacora_comentarios"),
    synonyms={
        "id": ("id", "comentario_id", "id_comentario"),
        "session_id": ("sesion_id", "id_sesion", "nota_id", "id_nota"),
        "author_id": ("autor_id", "usuario_id", "terapeuta_id", "id_autor"),
        "body": ("texto", "comentario", "contenido", "body"),
        "created_at": ("fecha_crea", "created_at", "timestamp", "fecha"),
        "updated_at": ("fecha_modifica", "updated_at"),
    },
)

USER = EntityShape(
    name="user",
    table_candidates=("usuarios", "users"),
    synonyms={
        "id": ("id", "usuario_id", "id_usuario"),
        "role": ("rol", "role"),
        "first_name": ("nombre", "nombres", "first_name"),
        "last_name": ("apellido", "apellidos", "last_name"),
        "email": ("email", "correo"),
        "active": ("activo", "is_active"),
        "created_at": ("fecha_crea", "created_at", "fecha_ingreso"),
        "updated_at": ("fecha_modifica", "updated_at"),
    },
)

AUDIT = EntityShape(
    name="audit",
    table_candidates=("auditoria", "audit_log"),
    synonyms={
        "id": ("id",),
        "actor_id": ("usuario_id", "actor_id"),
        "action": ("accion", "action"),
        "entity_kind": ("entidad", "entity"),
        "entity_id": ("entidad_id", "entity_id"),
        "detail": ("detalle", "detail"),
        "recorded_at": ("timestamp", "fecha", "created_at"),
    },
)

ENTITIES: dict[str, EntityShape] = {
    shape.name: shape for shape in (PATIENT, SESSION, MODULE_RUN, COMMENT, USER, AUDIT)
}


def get_entity_shape(name: str) -> EntityShape:
    """Get the shape definition for an entity name"""
    return ENTITIES[name]
