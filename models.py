"""
Data models for clinical records (schema-adaptive)
Using Pydantic for validation and serialization

ARCHITECTURE:
- *Create / *Update models validate request bodies before any query runs
- *Record models are the stable, canonical row shapes returned to callers;
  every field is optional because the physical column may not exist
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List, Union
from pydantic import BaseModel, Field, field_validator, ConfigDict, TypeAdapter, ValidationError

Timestamp = Optional[Union[datetime, date]]


def _strip_required(value: str, name: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValueError(f"{name} is required")
    return value


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _lenient(annotation):
    """Parser for row values that yields None instead of failing on malformed column data"""
    adapter = TypeAdapter(annotation)

    def parse(value):
        try:
            return adapter.validate_python(value)
        except ValidationError:
            return None
    return parse


_lenient_int = _lenient(Optional[int])
_lenient_bool = _lenient(Optional[bool])
_lenient_date = _lenient(Optional[date])
_lenient_timestamp = _lenient(Timestamp)


# ============================================================================
# Patients (records)
# ============================================================================

class PatientCreate(BaseModel):
    """Body of POST /records"""
    model_config = ConfigDict(extra="ignore")

    first_name: str
    last_name: str
    sex: str
    age: Optional[int] = Field(default=None, ge=0, le=120)
    birth_date: Optional[date] = None
    clinician_id: Optional[int] = None

    @field_validator("first_name", "last_name")
    @classmethod
    def names_required(cls, v, info):
        return _strip_required(v, info.field_name)

    @field_validator("sex", mode="before")
    @classmethod
    def sex_code(cls, v):
        code = str(v or "").strip().upper()
        if code not in ("M", "F"):
            raise ValueError("sex must be M or F")
        return code

    @field_validator("age", "birth_date", "clinician_id", mode="before")
    @classmethod
    def blank_is_none(cls, v):
        return _blank_to_none(v)


class PatientUpdate(BaseModel):
    """
    Body of PUT /records/{id}

    Only fields present in the body are applied (see `model_fields_set`).
    `sex` is immutable after creation and is ignored if sent.
    """
    model_config = ConfigDict(extra="ignore")

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    age: Optional[int] = Field(default=None, ge=0, le=120)
    birth_date: Optional[date] = None
    clinician_id: Optional[int] = None

    @field_validator("first_name", "last_name")
    @classmethod
    def names_not_blank(cls, v, info):
        return None if v is None else _strip_required(v, info.field_name)

    @field_validator("age", "birth_date", "clinician_id", mode="before")
    @classmethod
    def blank_is_none(cls, v):
        return _blank_to_none(v)


class PatientRecord(BaseModel):
    """Canonical patient row"""
    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    sex: Optional[str] = None
    age: Optional[int] = None
    birth_date: Optional[date] = None
    clinician_id: Optional[int] = None
    created_at: Timestamp = None
    updated_at: Timestamp = None

    @field_validator("age", mode="before")
    @classmethod
    def lenient_age(cls, v):
        return _lenient_int(v)

    @field_validator("birth_date", mode="before")
    @classmethod
    def lenient_birth_date(cls, v):
        return _lenient_date(v)

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def lenient_timestamps(cls, v):
        return _lenient_timestamp(v)


class PatientReportRow(PatientRecord):
    """Patient row in the audit report, with its comment count"""
    comment_count: int = 0


class PatientReportPage(BaseModel):
    total: int
    page: int
    limit: int
    data: List[PatientReportRow]


# ============================================================================
# Sessions / notes
# ============================================================================

class SessionCreate(BaseModel):
    """Body of POST /sessions"""
    model_config = ConfigDict(extra="ignore")

    patient_id: int
    note: str
    title: Optional[str] = None
    clinician_id: Optional[int] = None

    @field_validator("note")
    @classmethod
    def note_required(cls, v):
        return _strip_required(v, "note")

    @field_validator("title")
    @classmethod
    def title_stripped(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("clinician_id", mode="before")
    @classmethod
    def blank_is_none(cls, v):
        return _blank_to_none(v)


class SessionNote(BaseModel):
    """Canonical session/note row"""
    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    patient_id: Optional[int] = None
    clinician_id: Optional[int] = None
    occurred_at: Timestamp = None
    title: Optional[str] = None
    note: Optional[str] = None

    @field_validator("occurred_at", mode="before")
    @classmethod
    def lenient_timestamps(cls, v):
        return _lenient_timestamp(v)


# ============================================================================
# Comments
# ============================================================================

class CommentCreate(BaseModel):
    """Body of POST /sessions/{id}/comments"""
    model_config = ConfigDict(extra="ignore")

    comment: str

    @field_validator("comment")
    @classmethod
    def comment_required(cls, v):
        return _strip_required(v, "comment")


class ImplicitCommentCreate(CommentCreate):
    """Body of POST /sessions/comments (creates a closed session first)"""
    patient_id: int


class SessionComment(BaseModel):
    """Canonical comment row"""
    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    session_id: Optional[int] = None
    author_id: Optional[int] = None
    body: Optional[str] = None
    created_at: Timestamp = None
    updated_at: Timestamp = None

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def lenient_timestamps(cls, v):
        return _lenient_timestamp(v)


class ImplicitCommentResult(BaseModel):
    session_id: Optional[int] = None
    comment: SessionComment


class CommentSearchHit(BaseModel):
    """Comment joined with its session and patient"""
    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    body: Optional[str] = None
    created_at: Timestamp = None
    author_id: Optional[int] = None
    session_id: Optional[int] = None
    patient_id: Optional[int] = None
    clinician_id: Optional[int] = None
    patient_first_name: Optional[str] = None
    patient_last_name: Optional[str] = None
    patient_sex: Optional[str] = None

    @field_validator("created_at", mode="before")
    @classmethod
    def lenient_timestamps(cls, v):
        return _lenient_timestamp(v)


# ============================================================================
# Users
# ============================================================================

class UserUpdate(BaseModel):
    """Body of PUT /users/{id}; role and active flag are not editable here"""
    model_config = ConfigDict(extra="ignore")

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None

    @field_validator("first_name", "last_name", "email")
    @classmethod
    def not_blank(cls, v, info):
        return None if v is None else _strip_required(v, info.field_name)


class UserActiveUpdate(BaseModel):
    """Body of POST /users/{id}/active"""
    active: bool = Field(strict=True)


class UserRecord(BaseModel):
    """Canonical user row (never carries credentials)"""
    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    role: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    active: Optional[bool] = None
    created_at: Timestamp = None
    updated_at: Timestamp = None

    @field_validator("active", mode="before")
    @classmethod
    def lenient_active(cls, v):
        return _lenient_bool(v)

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def lenient_timestamps(cls, v):
        return _lenient_timestamp(v)


# ============================================================================
# Reports
# ============================================================================

class WindowCounts(BaseModel):
    last_7d: int = 0
    last_30d: int = 0


class PatientCounts(WindowCounts):
    total: int = 0


class ModuleCount(BaseModel):
    module_type: Optional[str] = None
    total: int = 0


class Overview(BaseModel):
    patients: PatientCounts = Field(default_factory=PatientCounts)
    notes: WindowCounts = Field(default_factory=WindowCounts)
    modules_30d: List[ModuleCount] = Field(default_factory=list)


class ModuleSummary(BaseModel):
    total: int = 0
    total_with_end: int = 0
    avg_duration_s: Optional[float] = None
    p95_duration_s: Optional[float] = None

    @field_validator("avg_duration_s", "p95_duration_s", mode="before")
    @classmethod
    def numeric_to_float(cls, v):
        return float(v) if isinstance(v, Decimal) else v


class DailyCount(BaseModel):
    day: date
    total: int = 0


class PatientModuleCount(BaseModel):
    patient_id: Optional[int] = None
    total: int = 0
