"""
Argument parsing shared by all handlers

Turns raw query/body values into validated inputs, raising the service
ValidationError with a readable reason before any query runs.
"""

from typing import Any, Optional, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from utils.errors import ValidationError

M = TypeVar("M", bound=BaseModel)

TRUTHY = {"1", "true", "yes", "on"}


def _describe(error: PydanticValidationError) -> str:
    first = error.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ()))
    message = first.get("msg", "invalid value")
    if message.startswith("Value error, "):
        message = message[len("Value error, "):]
    return f"{field}: {message}" if field else message


def parse_body(model: Type[M], arguments: dict) -> M:
    """Validate a request body into `model`"""
    try:
        return model.model_validate(arguments or {})
    except PydanticValidationError as e:
        raise ValidationError(_describe(e))


def parse_id(value: Any, name: str = "id") -> int:
    """Positive integer identifier"""
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {name}")
    if parsed < 1:
        raise ValidationError(f"Invalid {name}")
    return parsed


def parse_optional_id(value: Any, name: str = "id") -> Optional[int]:
    if value is None or str(value).strip() == "":
        return None
    return parse_id(value, name)


def parse_flag(value: Any) -> bool:
    """Query-string boolean: 1/true/yes/on"""
    return str(value if value is not None else "").strip().lower() in TRUTHY


def dump(value: Any) -> Any:
    """JSON-ready form of a model or a list of models"""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [dump(item) for item in value]
    return value
