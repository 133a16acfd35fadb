"""
Request body schemas. Unknown fields are rejected; required strings must be non-empty.
"""

from datetime import date
from typing import Annotated, Any, Literal, Optional, Type, TypeVar

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError

from ehr.config import MAX_RECORD_ID
from ehr.errors import InvalidInput


def _reject_bool(value):
    if isinstance(value, bool):
        raise ValueError("must be an integer id, not a boolean")
    return value


NonEmptyStr = Annotated[str, Field(min_length=1)]
RecordId = Annotated[int, BeforeValidator(_reject_bool), Field(ge=1, le=MAX_RECORD_ID)]

SchemaT = TypeVar("SchemaT", bound=BaseModel)


class _Body(BaseModel):
    model_config = ConfigDict(extra="forbid")


class LoginRequest(_Body):
    username: NonEmptyStr
    password: NonEmptyStr


class PatientCreate(_Body):
    full_name: NonEmptyStr
    date_of_birth: date
    gender: Literal["male", "female", "other"]
    phone: Optional[str] = None


class EncounterCreate(_Body):
    patient_id: RecordId
    clinician_role: NonEmptyStr
    notes: Optional[str] = None


class PrescriptionCreate(_Body):
    encounter_id: RecordId
    drug_name: NonEmptyStr
    dosage: NonEmptyStr
    frequency: NonEmptyStr
    duration: NonEmptyStr


def format_validation_error(exc: ValidationError) -> str:
    """All violations as ``field: message``, comma separated."""
    parts = []
    for err in exc.errors():
        field = ".".join(str(p) for p in err["loc"]) or "body"
        parts.append(f"{field}: {err['msg']}")
    return ", ".join(parts)


def validate_body(schema: Type[SchemaT], data: Any) -> SchemaT:
    """Validate a decoded JSON body, raising InvalidInput on any violation."""
    if not isinstance(data, dict):
        data = {}
    try:
        return schema.model_validate(data)
    except ValidationError as e:
        raise InvalidInput(format_validation_error(e))
