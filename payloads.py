"""
Completion Payloads
Tagged union of the data recorded when an occurrence is completed
"""

import math
from typing import Annotated, Any, Dict, Literal, Optional, Union
from datetime import datetime
from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator

from exceptions import InvalidPayloadError
from models import AppointmentOutcome, OwnerType


class MedicationPayload(BaseModel):
    """Medication dose confirmation"""
    kind: Literal["medication"] = "medication"
    taken: bool
    taken_at: Optional[datetime] = None
    notes: Optional[str] = Field(None, max_length=1000)


class VitalPayload(BaseModel):
    """Vital sign measurement"""
    kind: Literal["vital"] = "vital"
    value: float
    unit: str = Field(..., min_length=1, max_length=20)
    notes: Optional[str] = Field(None, max_length=1000)

    @field_validator("value")
    @classmethod
    def value_must_be_finite(cls, v: float) -> float:
        if math.isnan(v) or math.isinf(v):
            raise ValueError("value must be a finite number")
        return v


class AppointmentPayload(BaseModel):
    """Appointment outcome"""
    kind: Literal["appointment"] = "appointment"
    outcome: AppointmentOutcome
    notes: Optional[str] = Field(None, max_length=1000)


CompletionPayload = Annotated[
    Union[MedicationPayload, VitalPayload, AppointmentPayload],
    Field(discriminator="kind")
]

_payload_adapter = TypeAdapter(CompletionPayload)


def parse_payload(owner_type: OwnerType, data: Any) -> Union[MedicationPayload, VitalPayload, AppointmentPayload]:
    """
    Validate raw completion data against the event's owner type.

    `data` may be an already-built payload model or a mapping; a mapping
    without a `kind` tag is interpreted as the owner type's variant.

    Raises:
        InvalidPayloadError: shape mismatch or a variant for another owner type
    """
    owner = OwnerType(owner_type)

    if isinstance(data, (MedicationPayload, VitalPayload, AppointmentPayload)):
        payload = data
    else:
        if not isinstance(data, dict):
            raise InvalidPayloadError(
                f"Completion payload for {owner.value} must be an object"
            )
        raw: Dict[str, Any] = {"kind": owner.value, **data}
        try:
            payload = _payload_adapter.validate_python(raw)
        except ValidationError as e:
            raise InvalidPayloadError(
                f"Invalid {owner.value} completion payload: {e.errors()}"
            ) from e

    if payload.kind != owner.value:
        raise InvalidPayloadError(
            f"Payload of kind '{payload.kind}' cannot complete a {owner.value} event"
        )
    return payload


__all__ = [
    "MedicationPayload",
    "VitalPayload",
    "AppointmentPayload",
    "CompletionPayload",
    "parse_payload",
]
