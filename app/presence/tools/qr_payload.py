# app/presence/tools/qr_payload.py

import json
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, ValidationError


class InvalidQrPayloadError(Exception):
    """Raised when a scanned QR payload cannot be decoded."""
    pass


class QrPayload(BaseModel):
    """The small JSON object rendered into the QR image: {"unitId": ..., "sessionId": ...}."""
    unit_id: UUID = Field(..., alias="unitId")
    session_id: str = Field(..., alias="sessionId", min_length=1)

    model_config = ConfigDict(populate_by_name=True)


def encode_qr_payload(unit_id: UUID, session_id: str) -> str:
    return json.dumps({"unitId": str(unit_id), "sessionId": session_id}, separators=(",", ":"))


def decode_qr_payload(raw: str) -> QrPayload:
    try:
        return QrPayload.model_validate_json(raw)
    except ValidationError as e:
        raise InvalidQrPayloadError("The scanned QR code is not a valid attendance code.") from e
