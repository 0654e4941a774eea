from pydantic import BaseModel, Field
from typing import List, Optional

from ...services.analytics_service import AttendanceRate, SessionAttendance


class QrSignInRequest(BaseModel):
    """Request model for a QR + PIN sign-in."""
    qr_payload: str = Field(..., description='The scanned JSON, e.g. {"unitId": "...", "sessionId": "..."}.')
    pin: str = Field(..., min_length=1, max_length=8, description="The 4-digit PIN shown on the instructor's screen.")
    device_fingerprint: Optional[str] = Field(None, max_length=512)


class StudentAttendanceResponse(BaseModel):
    rate: AttendanceRate
    sessions: List[SessionAttendance]
