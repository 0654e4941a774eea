# app/presence/models/db_models.py

from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum
from typing import List, Optional
from uuid import UUID


class SignInMethod(str, Enum):
    LOCATION = "location"
    QR_CODE = "qr_code"
    MANUAL = "manual"


class SessionState(str, Enum):
    INACTIVE = "INACTIVE"
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    CLOSED = "CLOSED"


class User(BaseModel):
    """
    The authenticated caller, decoded from the bearer token. Identity storage lives outside this service.
    """
    user_id: str = Field(..., description="Identifier issued by the identity provider")
    full_name: str = ""
    role: str = Field(..., description="Instructor or Student")


class Unit(BaseModel):
    """
    Represents a class/course, mapping to the 'Units' table.
    """
    unit_id: UUID
    name: str
    join_code: str = Field(..., description="Unique code students use to enroll")
    owner_id: str = Field(..., description="The instructor who owns the unit")
    attendance_threshold: int = Field(..., ge=0, le=100)
    enrolled_students: List[str] = Field(default_factory=list)
    session_history: List[str] = Field(default_factory=list, description="Append-only, in start order")
    created_at: Optional[datetime] = None


class AttendanceSession(BaseModel):
    """
    Durable row for one attendance window, mapping to the 'Sessions' table.
    The live, rotating parts (PIN) only exist in Redis while the session is active.
    """
    session_id: str
    unit_id: UUID
    start_time: datetime
    end_time: datetime
    state: SessionState = SessionState.ACTIVE
    closed_at: Optional[datetime] = None
    geofence_latitude: Optional[float] = None
    geofence_longitude: Optional[float] = None
    geofence_radius_meters: Optional[float] = None


class AttendanceRecord(BaseModel):
    """
    Immutable proof that a student attended a session, mapping to the 'AttendanceRecords' table.
    (student_id, session_id) is unique.
    """
    record_id: UUID
    student_id: str
    session_id: str
    unit_id: UUID
    recorded_at: datetime
    method: SignInMethod
    device_fingerprint: Optional[str] = None
    is_duplicate_device: bool = False
