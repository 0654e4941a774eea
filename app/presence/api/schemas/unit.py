from pydantic import BaseModel, Field, ConfigDict
from uuid import UUID
from datetime import datetime
from typing import List, Optional


class UnitCreateRequest(BaseModel):
    """Request model for creating a new unit."""
    name: str = Field(..., min_length=1, description="Display name, e.g. 'Calculus I'.")
    join_code: str = Field(..., min_length=3, max_length=32, description="Unique code students enter to enroll.")
    attendance_threshold: int = Field(85, ge=0, le=100, description="Students below this percentage are flagged.")


class UnitJoinRequest(BaseModel):
    join_code: str = Field(..., min_length=1)


class UnitResponse(BaseModel):
    unit_id: UUID
    name: str
    join_code: str
    owner_id: str
    attendance_threshold: int
    enrolled_students: List[str] = []
    session_history: List[str] = []
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
