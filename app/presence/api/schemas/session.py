from pydantic import BaseModel, Field
from uuid import UUID
from datetime import datetime
from typing import Optional

from ...models.redis_models import Coordinate, Geofence, SessionPublicState


class GeofenceRequest(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    radius_meters: float = Field(50, gt=0, le=10000, description="Accepted distance from the center, in meters.")

    def to_geofence(self) -> Geofence:
        return Geofence(center=Coordinate(latitude=self.latitude, longitude=self.longitude), radius_meters=self.radius_meters)


class SessionStartRequest(BaseModel):
    """Request model for starting an attendance session."""
    duration_minutes: float = Field(15, gt=0, description="How long the session accepts sign-ins.")
    geofence: Optional[GeofenceRequest] = Field(None, description="Required only for location sign-in.")


class InstructorSessionResponse(SessionPublicState):
    """Public state plus the QR payload the instructor's screen renders."""
    qr_payload: str


class StudentSessionResponse(BaseModel):
    """What a student may see: no PIN, it is read off the instructor's screen."""
    session_id: str
    unit_id: UUID
    active: bool
    end_time: datetime
    geofence_center: Optional[Coordinate] = None
    geofence_radius_meters: Optional[float] = None
