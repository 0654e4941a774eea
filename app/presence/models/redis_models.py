from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional
from uuid import UUID


class Coordinate(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class Geofence(BaseModel):
    center: Coordinate
    radius_meters: float = Field(..., gt=0)


class SessionPublicState(BaseModel):
    """
    Read-only snapshot of the current session, as exposed to clients.
    """
    session_id: str
    unit_id: UUID
    active: bool = True
    current_pin: Optional[str] = None
    pin_issued_at: Optional[datetime] = None
    end_time: datetime
    geofence_center: Optional[Coordinate] = None
    geofence_radius_meters: Optional[float] = None


class ActiveSessionRedis(BaseModel):
    """
    Represents the single active session of a unit in Redis, serving as the single source of truth
    while the session is open. Stored under `active_session:{unit_id}`.
    """
    session_id: str = Field(..., description="Creation timestamp in millis plus a random suffix")
    unit_id: UUID
    owner_id: str
    start_time: datetime
    end_time: datetime
    geofence: Optional[Geofence] = None
    current_pin: Optional[str] = None
    pin_issued_at: Optional[datetime] = None

    def to_public_state(self) -> SessionPublicState:
        return SessionPublicState(
            session_id=self.session_id,
            unit_id=self.unit_id,
            active=True,
            current_pin=self.current_pin,
            pin_issued_at=self.pin_issued_at,
            end_time=self.end_time,
            geofence_center=self.geofence.center if self.geofence else None,
            geofence_radius_meters=self.geofence.radius_meters if self.geofence else None,
        )
