import hmac
import logging
from enum import Enum
from typing import List, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field

from ..models.db_models import AttendanceRecord, SignInMethod, Unit
from ..models.redis_models import Coordinate
from ..tools.geo_validator import distance_meters, within_geofence
from .ledger_service import AttendanceLedger
from .session_service import SessionService
from .unit_service import UnitService

logger = logging.getLogger(__name__)


class SignInStatus(str, Enum):
    SUCCESS = "SUCCESS"
    SESSION_EXPIRED = "SESSION_EXPIRED"
    INVALID_SESSION = "INVALID_SESSION"
    INVALID_PIN = "INVALID_PIN"
    TOO_FAR_AWAY = "TOO_FAR_AWAY"
    GEOFENCE_NOT_CONFIGURED = "GEOFENCE_NOT_CONFIGURED"
    DUPLICATE_SIGN_IN = "DUPLICATE_SIGN_IN"
    NOT_ENROLLED = "NOT_ENROLLED"


class SignInOutcome(BaseModel):
    """Every expected result of a sign-in attempt. Only storage failures are raised instead."""
    status: SignInStatus
    message: str
    record: Optional[AttendanceRecord] = None
    distance_meters: Optional[float] = Field(None, description="Always set for location sign-ins that reached the distance check.")

    @property
    def success(self) -> bool:
        return self.status == SignInStatus.SUCCESS


class QrSignInPayload(BaseModel):
    session_id: str
    pin: str
    device_fingerprint: Optional[str] = None


class LocationSignInPayload(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    device_fingerprint: Optional[str] = None


def _outcome(status: SignInStatus, message: str, **kwargs) -> SignInOutcome:
    return SignInOutcome(status=status, message=message, **kwargs)


class SignInService:
    """
    Orchestrates one sign-in attempt end to end. Both student methods and the instructor's
    manual override finish in the same idempotent `AttendanceLedger.record` call.
    """
    def __init__(self, session_service: SessionService, ledger: AttendanceLedger, unit_service: UnitService):
        self.session_service = session_service
        self.ledger = ledger
        self.unit_service = unit_service

    async def sign_in(
        self,
        unit_id: UUID,
        student_id: str,
        method: SignInMethod,
        payload: Union[QrSignInPayload, LocationSignInPayload]
    ) -> SignInOutcome:
        if method == SignInMethod.QR_CODE and isinstance(payload, QrSignInPayload):
            return await self.sign_in_by_qr_and_pin(
                unit_id, payload.session_id, student_id, payload.pin, payload.device_fingerprint
            )
        if method == SignInMethod.LOCATION and isinstance(payload, LocationSignInPayload):
            location = Coordinate(latitude=payload.lat, longitude=payload.lng)
            return await self.sign_in_by_location(unit_id, student_id, location, payload.device_fingerprint)
        raise ValueError(f"Payload {type(payload).__name__} does not match sign-in method '{method.value}'.")

    async def sign_in_by_qr_and_pin(
        self,
        unit_id: UUID,
        session_id: str,
        student_id: str,
        pin: str,
        device_fingerprint: Optional[str] = None
    ) -> SignInOutcome:
        logger.info(f"Student '{student_id}' attempting QR sign-in for session {session_id} of unit {unit_id}.")
        check = await self.session_service.check_expiry(unit_id)
        if not check.is_active:
            return _outcome(SignInStatus.SESSION_EXPIRED, "The attendance session has ended.")

        session = check.session
        if session_id != session.session_id:
            logger.warning(f"Student '{student_id}' used a stale QR code ({session_id}) for unit {unit_id}.")
            return _outcome(SignInStatus.INVALID_SESSION, "This QR code belongs to a different or older session.")

        if not session.current_pin or not hmac.compare_digest(pin.encode(), session.current_pin.encode()):
            return _outcome(SignInStatus.INVALID_PIN, "The PIN you entered is incorrect or has expired. Please try again.")

        return await self._commit(unit_id, session.session_id, student_id, SignInMethod.QR_CODE, device_fingerprint)

    async def sign_in_by_location(
        self,
        unit_id: UUID,
        student_id: str,
        claimed_location: Coordinate,
        device_fingerprint: Optional[str] = None
    ) -> SignInOutcome:
        logger.info(f"Student '{student_id}' attempting location sign-in for unit {unit_id}.")
        check = await self.session_service.check_expiry(unit_id)
        if not check.is_active:
            return _outcome(SignInStatus.SESSION_EXPIRED, "The attendance session has ended.")

        session = check.session
        if session.geofence is None:
            return _outcome(SignInStatus.GEOFENCE_NOT_CONFIGURED, "This session does not accept location sign-in.")

        distance = distance_meters(claimed_location, session.geofence.center)
        if not within_geofence(claimed_location, session.geofence.center, session.geofence.radius_meters):
            return _outcome(
                SignInStatus.TOO_FAR_AWAY,
                f"You are too far from the classroom. (Distance: {round(distance)}m)",
                distance_meters=distance,
            )

        outcome = await self._commit(unit_id, session.session_id, student_id, SignInMethod.LOCATION, device_fingerprint)
        outcome.distance_meters = distance
        return outcome

    async def sign_in_manually(self, unit_id: UUID, session_id: str, student_id: str) -> SignInOutcome:
        """Instructor override. Works for any session in the unit's history, live or past."""
        unit = await self.unit_service.get_unit(unit_id)
        if session_id not in unit.session_history:
            return _outcome(SignInStatus.INVALID_SESSION, "This session does not belong to the unit.")
        logger.info(f"Manual sign-in of student '{student_id}' for session {session_id}.")
        return await self._commit(unit_id, session_id, student_id, SignInMethod.MANUAL, None, unit=unit)

    async def live_ledger(self, unit_id: UUID, session_id: str) -> List[AttendanceRecord]:
        records = await self.ledger.records_for_session(session_id)
        return [record for record in records if record.unit_id == unit_id]

    async def _commit(
        self,
        unit_id: UUID,
        session_id: str,
        student_id: str,
        method: SignInMethod,
        device_fingerprint: Optional[str],
        unit: Optional[Unit] = None
    ) -> SignInOutcome:
        unit = unit or await self.unit_service.get_unit(unit_id)
        if student_id not in unit.enrolled_students:
            logger.warning(f"Student '{student_id}' is not enrolled in unit {unit_id}.")
            return _outcome(SignInStatus.NOT_ENROLLED, "You are not enrolled in this unit.")

        result = await self.ledger.record(unit_id, session_id, student_id, method, device_fingerprint)
        if result.already_recorded:
            return _outcome(
                SignInStatus.DUPLICATE_SIGN_IN,
                "You have already signed in for this session.",
                record=result.record,
            )
        return _outcome(SignInStatus.SUCCESS, "Attendance recorded.", record=result.record)
