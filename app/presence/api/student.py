from fastapi import APIRouter, Depends, HTTPException, status, Request
from typing import Optional
from uuid import UUID

from ..services.errors import ServiceError
from ..services.unit_service import UnitService
from ..services.session_service import SessionService
from ..services.sign_in_service import SignInService, SignInOutcome, QrSignInPayload, LocationSignInPayload
from ..services.analytics_service import AnalyticsService
from ..models.db_models import SignInMethod, Unit, User
from ..tools.qr_payload import decode_qr_payload, InvalidQrPayloadError
from .schemas.unit import UnitJoinRequest, UnitResponse
from .schemas.session import StudentSessionResponse
from .schemas.attendance import QrSignInRequest, StudentAttendanceResponse
from .auth import get_current_user, STUDENT_ROLE
from .dependencies import get_unit_service, get_session_service, get_sign_in_service, get_analytics_service
from .utilities.http_errors import to_http_exception
from .utilities.limiter import limiter

router = APIRouter(prefix="/student", tags=["Student Endpoints"])

def _verify_student_role(user: User):
    """Helper function to verify the current user is a student."""
    if user.role != STUDENT_ROLE:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="This operation is only valid for students."
        )

async def _get_enrolled_unit(unit_id: UUID, user: User, service: UnitService) -> Unit:
    try:
        unit = await service.get_unit(unit_id)
    except ServiceError as e:
        raise to_http_exception(e)
    if user.user_id not in unit.enrolled_students:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unit not found or you are not enrolled in it.")
    return unit

@router.post(
    "/units/join",
    response_model=UnitResponse,
    summary="Enroll in a unit with its join code"
)
@limiter.limit("10/minute")
async def join_unit(
    request: Request,
    join_request: UnitJoinRequest,
    user: User = Depends(get_current_user),
    service: UnitService = Depends(get_unit_service)
):
    _verify_student_role(user)
    try:
        return await service.join_unit(join_request.join_code, user.user_id)
    except ServiceError as e:
        raise to_http_exception(e)

@router.get(
    "/units/{unit_id}/session",
    response_model=Optional[StudentSessionResponse],
    summary="Get the live session of a unit"
)
@limiter.limit("60/minute")
async def get_live_session(
    request: Request,
    unit_id: UUID,
    user: User = Depends(get_current_user),
    unit_service: UnitService = Depends(get_unit_service),
    service: SessionService = Depends(get_session_service)
):
    """
    Returns the live session without its PIN, or null when the unit has no active session.
    The PIN is only ever shown on the instructor's screen.
    """
    _verify_student_role(user)
    await _get_enrolled_unit(unit_id, user, unit_service)
    try:
        state = await service.get_public_state(unit_id)
    except ServiceError as e:
        raise to_http_exception(e)
    if state is None:
        return None
    return StudentSessionResponse(**state.model_dump(exclude={"current_pin", "pin_issued_at"}))

@router.post(
    "/sign-in/qr",
    response_model=SignInOutcome,
    summary="Sign in with a scanned QR code and the current PIN"
)
@limiter.limit("10/minute")
async def sign_in_with_qr(
    request: Request,
    sign_in_request: QrSignInRequest,
    user: User = Depends(get_current_user),
    service: SignInService = Depends(get_sign_in_service)
):
    """
    Expected rejections (wrong PIN, ended session, duplicate sign-in) come back with
    status 200 and a `status` field; only malformed input and infrastructure failures are HTTP errors.
    """
    _verify_student_role(user)
    try:
        qr = decode_qr_payload(sign_in_request.qr_payload)
    except InvalidQrPayloadError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    payload = QrSignInPayload(
        session_id=qr.session_id,
        pin=sign_in_request.pin,
        device_fingerprint=sign_in_request.device_fingerprint,
    )
    try:
        return await service.sign_in(qr.unit_id, user.user_id, SignInMethod.QR_CODE, payload)
    except ServiceError as e:
        raise to_http_exception(e)

@router.post(
    "/units/{unit_id}/sign-in/location",
    response_model=SignInOutcome,
    summary="Sign in with the device's location"
)
@limiter.limit("10/minute")
async def sign_in_with_location(
    request: Request,
    unit_id: UUID,
    payload: LocationSignInPayload,
    user: User = Depends(get_current_user),
    service: SignInService = Depends(get_sign_in_service)
):
    _verify_student_role(user)
    try:
        return await service.sign_in(unit_id, user.user_id, SignInMethod.LOCATION, payload)
    except ServiceError as e:
        raise to_http_exception(e)

@router.get(
    "/units/{unit_id}/attendance",
    response_model=StudentAttendanceResponse,
    summary="Check my attendance rate and per-session sheet"
)
@limiter.limit("20/minute")
async def get_my_attendance(
    request: Request,
    unit_id: UUID,
    user: User = Depends(get_current_user),
    unit_service: UnitService = Depends(get_unit_service),
    service: AnalyticsService = Depends(get_analytics_service)
):
    _verify_student_role(user)
    await _get_enrolled_unit(unit_id, user, unit_service)
    try:
        rate = await service.attendance_rate(unit_id, user.user_id)
        sessions = await service.attendance_sheet(unit_id, user.user_id)
    except ServiceError as e:
        raise to_http_exception(e)
    return StudentAttendanceResponse(rate=rate, sessions=sessions)
