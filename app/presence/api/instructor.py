from fastapi import APIRouter, Depends, HTTPException, status, Response, Request
from typing import List, Optional
from uuid import UUID

from ..services.errors import ServiceError
from ..services.unit_service import UnitService
from ..services.session_service import SessionService
from ..services.sign_in_service import SignInService, SignInOutcome
from ..services.analytics_service import (
    AnalyticsService, AttendanceRate, StudentAttendanceReport, UnitAttendanceGrid
)
from ..models.db_models import AttendanceRecord, Unit, User
from ..tools.qr_payload import encode_qr_payload
from .schemas.unit import UnitCreateRequest, UnitResponse
from .schemas.session import SessionStartRequest, InstructorSessionResponse
from .auth import get_current_user, INSTRUCTOR_ROLE
from .dependencies import get_unit_service, get_session_service, get_sign_in_service, get_analytics_service
from .utilities.http_errors import to_http_exception
from .utilities.limiter import limiter

router = APIRouter(prefix="/instructor", tags=["Instructor Endpoints"])

# --- YARDIMCI (HELPER) FONKSİYONLAR ---

def _verify_instructor_role(user: User):
    if user.role != INSTRUCTOR_ROLE:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="This operation is only valid for instructors.")

async def _get_and_verify_owner(unit_id: UUID, user: User, service: UnitService) -> Unit:
    try:
        return await service.get_and_verify_unit_owner(unit_id, user.user_id)
    except ServiceError as e:
        raise to_http_exception(e)

# === BÖLÜM 1: BİRİM (UNIT) YÖNETİMİ ===

@router.post("/units", response_model=UnitResponse, status_code=status.HTTP_201_CREATED, summary="Create a new unit")
@limiter.limit("10/minute")
async def create_unit(request: Request, create_request: UnitCreateRequest, user: User = Depends(get_current_user), service: UnitService = Depends(get_unit_service)):
    _verify_instructor_role(user)
    try:
        return await service.create_unit(
            owner_id=user.user_id,
            name=create_request.name,
            join_code=create_request.join_code,
            attendance_threshold=create_request.attendance_threshold,
        )
    except ServiceError as e:
        raise to_http_exception(e)

@router.get("/units", response_model=List[UnitResponse], summary="List the units owned by the instructor")
@limiter.limit("30/minute")
async def list_units(request: Request, user: User = Depends(get_current_user), service: UnitService = Depends(get_unit_service)):
    _verify_instructor_role(user)
    try:
        return await service.list_units_for_owner(user.user_id)
    except ServiceError as e:
        raise to_http_exception(e)

# === BÖLÜM 2: YOKLAMA OTURUMU YÖNETİMİ ===

@router.post("/units/{unit_id}/sessions", response_model=InstructorSessionResponse, status_code=status.HTTP_201_CREATED, summary="Start a new attendance session")
@limiter.limit("5/minute")
async def start_session(request: Request, unit_id: UUID, start_request: SessionStartRequest, user: User = Depends(get_current_user), unit_service: UnitService = Depends(get_unit_service), service: SessionService = Depends(get_session_service)):
    _verify_instructor_role(user)
    await _get_and_verify_owner(unit_id, user, unit_service)
    geofence = start_request.geofence.to_geofence() if start_request.geofence else None
    try:
        state = await service.start_session(unit_id, start_request.duration_minutes, geofence)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except ServiceError as e:
        raise to_http_exception(e)
    return InstructorSessionResponse(**state.model_dump(), qr_payload=encode_qr_payload(unit_id, state.session_id))

@router.post("/units/{unit_id}/sessions/end", status_code=status.HTTP_204_NO_CONTENT, summary="End the active attendance session")
@limiter.limit("10/minute")
async def end_session(request: Request, unit_id: UUID, user: User = Depends(get_current_user), unit_service: UnitService = Depends(get_unit_service), service: SessionService = Depends(get_session_service)):
    _verify_instructor_role(user)
    await _get_and_verify_owner(unit_id, user, unit_service)
    try:
        await service.end_session(unit_id)
    except ServiceError as e:
        raise to_http_exception(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

@router.get("/units/{unit_id}/sessions/live", response_model=Optional[InstructorSessionResponse], summary="Get the live session with its current PIN and QR payload")
@limiter.limit("120/minute")
async def get_live_session(request: Request, unit_id: UUID, user: User = Depends(get_current_user), unit_service: UnitService = Depends(get_unit_service), service: SessionService = Depends(get_session_service)):
    _verify_instructor_role(user)
    await _get_and_verify_owner(unit_id, user, unit_service)
    try:
        state = await service.get_public_state(unit_id)
    except ServiceError as e:
        raise to_http_exception(e)
    if state is None:
        return None
    return InstructorSessionResponse(**state.model_dump(), qr_payload=encode_qr_payload(unit_id, state.session_id))

# === BÖLÜM 3: YOKLAMA KAYDI YÖNETİMİ ===

@router.get("/units/{unit_id}/sessions/{session_id}/records", response_model=List[AttendanceRecord], summary="Get all records of a session, newest first")
@limiter.limit("60/minute")
async def get_session_records(request: Request, unit_id: UUID, session_id: str, user: User = Depends(get_current_user), unit_service: UnitService = Depends(get_unit_service), service: SignInService = Depends(get_sign_in_service)):
    _verify_instructor_role(user)
    await _get_and_verify_owner(unit_id, user, unit_service)
    try:
        return await service.live_ledger(unit_id, session_id)
    except ServiceError as e:
        raise to_http_exception(e)

@router.post("/units/{unit_id}/sessions/{session_id}/records/{student_id}", response_model=SignInOutcome, summary="Manually mark a student as present")
@limiter.limit("200/minute")
async def sign_in_student_manually(request: Request, unit_id: UUID, session_id: str, student_id: str, user: User = Depends(get_current_user), unit_service: UnitService = Depends(get_unit_service), service: SignInService = Depends(get_sign_in_service)):
    _verify_instructor_role(user)
    await _get_and_verify_owner(unit_id, user, unit_service)
    try:
        return await service.sign_in_manually(unit_id, session_id, student_id)
    except ServiceError as e:
        raise to_http_exception(e)

# === BÖLÜM 4: RAPORLAR ===

@router.get("/units/{unit_id}/report", response_model=List[StudentAttendanceReport], summary="Attendance rate of every enrolled student")
@limiter.limit("20/minute")
async def get_unit_report(request: Request, unit_id: UUID, user: User = Depends(get_current_user), unit_service: UnitService = Depends(get_unit_service), service: AnalyticsService = Depends(get_analytics_service)):
    _verify_instructor_role(user)
    await _get_and_verify_owner(unit_id, user, unit_service)
    try:
        return await service.unit_report(unit_id)
    except ServiceError as e:
        raise to_http_exception(e)

@router.get("/units/{unit_id}/grid", response_model=UnitAttendanceGrid, summary="Student by session presence grid")
@limiter.limit("20/minute")
async def get_unit_grid(request: Request, unit_id: UUID, user: User = Depends(get_current_user), unit_service: UnitService = Depends(get_unit_service), service: AnalyticsService = Depends(get_analytics_service)):
    _verify_instructor_role(user)
    await _get_and_verify_owner(unit_id, user, unit_service)
    try:
        return await service.unit_grid(unit_id)
    except ServiceError as e:
        raise to_http_exception(e)

@router.get("/units/{unit_id}/students/{student_id}/attendance-rate", response_model=AttendanceRate, summary="Attendance rate of one student")
@limiter.limit("60/minute")
async def get_student_rate(request: Request, unit_id: UUID, student_id: str, user: User = Depends(get_current_user), unit_service: UnitService = Depends(get_unit_service), service: AnalyticsService = Depends(get_analytics_service)):
    _verify_instructor_role(user)
    await _get_and_verify_owner(unit_id, user, unit_service)
    try:
        return await service.attendance_rate(unit_id, student_id)
    except ServiceError as e:
        raise to_http_exception(e)
