import logging
import math
from typing import Dict, List
from uuid import UUID

from pydantic import BaseModel

from ..models.db_models import AttendanceRecord, Unit
from .ledger_service import AttendanceLedger
from .unit_service import UnitService

logger = logging.getLogger(__name__)


class AttendanceRate(BaseModel):
    percentage: int
    attended_count: int
    total_sessions: int
    threshold: int
    is_at_risk: bool


class SessionAttendance(BaseModel):
    index: int
    session_id: str
    present: bool


class StudentAttendanceReport(BaseModel):
    student_id: str
    rate: AttendanceRate


class UnitAttendanceGrid(BaseModel):
    session_ids: List[str]
    rows: Dict[str, List[bool]]


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def compute_rate(unit: Unit, records: List[AttendanceRecord]) -> AttendanceRate:
    """Distinct attended sessions that are part of the unit's history, over the history length."""
    history = set(unit.session_history)
    total_sessions = len(unit.session_history)
    attended_count = len({record.session_id for record in records if record.session_id in history})
    percentage = _round_half_up(100 * attended_count / total_sessions) if total_sessions else 0
    return AttendanceRate(
        percentage=percentage,
        attended_count=attended_count,
        total_sessions=total_sessions,
        threshold=unit.attendance_threshold,
        is_at_risk=percentage < unit.attendance_threshold,
    )


class AnalyticsService:
    """Read-only aggregations over the ledger. Nothing here is cached; every call recomputes."""
    def __init__(self, ledger: AttendanceLedger, unit_service: UnitService):
        self.ledger = ledger
        self.unit_service = unit_service

    async def attendance_rate(self, unit_id: UUID, student_id: str) -> AttendanceRate:
        unit = await self.unit_service.get_unit(unit_id)
        records = await self.ledger.records_for_student(unit_id, student_id)
        return compute_rate(unit, records)

    async def attendance_sheet(self, unit_id: UUID, student_id: str) -> List[SessionAttendance]:
        unit = await self.unit_service.get_unit(unit_id)
        attended = {record.session_id for record in await self.ledger.records_for_student(unit_id, student_id)}
        return [
            SessionAttendance(index=i, session_id=session_id, present=session_id in attended)
            for i, session_id in enumerate(unit.session_history, start=1)
        ]

    async def unit_report(self, unit_id: UUID) -> List[StudentAttendanceReport]:
        unit = await self.unit_service.get_unit(unit_id)
        by_student: Dict[str, List[AttendanceRecord]] = {}
        for record in await self.ledger.records_for_unit(unit_id):
            by_student.setdefault(record.student_id, []).append(record)

        report = [
            StudentAttendanceReport(student_id=student_id, rate=compute_rate(unit, by_student.get(student_id, [])))
            for student_id in unit.enrolled_students
        ]
        at_risk = sum(1 for entry in report if entry.rate.is_at_risk)
        logger.info(f"Attendance report for unit {unit_id}: {len(report)} students, {at_risk} below {unit.attendance_threshold}%.")
        return report

    async def unit_grid(self, unit_id: UUID) -> UnitAttendanceGrid:
        unit = await self.unit_service.get_unit(unit_id)
        present = {(record.student_id, record.session_id) for record in await self.ledger.records_for_unit(unit_id)}
        rows = {
            student_id: [(student_id, session_id) in present for session_id in unit.session_history]
            for student_id in unit.enrolled_students
        }
        return UnitAttendanceGrid(session_ids=list(unit.session_history), rows=rows)
