import logging
from pathlib import Path
from typing import List, Optional
from uuid import UUID, uuid4
import asyncpg
from datetime import datetime
from ..models.db_models import Unit, AttendanceSession, AttendanceRecord, SessionState, SignInMethod

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).with_name("schema.sql")


class AsyncPostgresClient:
    """
    Tüm veritabanı operasyonlarını yöneten PostgreSQL istemcisi.
    """
    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    async def create_schema(self):
        """schema.sql dosyasındaki tabloları ve indeksleri (yoksa) oluşturur."""
        ddl = SCHEMA_PATH.read_text(encoding="utf-8")
        async with self._pool.acquire() as connection:
            await connection.execute(ddl)

    # ===== Units =====

    async def add_unit(self, unit: Unit) -> Optional[Unit]:
        """Yeni bir ders ekler. Katılım kodu zaten kullanılıyorsa None döner."""
        query = """
            INSERT INTO Units (unit_id, name, join_code, owner_id, attendance_threshold)
            VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT (join_code) DO NOTHING
            RETURNING *;
        """
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(
                query, unit.unit_id, unit.name, unit.join_code, unit.owner_id, unit.attendance_threshold
            )
            return Unit(**record) if record else None

    async def get_unit(self, unit_id: UUID) -> Optional[Unit]:
        query = "SELECT * FROM Units WHERE unit_id = $1;"
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, unit_id)
            return Unit(**record) if record else None

    async def get_unit_by_join_code(self, join_code: str) -> Optional[Unit]:
        query = "SELECT * FROM Units WHERE join_code = $1;"
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, join_code)
            return Unit(**record) if record else None

    async def get_units_by_owner(self, owner_id: str) -> List[Unit]:
        query = "SELECT * FROM Units WHERE owner_id = $1 ORDER BY created_at;"
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, owner_id)
            return [Unit(**record) for record in records]

    async def enroll_student(self, join_code: str, student_id: str) -> Optional[Unit]:
        """
        Öğrenciyi derse atomik olarak ekler.
        Ders bulunamazsa veya öğrenci zaten kayıtlıysa None döner.
        """
        query = """
            UPDATE Units
            SET enrolled_students = array_append(enrolled_students, $2)
            WHERE join_code = $1 AND NOT ($2 = ANY(enrolled_students))
            RETURNING *;
        """
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, join_code, student_id)
            return Unit(**record) if record else None

    # ===== Sessions =====

    async def add_session(self, session: AttendanceSession):
        """
        Oturum satırını ekler ve oturum ID'sini dersin geçmişine tek bir transaction içinde ekler.
        Böylece hiç katılım olmasa bile oturum analitikte paydaya dahil olur.
        """
        insert_query = """
            INSERT INTO Sessions (session_id, unit_id, start_time, end_time, state,
                                  geofence_latitude, geofence_longitude, geofence_radius_meters)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8);
        """
        history_query = """
            UPDATE Units
            SET session_history = array_append(session_history, $2)
            WHERE unit_id = $1 AND NOT ($2 = ANY(session_history));
        """
        async with self._pool.acquire() as connection:
            async with connection.transaction():
                await connection.execute(
                    insert_query,
                    session.session_id, session.unit_id, session.start_time, session.end_time,
                    session.state.value, session.geofence_latitude, session.geofence_longitude,
                    session.geofence_radius_meters
                )
                await connection.execute(history_query, session.unit_id, session.session_id)

    async def close_session(self, session_id: str, state: SessionState, closed_at: datetime) -> bool:
        """Hala ACTIVE olan bir oturumu kapatır. Zaten kapalıysa False döner."""
        query = """
            UPDATE Sessions
            SET state = $2, closed_at = $3
            WHERE session_id = $1 AND state = 'ACTIVE';
        """
        async with self._pool.acquire() as connection:
            result = await connection.execute(query, session_id, state.value, closed_at)
            return result.endswith(" 1")

    async def expire_stale_sessions(self, now: datetime) -> List[str]:
        """
        Bitiş zamanı geçtiği halde hala ACTIVE duran oturumları EXPIRED yapar.
        Redis anahtarı TTL ile silinmiş oturumlar ancak bu şekilde kapanır.
        """
        query = """
            UPDATE Sessions
            SET state = 'EXPIRED', closed_at = $1
            WHERE state = 'ACTIVE' AND end_time < $1
            RETURNING session_id;
        """
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, now)
            return [record["session_id"] for record in records]

    async def get_session(self, session_id: str) -> Optional[AttendanceSession]:
        query = "SELECT * FROM Sessions WHERE session_id = $1;"
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, session_id)
            return AttendanceSession(**record) if record else None

    # ===== Attendance ledger =====

    async def insert_attendance_record(
        self,
        unit_id: UUID,
        session_id: str,
        student_id: str,
        method: SignInMethod,
        device_fingerprint: Optional[str] = None
    ) -> Optional[AttendanceRecord]:
        """
        Tek bir koşullu INSERT ile kayıt oluşturur. (student_id, session_id) çifti için
        kayıt zaten varsa hiçbir şey eklemez ve None döner.
        Aynı cihaz parmak izinin bu oturumda daha önce kullanılıp kullanılmadığı da aynı ifade içinde hesaplanır.
        """
        query = """
            INSERT INTO AttendanceRecords (record_id, student_id, session_id, unit_id, recorded_at,
                                           method, device_fingerprint, is_duplicate_device)
            VALUES ($1, $2, $3, $4, now(), $5, $6::text,
                    $6::text IS NOT NULL AND EXISTS (
                        SELECT 1 FROM AttendanceRecords
                        WHERE session_id = $3 AND device_fingerprint = $6::text
                    ))
            ON CONFLICT (student_id, session_id) DO NOTHING
            RETURNING *;
        """
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(
                query, uuid4(), student_id, session_id, unit_id, method.value, device_fingerprint
            )
            return AttendanceRecord(**record) if record else None

    async def get_attendance_record(self, session_id: str, student_id: str) -> Optional[AttendanceRecord]:
        query = "SELECT * FROM AttendanceRecords WHERE session_id = $1 AND student_id = $2;"
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, session_id, student_id)
            return AttendanceRecord(**record) if record else None

    async def was_device_used(self, session_id: str, device_fingerprint: str) -> bool:
        query = """
            SELECT EXISTS (
                SELECT 1 FROM AttendanceRecords WHERE session_id = $1 AND device_fingerprint = $2
            );
        """
        async with self._pool.acquire() as connection:
            return bool(await connection.fetchval(query, session_id, device_fingerprint))

    async def get_records_for_session(self, session_id: str) -> List[AttendanceRecord]:
        query = "SELECT * FROM AttendanceRecords WHERE session_id = $1 ORDER BY recorded_at DESC;"
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, session_id)
            return [AttendanceRecord(**record) for record in records]

    async def get_records_for_student(self, unit_id: UUID, student_id: str) -> List[AttendanceRecord]:
        query = "SELECT * FROM AttendanceRecords WHERE unit_id = $1 AND student_id = $2 ORDER BY recorded_at;"
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, unit_id, student_id)
            return [AttendanceRecord(**record) for record in records]

    async def get_records_for_unit(self, unit_id: UUID) -> List[AttendanceRecord]:
        query = "SELECT * FROM AttendanceRecords WHERE unit_id = $1 ORDER BY recorded_at;"
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, unit_id)
            return [AttendanceRecord(**record) for record in records]
