"""Participant record store with race-safe upsert."""
from dataclasses import dataclass
from typing import List, Optional, Tuple
from flask import current_app
from session_engine import db
from session_engine.models.attendance import AttendanceRecord, AttendanceStatus, RecordModification
from session_engine.models.attendance_session import AttendanceSession
from session_engine.services.locking import (
    get_lock_registry, record_key, commit_or_conflict, retry_on_conflict
)
from session_engine.services.session_window import attendance_acceptance
from session_engine.utils import clock
from session_engine.utils.errors import AlreadySubmitted, NotEligible, WindowClosed

MOBILE_MARKERS = ('mobile', 'tablet', 'iphone', 'ipad', 'android')

@dataclass
class DeviceInfo:
    """Fingerprint of the device a record was submitted from."""

    ip: Optional[str] = None
    user_agent: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @property
    def device_type(self) -> str:
        agent = (self.user_agent or '').lower()
        return 'mobile' if any(marker in agent for marker in MOBILE_MARKERS) else 'desktop'

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None

class ParticipantRecordStore:
    """At most one attendance record per (session, participant).

    A repeated upsert is a correction: the previous status is appended to
    the record's modification history before the outcome is overwritten.
    Self-corrections also replace the stored device fingerprint; corrections
    made on the participant's behalf keep it.
    """

    @staticmethod
    def get(session_id: int, participant_id: int) -> Optional[AttendanceRecord]:
        return AttendanceRecord.query.filter_by(
            session_id=session_id,
            participant_id=participant_id
        ).first()

    @staticmethod
    def list_for_session(session_id: int) -> List[AttendanceRecord]:
        return AttendanceRecord.query.filter_by(session_id=session_id).order_by(
            AttendanceRecord.id
        ).all()

    @staticmethod
    def upsert(
        session_id: int,
        participant_id: int,
        status: AttendanceStatus,
        actor: int,
        device: DeviceInfo = None,
        remarks: str = '',
        create_only: bool = False
    ) -> Tuple[AttendanceRecord, bool]:
        """Create or correct a record. Returns (record, created)."""
        key = record_key(session_id, participant_id)
        registry = get_lock_registry()

        def apply():
            with registry.hold(key):
                return ParticipantRecordStore._apply(
                    session_id, participant_id, status, actor,
                    device or DeviceInfo(), remarks or '', create_only
                )

        return retry_on_conflict(apply)

    @staticmethod
    def _stamp_device(record: AttendanceRecord, device: DeviceInfo) -> None:
        record.device_ip = device.ip
        record.user_agent = device.user_agent
        record.device_type = device.device_type
        record.latitude = device.latitude
        record.longitude = device.longitude

    @staticmethod
    def _apply(session_id, participant_id, status, actor, device, remarks, create_only):
        now = clock.utcnow()

        # A close committed after validation still rejects the mark. FOR SHARE
        # holds off the closing UPDATE until this transaction ends.
        session = AttendanceSession.query.filter_by(id=session_id).with_for_update(
            read=True
        ).populate_existing().first()
        if session is None:
            raise NotEligible("Attendance session not found")
        accepting, reason = attendance_acceptance(session, now)
        if not accepting:
            raise WindowClosed(reason)

        record = AttendanceRecord.query.filter_by(
            session_id=session_id,
            participant_id=participant_id
        ).populate_existing().first()

        if record is None:
            record = AttendanceRecord(
                session_id=session_id,
                participant_id=participant_id,
                status=status,
                submitted_at=now,
                submitted_by=actor,
                remarks=remarks
            )
            ParticipantRecordStore._stamp_device(record, device)
            db.session.add(record)
            created = True
        else:
            if create_only:
                raise AlreadySubmitted("Attendance already marked for this session")

            db.session.add(RecordModification(
                record_id=record.id,
                previous_status=record.status,
                new_status=status,
                modified_by=actor,
                modified_at=now,
                reason=remarks or 'Manual modification'
            ))
            record.status = status
            record.remarks = remarks
            record.is_modified = True
            if actor == participant_id:
                ParticipantRecordStore._stamp_device(record, device)
            created = False

        commit_or_conflict(f"Record for participant {participant_id} changed concurrently")

        current_app.logger.debug(
            f"{'Created' if created else 'Corrected'} record session={session_id} "
            f"participant={participant_id} status={status.value} by={actor}"
        )
        return record, created
