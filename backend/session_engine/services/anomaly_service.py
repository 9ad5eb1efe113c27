"""Shared-device anomaly detection."""
from dataclasses import dataclass, field
from typing import Dict, Iterable, List
from session_engine.models.attendance import AttendanceRecord
from session_engine.services.record_store import ParticipantRecordStore

SHARED_DEVICE = 'SHARED_DEVICE'

@dataclass
class Anomaly:
    type: str
    device: str
    participant_ids: List[int] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.participant_ids)

    @property
    def message(self) -> str:
        return f"{self.count} participants submitted from device {self.device}"

    def to_dict(self) -> dict:
        return {
            'type': self.type,
            'device': self.device,
            'participant_ids': list(self.participant_ids),
            'count': self.count,
            'message': self.message
        }

class AnomalyService:
    """Read-only detection; never part of the submission path."""

    @staticmethod
    def detect(records: Iterable[AttendanceRecord]) -> List[Anomaly]:
        """Group by device IP; any IP used by more than one participant is flagged.

        Records without an IP are ignored. Groups keep first-seen order.
        """
        groups: Dict[str, Dict[int, None]] = {}
        for record in records:
            if not record.device_ip:
                continue
            groups.setdefault(record.device_ip, {})[record.participant_id] = None

        return [
            Anomaly(type=SHARED_DEVICE, device=device, participant_ids=list(participants))
            for device, participants in groups.items()
            if len(participants) > 1
        ]

    @staticmethod
    def for_session(session_id: int) -> List[Anomaly]:
        return AnomalyService.detect(ParticipantRecordStore.list_for_session(session_id))
