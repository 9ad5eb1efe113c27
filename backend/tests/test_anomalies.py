"""Shared-device detection over plain records."""
from types import SimpleNamespace
from session_engine.services.anomaly_service import AnomalyService

def record(participant_id, ip):
    return SimpleNamespace(participant_id=participant_id, device_ip=ip)

def test_three_participants_on_one_device():
    anomalies = AnomalyService.detect([
        record(1, '10.0.0.1'), record(2, '10.0.0.1'), record(3, '10.0.0.1')
    ])

    assert len(anomalies) == 1
    assert anomalies[0].type == 'SHARED_DEVICE'
    assert anomalies[0].participant_ids == [1, 2, 3]
    assert anomalies[0].count == 3

def test_distinct_devices():
    assert AnomalyService.detect([record(1, '10.0.0.1'), record(2, '10.0.0.2')]) == []

def test_records_without_ip_are_ignored():
    assert AnomalyService.detect([record(1, None), record(2, None), record(3, '')]) == []

def test_same_participant_twice_is_not_an_anomaly():
    assert AnomalyService.detect([record(1, '10.0.0.1'), record(1, '10.0.0.1')]) == []

def test_groups_keep_first_seen_order():
    anomalies = AnomalyService.detect([
        record(1, 'b'), record(2, 'a'), record(3, 'b'), record(4, 'a')
    ])

    assert [a.device for a in anomalies] == ['b', 'a']
