"""Per-patient keyed record store.

Every write to a patient record goes through this module. Each patient owns a
re-entrant lock, and a write replaces the whole record with a new snapshot
computed under that lock, so readers only ever observe complete records and
the local pipeline and the realtime feed cannot lose each other's updates.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Callable, Iterator

from pajr.schemas import Message, PatientRecord
from pajr.utils import risk_rank


class InvalidPatient(LookupError):
    def __init__(self, patient_id: str):
        super().__init__(f"Unknown patient id: {patient_id}")
        self.patient_id = patient_id


class PatientRegistry:
    def __init__(self, records: list[PatientRecord] | None = None):
        self._records: dict[str, PatientRecord] = {}
        self._message_ids: dict[str, set[str]] = {}
        self._locks: dict[str, threading.RLock] = {}
        self._table_lock = threading.Lock()
        for record in records or []:
            self.register(record)

    def register(self, record: PatientRecord) -> None:
        with self._table_lock:
            lock = self._locks.setdefault(record.id, threading.RLock())
        with lock:
            self._records[record.id] = record
            self._message_ids[record.id] = {m.id for m in record.messages}

    def __contains__(self, patient_id: object) -> bool:
        return patient_id in self._records

    def get(self, patient_id: str) -> PatientRecord:
        record = self._records.get(patient_id)
        if record is None:
            raise InvalidPatient(patient_id)
        return record

    @contextmanager
    def locked(self, patient_id: str) -> Iterator[None]:
        lock = self._locks.get(patient_id)
        if lock is None:
            raise InvalidPatient(patient_id)
        with lock:
            yield

    def mutate(self, patient_id: str, fn: Callable[[PatientRecord], PatientRecord]) -> PatientRecord:
        with self.locked(patient_id):
            updated = fn(self._records[patient_id])
            self._records[patient_id] = updated
            return updated

    def append_message(self, patient_id: str, message: Message) -> bool:
        """Append ``message`` unless its id is already present. Returns True when appended."""
        with self.locked(patient_id):
            seen = self._message_ids[patient_id]
            if message.id in seen:
                return False
            record = self._records[patient_id]
            self._records[patient_id] = record.model_copy(
                update={"messages": (*record.messages, message)}
            )
            seen.add(message.id)
            return True

    def patients_for_doctor(self, doctor_id: str) -> list[PatientRecord]:
        mine = [r for r in self._records.values() if r.assigned_doctor_id == doctor_id]
        return sorted(
            mine,
            key=lambda r: (not r.flagged, -risk_rank(r.risk_status), -r.last_interaction.timestamp()),
        )
