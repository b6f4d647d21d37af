"""Append-only vitals ledger merge."""

from __future__ import annotations

from pajr.events import EventBus
from pajr.registry import PatientRegistry
from pajr.schemas import VitalReading


class VitalsMerger:
    def __init__(self, registry: PatientRegistry, bus: EventBus):
        self._registry = registry
        self._bus = bus

    def merge(self, patient_id: str, readings: list[VitalReading]) -> None:
        # Readings without a source timestamp were stamped when built; repeats are all kept.
        new_readings = list(readings)
        self._registry.mutate(
            patient_id,
            lambda record: record.model_copy(
                update={"vitals_history": (*record.vitals_history, *new_readings)}
            ),
        )
        if new_readings:
            self._bus.emit(
                "vitals.merged",
                {
                    "patient_id": patient_id,
                    "readings": [r.model_dump(mode="json") for r in new_readings],
                },
            )
