from pajr.events import EventBus
from pajr.gateway import IngestionGateway
from pajr.reducer import RiskStateReducer
from pajr.registry import PatientRegistry
from pajr.schemas import ClinicalInsight, PatientRecord, RiskLevel, SenderRole, VitalReading, VitalType
from pajr.vitals import VitalsMerger


def _reducer(*records: PatientRecord) -> tuple[RiskStateReducer, PatientRegistry]:
    registry = PatientRegistry(list(records) or [PatientRecord(id="P-1", name="Sarah Devi", age=58)])
    bus = EventBus()
    gateway = IngestionGateway(registry, bus)
    return RiskStateReducer(registry, gateway, VitalsMerger(registry, bus), bus), registry


def _insight(risk: RiskLevel, reply: str = "Thanks, noted.") -> ClinicalInsight:
    return ClinicalInsight(
        summary=f"{risk.value} risk.",
        risk_level=risk,
        confidence_score=0.8,
        reasoning=["reason"],
        themes=["theme"],
        missing_data=[],
        clinical_action_suggestion="Monitor",
        suggested_response=reply,
    )


def test_flag_tracks_risk_for_every_application():
    reducer, _registry = _reducer()
    sequence = [
        RiskLevel.LOW,
        RiskLevel.CRITICAL,
        RiskLevel.MEDIUM,
        RiskLevel.HIGH,
        RiskLevel.LOW,
        RiskLevel.HIGH,
        RiskLevel.CRITICAL,
    ]
    for risk in sequence:
        record = reducer.apply("P-1", _insight(risk), [])
        assert record.risk_status == risk
        assert record.flagged == (risk in {RiskLevel.HIGH, RiskLevel.CRITICAL})


def test_later_low_insight_downgrades_critical():
    reducer, registry = _reducer()
    reducer.apply("P-1", _insight(RiskLevel.CRITICAL), [])
    record = reducer.apply("P-1", _insight(RiskLevel.LOW, reply="All looks fine."), [])

    assert record.risk_status == RiskLevel.LOW
    assert record.flagged is False
    assert record.latest_insight.summary == "LOW risk."
    assert registry.get("P-1") == record


def test_apply_merges_vitals_and_appends_reply():
    reducer, _registry = _reducer()
    readings = [
        VitalReading(type=VitalType.BP_SYSTOLIC, value=150, unit="mmHg"),
        VitalReading(type=VitalType.BP_DIASTOLIC, value=95, unit="mmHg"),
    ]
    record = reducer.apply("P-1", _insight(RiskLevel.HIGH, reply="Noted 150/95."), readings)

    assert [v.value for v in record.vitals_history] == [150, 95]
    assert len(record.messages) == 1
    assert record.messages[0].sender == SenderRole.SYSTEM
    assert record.messages[0].content == "Noted 150/95."


def test_insight_replaced_wholesale():
    reducer, _registry = _reducer()
    first = _insight(RiskLevel.HIGH).model_copy(update={"missing_data": ["Dietary log"]})
    reducer.apply("P-1", first, [])
    record = reducer.apply("P-1", _insight(RiskLevel.MEDIUM), [])
    assert record.latest_insight.missing_data == []


def test_superseded_insight_still_acknowledges_patient():
    patient = PatientRecord(id="P-1", name="Sarah Devi", last_patient_text_id="newer-message")
    reducer, _registry = _reducer(patient)

    record = reducer.apply(
        "P-1",
        _insight(RiskLevel.CRITICAL, reply="Reply to older message."),
        [VitalReading(type=VitalType.SPO2, value=91, unit="%")],
        source_message_id="older-message",
    )

    assert record.latest_insight is None
    assert record.risk_status == RiskLevel.LOW
    assert record.messages[-1].content == "Reply to older message."
    assert len(record.vitals_history) == 1
