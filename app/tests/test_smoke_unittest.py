import asyncio
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory

from pajr.config import Settings
from pajr.gateway import build_history_context
from pajr.orchestration import build_pipeline
from pajr.schemas import ClinicalInsight, RiskLevel, VitalReading, VitalType
from pajr.seed import demo_patients


class AlwaysCriticalAnalyzer:
    async def analyze(self, text: str, history_context: str):
        insight = ClinicalInsight(
            summary="Chest pain with breathlessness.",
            risk_level=RiskLevel.CRITICAL,
            confidence_score=0.9,
            reasoning=["Chest pain reported"],
            themes=["Cardiac"],
            missing_data=["ECG"],
            clinical_action_suggestion="Escalate now",
            suggested_response="Please call emergency services now.",
        )
        return insight, [VitalReading(type=VitalType.HEART_RATE, value=122, unit="bpm")]


def _settings(tmp_path: Path) -> Settings:
    return Settings(
        local_storage_dir=str(tmp_path),
        gemini_api_key=None,
        s3_bucket=None,
        supabase_url=None,
        supabase_key=None,
        store_backend="local",
        media_ack_delay_sec=0.0,
        seed_demo_patients=True,
    )


class PajrSmokeTests(unittest.TestCase):
    def test_history_context_uses_last_three_vitals(self):
        sarah = next(r for r in demo_patients() if r.id == "P-1024")
        context = build_history_context(sarah)

        self.assertTrue(context.startswith("Age: 58, Conditions: "))
        self.assertEqual(context.count(": ", context.index("Recent Vitals:")), 4)

    def test_pipeline_runs_and_persists(self):
        with TemporaryDirectory() as tmp:
            settings = _settings(Path(tmp))
            pipeline, store = build_pipeline(settings, analyzer=AlwaysCriticalAnalyzer())
            emitted: list[str] = []

            async def record_event(event_name, payload):
                emitted.append(event_name)

            async def scenario():
                pipeline.bus.listen(record_event)
                message = pipeline.submit("P-1099", "PATIENT", "chest pain and short of breath")
                await pipeline.drain()
                return message

            message = asyncio.run(scenario())
            record = pipeline.record("P-1099")

            self.assertEqual(record.risk_status, RiskLevel.CRITICAL)
            self.assertTrue(record.flagged)
            self.assertEqual(record.messages[-1].content, "Please call emergency services now.")
            self.assertIn("insight.applied", emitted)
            self.assertIn("vitals.merged", emitted)
            persisted = [row["id"] for row in store.read_messages("P-1099")]
            self.assertIn(message.id, persisted)
            self.assertEqual(store.read_vitals("P-1099")[0]["type"], "HEART_RATE")


if __name__ == "__main__":
    unittest.main()
