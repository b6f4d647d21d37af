"""HTTP entrypoint for the PAJR care pipeline."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import Body, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import ValidationError

from pajr.config import Settings, get_settings
from pajr.orchestration import CarePipeline, CareSession, build_pipeline
from pajr.registry import InvalidPatient
from pajr.schemas import ActivePatientRequest, SubmitMessageRequest
from pajr.sse import stream_envelopes
from pajr.utils import utc_now

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")


def create_app(settings: Settings | None = None, *, pipeline: CarePipeline | None = None) -> FastAPI:
    settings = settings or get_settings()
    if pipeline is None:
        pipeline, _store = build_pipeline(settings)
    session = CareSession(pipeline)

    api = FastAPI(title="PAJR Connect API", version="1.0.0")
    api.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )
    api.state.pipeline = pipeline
    api.state.session = session

    @api.get("/health")
    async def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "service": settings.app_name,
            "timestamp": utc_now().isoformat(),
            "gemini_model": settings.gemini_model,
            "gemini_key_configured": bool(settings.gemini_api_key),
            "store_backend": settings.store_backend,
            "supabase_configured": settings.supabase_configured,
            "s3_configured": bool(settings.s3_bucket),
            "active_patient_id": session.active_patient_id,
            "pending_reactions": pipeline.bus.pending,
        }

    @api.get("/v1/patients/{patient_id}")
    async def patient_record(patient_id: str):
        try:
            record = pipeline.record(patient_id)
        except InvalidPatient as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return record.model_dump(mode="json")

    @api.get("/v1/doctors/{doctor_id}/patients")
    async def doctor_patients(doctor_id: str):
        if not pipeline.registry.patients_for_doctor(doctor_id):
            await pipeline.bootstrap_doctor(doctor_id)
        return [r.model_dump(mode="json") for r in pipeline.registry.patients_for_doctor(doctor_id)]

    @api.post("/v1/patients/{patient_id}/messages")
    async def submit_message(patient_id: str, payload: dict[str, Any] = Body(...)):
        try:
            request = SubmitMessageRequest.model_validate(payload)
        except ValidationError as exc:
            raise HTTPException(status_code=422, detail=exc.errors()) from exc

        try:
            message = pipeline.submit(
                patient_id,
                request.sender,
                request.content,
                request.type,
                request.file_name,
            )
        except InvalidPatient as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        return message.model_dump(mode="json")

    @api.put("/v1/session/active-patient")
    async def select_patient(payload: dict[str, Any] = Body(...)):
        try:
            request = ActivePatientRequest.model_validate(payload)
        except ValidationError as exc:
            raise HTTPException(status_code=422, detail=exc.errors()) from exc
        try:
            subscribed = await session.select_patient(request.patient_id)
        except InvalidPatient as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return {"active_patient_id": session.active_patient_id, "realtime_subscribed": subscribed}

    @api.delete("/v1/session/active-patient")
    async def clear_patient():
        await session.clear_patient()
        return {"active_patient_id": None}

    @api.get("/v1/session/events")
    async def session_events():
        queue = session.open_stream()
        return StreamingResponse(
            stream_envelopes(queue, lambda: session.close_stream(queue)),
            media_type="text/event-stream",
        )

    return api


app = create_app()
