"""HTTP entrypoint for the APS AI dashboard API."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Body, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

from apsai.config import Settings, get_settings
from apsai.dashboard import AnalysisInFlightError, DashboardState
from apsai.gemini import GeminiGateway
from apsai.sse import relay_events
from apsai.utils import utc_now


def create_app(
    settings: Settings | None = None,
    *,
    gateway: GeminiGateway | None = None,
    state: DashboardState | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    gateway = gateway or GeminiGateway(settings)
    state = state or DashboardState.from_mock_data(gateway)
    background: set[asyncio.Task[Any]] = set()

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        if settings.auto_triage_on_startup:
            task = asyncio.create_task(_startup_triage())
            background.add(task)
            task.add_done_callback(background.discard)
            # Let the task claim the triage guard before the first request is served.
            await asyncio.sleep(0)
        yield
        pending = [t for t in background if not t.done()]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    async def _startup_triage() -> None:
        outcome = await state.run_triage()
        print(f"[apsai] startup_triage: {outcome.as_dict()}")

    app = FastAPI(title="APS AI API", version="1.0.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["GET", "POST", "PUT", "OPTIONS"],
        allow_headers=["*"],
    )
    app.state.dashboard = state

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "service": settings.app_name,
            "timestamp": utc_now().isoformat(),
            "chat_model": settings.chat_model,
            "thinking_model": settings.thinking_model,
            "triage_model": settings.triage_model,
            "analysis_model": settings.analysis_model,
            "gemini_key_configured": bool(settings.gemini_api_key),
        }

    @app.get("/v1/dashboard")
    async def dashboard() -> dict[str, Any]:
        return state.snapshot()

    @app.post("/v1/consults/triage")
    async def triage() -> dict[str, Any]:
        outcome = await state.run_triage()
        if outcome.rejected:
            raise HTTPException(status_code=409, detail="triage already running")
        return {
            **outcome.as_dict(),
            "consults": state.snapshot()["consults"],
        }

    @app.post("/v1/patients/{patient_id}/analyze")
    async def analyze(patient_id: int) -> dict[str, Any]:
        before = state.find_patient(patient_id)
        if before is None:
            raise HTTPException(status_code=404, detail="patient not found")
        try:
            after = await state.run_patient_analysis(patient_id)
        except AnalysisInFlightError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        if after is None:
            raise HTTPException(status_code=404, detail="patient not found")
        return {"patient": after.to_wire(), "updated": after is not before}

    @app.get("/v1/chat/messages")
    async def chat_messages() -> dict[str, Any]:
        session = state.session
        return {
            "messages": [m.to_wire() for m in session.messages],
            "state": session.state.value,
            "thinking_mode": session.thinking_mode,
        }

    @app.put("/v1/chat/thinking-mode")
    async def thinking_mode(payload: dict[str, Any] | None = Body(default=None)) -> dict[str, Any]:
        session = state.session
        if payload and "enabled" in payload:
            session.thinking_mode = bool(payload["enabled"])
        else:
            session.toggle_thinking_mode()
        return {"thinking_mode": session.thinking_mode}

    @app.post("/v1/chat/stream")
    async def chat_stream(payload: dict[str, Any] = Body(...)):
        session = state.session
        text = str(payload.get("message") or "")
        if not text.strip():
            raise HTTPException(status_code=422, detail="message must not be blank")
        if session.is_loading:
            raise HTTPException(status_code=409, detail="a reply is still streaming")
        if "thinking_mode" in payload:
            session.thinking_mode = bool(payload["thinking_mode"])
        # Claimed before responding, so a concurrent POST sees the session busy.
        if session.reserve(text) is None:
            raise HTTPException(status_code=409, detail="a reply is still streaming")

        queue: asyncio.Queue[tuple[str, dict[str, Any]]] = asyncio.Queue()
        done = asyncio.Event()

        async def emit(event_name: str, event_payload: dict[str, Any]) -> None:
            envelope = {
                "event": event_name,
                "timestamp": utc_now().isoformat(),
                **event_payload,
            }
            await queue.put((event_name, envelope))

        async def runner() -> None:
            try:
                await session.stream_reply(emit=emit)
            finally:
                done.set()

        task = asyncio.create_task(runner())
        background.add(task)
        task.add_done_callback(background.discard)

        return StreamingResponse(relay_events(queue, done), media_type="text/event-stream")

    return app


app = create_app()
