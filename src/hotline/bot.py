import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone

import uvicorn
from dotenv import load_dotenv
from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from hotline.classification import Classifier
from hotline.config import Settings, validate_config
from hotline.llm import LLMClient
from hotline.post_call import handle_call_ended
from hotline.processor import InboundSpeech, TurnProcessor
from hotline.registry import CaseRegistry
from hotline.session_store import SessionStore
from hotline.sheets import SheetsStore
from hotline.state_machine import StageMachine
from hotline.tts import ElevenLabsClient
from hotline.twiml import VoiceRenderer

load_dotenv()

logger = logging.getLogger(__name__)


@dataclass
class Services:
    store: SessionStore
    processor: TurnProcessor
    registry: CaseRegistry
    sheets: SheetsStore
    renderer: VoiceRenderer
    llm: LLMClient | None = None
    tts: ElevenLabsClient | None = None


def build_services(settings: Settings) -> Services:
    store = SessionStore(ttl_seconds=settings.session_ttl_s, high_water=settings.session_high_water)
    llm = LLMClient(api_key=settings.openai_api_key, model=settings.openai_model)
    classifier = Classifier(llm=llm, timeout=settings.classifier_timeout_s)
    sheets = SheetsStore(
        sheet_id=settings.google_sheet_id,
        credentials_file=settings.google_credentials_file,
    )
    tts = ElevenLabsClient(
        api_key=settings.elevenlabs_api_key,
        voice_id=settings.elevenlabs_voice_id,
        public_base_url=settings.public_base_url,
    )
    return Services(
        store=store,
        processor=TurnProcessor(store, StageMachine(classifier), sink=sheets),
        registry=CaseRegistry(store),
        sheets=sheets,
        renderer=VoiceRenderer(tts, voice=settings.twilio_voice, language=settings.speech_language),
        llm=llm,
        tts=tts,
    )


def _xml(body: str) -> Response:
    return Response(content=body, media_type="application/xml")


def _float(value, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def create_app(services: Services) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await services.processor.drain()
        for client in (services.llm, services.tts):
            if client is not None:
                await client.close()

    app = FastAPI(title="Business Support Hotline", lifespan=lifespan)
    app.state.services = services

    @app.get("/health")
    async def health():
        return PlainTextResponse("ok")

    # ── Telephony webhooks ──

    @app.post("/webhook/voice")
    async def incoming_call(request: Request, background: BackgroundTasks):
        form = await request.form()
        call_sid = form.get("CallSid", "")
        caller = form.get("From", "")
        logger.info(f"Call: {call_sid} from {caller}")
        try:
            services.store.get_or_create(call_sid, caller=caller)
            background.add_task(
                services.sheets.log_call,
                {"call_sid": call_sid, "phone": caller, "status": "Started", "type": "Incoming"},
            )
            return _xml(await services.renderer.greeting())
        except Exception as e:
            logger.error(f"Error in incoming_call: {e}")
            return _xml(services.renderer.apology())

    @app.post("/webhook/gather")
    async def gather(request: Request):
        form = await request.form()
        event = InboundSpeech(
            call_id=form.get("CallSid", ""),
            transcript=form.get("SpeechResult", "") or "",
            confidence=_float(form.get("Confidence")),
            caller=form.get("From", ""),
        )
        try:
            turn = await services.processor.handle(event)
            return _xml(await services.renderer.render(turn))
        except Exception as e:
            logger.error(f"Error in gather for {event.call_id}: {e}")
            return _xml(services.renderer.apology())

    @app.post("/webhook/status")
    async def call_status(request: Request, background: BackgroundTasks):
        form = await request.form()
        call_sid = form.get("CallSid", "")
        status = form.get("CallStatus", "")
        duration = int(_float(form.get("CallDuration")))
        logger.info(f"Call {call_sid} status: {status}{f' ({duration}s)' if duration else ''}")
        if status == "completed":
            background.add_task(
                handle_call_ended,
                services.sheets,
                call_sid,
                services.store.get(call_sid),
                "Completed",
                duration,
                form.get("From", ""),
            )
            services.store.sweep()
        return PlainTextResponse("OK")

    @app.get("/audio/{key}.mp3")
    async def audio(key: str):
        clip = services.tts.get_audio(key) if services.tts is not None else None
        if clip is None:
            return PlainTextResponse("not found", status_code=404)
        return Response(content=clip, media_type="audio/mpeg")

    # ── Admin ──

    @app.get("/admin/urgent-cases")
    async def urgent_cases():
        memory = [c.to_dict() for c in services.registry.list_urgent_cases()]
        sheet = await services.sheets.get_urgent_cases()
        return {
            "success": True,
            "memoryCases": memory,
            "sheetsCases": sheet,
            "totalMemory": len(memory),
            "totalSheets": len(sheet),
            "timestamp": _now(),
        }

    @app.get("/admin/scheduled-callbacks")
    async def scheduled_callbacks():
        memory = [c.to_dict() for c in services.registry.list_scheduled_callbacks()]
        sheet = await services.sheets.get_callback_requests()
        return {
            "success": True,
            "memoryCallbacks": memory,
            "sheetsCallbacks": sheet,
            "totalMemory": len(memory),
            "totalSheets": len(sheet),
            "timestamp": _now(),
        }

    @app.get("/admin/statistics")
    async def statistics():
        stats = await services.sheets.get_statistics()
        if stats is None:
            stats = {**services.registry.statistics(), "googleSheetsStatus": "Disconnected"}
        return {"success": True, "statistics": stats}

    async def _update(request: Request, kind: str):
        body = await request.json()
        reference = str(body.get("referenceNumber", "")).strip()
        status = str(body.get("status", "")).strip()
        notes = str(body.get("notes", "") or "")
        if not reference or not status:
            return JSONResponse(
                {"success": False, "error": "referenceNumber and status are required"},
                status_code=400,
            )
        if kind == "case":
            memory = services.registry.update_case_status(reference, status, notes)
            sheet = await services.sheets.update_case_status(reference, status, notes)
        else:
            memory = services.registry.update_callback_status(reference, status, notes)
            sheet = await services.sheets.update_callback_status(reference, status, notes)
        success = bool(memory.get("success") or sheet.get("success"))
        result = {"success": success, "memory": memory, "sheets": sheet}
        if not success:
            result["error"] = memory.get("error", "not found")
        return result

    @app.post("/admin/update-case")
    async def update_case(request: Request):
        return await _update(request, "case")

    @app.post("/admin/update-callback")
    async def update_callback(request: Request):
        return await _update(request, "callback")

    return app


_settings = Settings.from_env()
logging.basicConfig(
    level=getattr(logging, _settings.log_level, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = create_app(build_services(_settings))


if __name__ == "__main__":
    validate_config()
    port = int(os.getenv("PORT", str(_settings.port)))
    uvicorn.run("hotline.bot:app", host="0.0.0.0", port=port)
