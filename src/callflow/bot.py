import asyncio
import json
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import FileResponse, PlainTextResponse, Response
from pydantic import BaseModel

from callflow.audio_store import AudioStore
from callflow.carrier import APOLOGY_DOCUMENT, TwilioGateway
from callflow.config import Settings, validate_config
from callflow.errors import CallPlacementError, CampaignNotFound
from callflow.generator import OpenAIGenerator
from callflow.notifier import Notifier, WebhookNotifier, WebSocketHub
from callflow.orchestrator import CallOrchestrator
from callflow.scheduler import DeferredActions
from callflow.storage import InMemoryStorage, load_campaigns
from callflow.transcriber import WhisperTranscriber
from callflow.tts import ElevenLabsTTS

load_dotenv()

logger = logging.getLogger(__name__)


class PlaceCallRequest(BaseModel):
    phone_number: str
    campaign_id: str
    contact_id: Optional[str] = None


def build_orchestrator(settings: Settings, hub: WebSocketHub, scheduler: DeferredActions) -> CallOrchestrator:
    """Wire the orchestrator to its concrete collaborators from settings."""
    storage = InMemoryStorage(load_campaigns(settings.campaigns_file) if settings.campaigns_file else None)
    webhook = None
    if settings.notify_webhook_url:
        webhook = WebhookNotifier(url=settings.notify_webhook_url, secret=settings.notify_webhook_secret)

    generator = transcriber = None
    if settings.openai_api_key:
        generator = OpenAIGenerator(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            summary_model=settings.openai_summary_model,
        )
        transcriber = WhisperTranscriber(
            api_key=settings.openai_api_key,
            recording_auth=(settings.twilio_account_sid, settings.twilio_auth_token),
        )
    else:
        logger.warning("OPENAI_API_KEY not set, replies will use keyword fallback")

    tts = ElevenLabsTTS(api_key=settings.elevenlabs_api_key) if settings.elevenlabs_api_key else None

    return CallOrchestrator(
        settings=settings,
        storage=storage,
        gateway=TwilioGateway(settings),
        generator=generator,
        notifier=Notifier(hub=hub, webhook=webhook),
        transcriber=transcriber,
        tts=tts,
        audio_store=AudioStore(
            settings.audio_dir,
            settings.public_base_url,
            scheduler,
            ttl_seconds=settings.audio_ttl_seconds,
        ),
    )


async def _reaper_loop(orchestrator: CallOrchestrator, interval: float, max_idle: float) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            reaped = await orchestrator.reap_idle_sessions(max_idle)
            if reaped:
                logger.info("Reaped %d idle calls: %s", len(reaped), ", ".join(reaped))
        except Exception as e:
            logger.error("Idle session sweep failed: %r", e)


async def _close_clients(orchestrator: CallOrchestrator) -> None:
    for client in (orchestrator.gateway, orchestrator.generator, orchestrator.transcriber, orchestrator.tts):
        if client is not None:
            await client.aclose()


def create_app(
    settings: Optional[Settings] = None,
    orchestrator: Optional[CallOrchestrator] = None,
    hub: Optional[WebSocketHub] = None,
    scheduler: Optional[DeferredActions] = None,
) -> FastAPI:
    """Build the app. Run it with `uvicorn --factory callflow.bot:create_app`."""
    if settings is None:
        validate_config()
        settings = Settings.from_env()
    hub = hub or WebSocketHub()
    scheduler = scheduler or DeferredActions()
    orchestrator = orchestrator or build_orchestrator(settings, hub, scheduler)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        reaper = asyncio.create_task(_reaper_loop(
            orchestrator,
            settings.reaper_interval_seconds,
            settings.idle_session_timeout_seconds,
        ))
        yield
        reaper.cancel()
        await orchestrator.drain()
        await scheduler.flush()
        await _close_clients(orchestrator)

    app = FastAPI(title="Callflow Voice Agent", lifespan=lifespan)
    app.state.orchestrator = orchestrator
    app.state.hub = hub

    @app.get("/health")
    async def health():
        return PlainTextResponse("ok")

    @app.post("/calls/webhook/answer")
    async def answer_webhook(request: Request):
        form = await request.form()
        call_sid = form.get("CallSid", "")
        try:
            xml = await orchestrator.answer(
                call_sid,
                campaign_id=request.query_params.get("campaignId"),
                contact_id=request.query_params.get("contactId"),
                phone_number=form.get("To", ""),
            )
        except Exception:
            logger.exception("Answer webhook failed for %s", call_sid)
            xml = APOLOGY_DOCUMENT
        return Response(content=xml, media_type="application/xml")

    @app.post("/calls/webhook/turn")
    async def turn_webhook(request: Request):
        form = await request.form()
        call_sid = form.get("CallSid", "")
        try:
            xml = await orchestrator.turn(
                call_sid,
                speech_result=form.get("SpeechResult"),
                unstable_result=form.get("UnstableSpeechResult"),
                digits=form.get("Digits"),
                recording_url=form.get("RecordingUrl"),
            )
        except Exception:
            logger.exception("Turn webhook failed for %s", call_sid)
            xml = APOLOGY_DOCUMENT
        return Response(content=xml, media_type="application/xml")

    @app.post("/calls/webhook/status")
    async def status_webhook(request: Request):
        """Always 200: Twilio retries and alerts on anything else."""
        try:
            form = await request.form()
            raw_duration = form.get("CallDuration")
            duration = int(raw_duration) if raw_duration and str(raw_duration).isdigit() else None
            await orchestrator.status(form.get("CallSid", ""), form.get("CallStatus", ""), duration)
        except Exception:
            logger.exception("Status webhook failed")
        return PlainTextResponse("OK")

    @app.post("/calls")
    async def place_call(body: PlaceCallRequest):
        try:
            call_sid = await orchestrator.place_call(body.phone_number, body.campaign_id, body.contact_id)
        except CampaignNotFound as e:
            raise HTTPException(status_code=404, detail=str(e))
        except CallPlacementError as e:
            raise HTTPException(status_code=502, detail=str(e))
        return {"call_sid": call_sid, "status": "initiated"}

    @app.get("/calls/active")
    async def active_calls():
        return {"calls": orchestrator.list_active()}

    @app.get("/audio/{filename}")
    async def serve_audio(filename: str):
        store = orchestrator.audio_store
        path = store.path_for(filename) if store else None
        if path is None:
            raise HTTPException(status_code=404, detail="Audio not found")
        return FileResponse(path, media_type="audio/mpeg")

    @app.websocket("/ws")
    async def events_websocket(websocket: WebSocket):
        await hub.connect(websocket)
        try:
            while True:
                data = await websocket.receive_text()
                try:
                    msg = json.loads(data)
                except json.JSONDecodeError:
                    await websocket.send_json({"type": "error", "message": "Invalid JSON"})
                    continue
                if msg.get("type") == "ping":
                    await websocket.send_json({"type": "pong"})
        except WebSocketDisconnect:
            pass
        finally:
            await hub.disconnect(websocket)

    return app


if __name__ == "__main__":
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    port = int(os.getenv("PORT", "8765"))
    uvicorn.run("callflow.bot:create_app", factory=True, host="0.0.0.0", port=port)
