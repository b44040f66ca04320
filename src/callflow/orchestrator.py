"""Call lifecycle state machine.

Drives one outbound call from placement through answer, conversational turns
and carrier status callbacks to a single finalization. Every webhook for a
call goes through here; sessions live in the SessionRegistry and durable
records in Storage.

Per-call locking: the registry lock for a call is held only for in-memory
reads and writes. Generator, TTS, carrier and storage calls happen with the
lock released, and turn commits are re-ordered by ticket so the history
matches the order the carrier delivered the turns.
"""

import asyncio
import logging
import time
from collections import OrderedDict
from typing import Callable, Optional

from callflow.audio_store import AudioStore
from callflow.carrier import APOLOGY_DOCUMENT, CallbackContext, DocumentOptions, TwilioGateway
from callflow.config import Settings
from callflow.errors import CampaignNotFound, GeneratorUnavailable, TranscriptionError
from callflow.fallback import fallback_reply, fallback_score, fallback_summary
from callflow.generator import GeneratorReply, OpenAIGenerator
from callflow.notifier import Notifier, NullNotifier
from callflow.post_call import (
    build_call_ended_event,
    build_call_update,
    build_contact_update,
    end_reason_for_status,
    end_reason_for_turn,
    is_conversation_over,
    log_transcript_dump,
    merge_notes,
)
from callflow.prompts import get_system_prompt
from callflow.registry import SessionRegistry
from callflow.session import CallSession
from callflow.speech import is_termination_intent, reconcile
from callflow.states import (
    CARRIER_ACTIVE_STATUSES,
    CARRIER_TERMINAL_STATUSES,
    TERMINAL_CALL_STATUSES,
    CallState,
    next_phase,
)
from callflow.storage import Campaign, Storage
from callflow.transcriber import WhisperTranscriber
from callflow.tts import ElevenLabsTTS
from callflow.validation import format_whatsapp_number

logger = logging.getLogger(__name__)

REPROMPT = "I'm here. Please speak when you're ready."
GOODBYE = "I understand. Thank you for your time. Have a great day!"
CALL_OVER = "Thank you for your time. Goodbye."
DEFAULT_WHATSAPP_MESSAGE = (
    "Hi! Thanks for speaking with us about {campaign}. "
    "As promised, here are the details. Reply here if you have any questions."
)
# Carrier ids of recently finalized calls kept to turn away late webhooks
FINALIZED_MEMORY = 1000


class CallOrchestrator:
    def __init__(
        self,
        *,
        settings: Settings,
        storage: Storage,
        gateway: TwilioGateway,
        generator: Optional[OpenAIGenerator] = None,
        registry: Optional[SessionRegistry] = None,
        notifier: Optional[Notifier] = None,
        transcriber: Optional[WhisperTranscriber] = None,
        tts: Optional[ElevenLabsTTS] = None,
        audio_store: Optional[AudioStore] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.storage = storage
        self.gateway = gateway
        self.generator = generator
        self.registry = registry or SessionRegistry()
        self.notifier = notifier or NullNotifier()
        self.transcriber = transcriber
        self.tts = tts
        self.audio_store = audio_store
        self.clock = clock

        # Calls whose post-call work is running; their Call row is ours to close
        self._finalizing: set[str] = set()
        self._finalized: OrderedDict[str, None] = OrderedDict()
        self._tasks: set[asyncio.Task] = set()

    # ── Helpers ───────────────────────────────────────────

    async def _persist(self, label: str, call_sid: str, coro):
        """Await a storage call; on failure log, broadcast call_error, return None."""
        try:
            return await coro
        except Exception as e:
            logger.error("%s failed for %s: %s", label, call_sid, e)
            self.notifier.broadcast("call_error", {
                "call_sid": call_sid,
                "operation": label,
                "error": str(e),
            })
            return None

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Background call task failed: %r", task.exception())

    async def drain(self) -> None:
        """Wait for background finalizations to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _render(self, kind: str, content: str = "", options: Optional[DocumentOptions] = None) -> str:
        try:
            return self.gateway.render(kind, content, options)
        except Exception as e:
            logger.error("Rendering %s document failed: %s", kind, e)
            return APOLOGY_DOCUMENT

    def _options(self, campaign: Optional[Campaign], audio_url: Optional[str] = None) -> DocumentOptions:
        return DocumentOptions(
            audio_url=audio_url,
            language=campaign.language if campaign else None,
            pacing=bool(audio_url),
            thinking_pause=bool(audio_url),
            action=self.gateway.turn_url,
        )

    async def _speech_url(self, campaign: Optional[Campaign], text: str, call_sid: str, prefix: str) -> Optional[str]:
        """Synthesize `text` with the campaign voice; None means use <Say>."""
        if not (self.tts and self.audio_store and campaign and campaign.voice_id and text):
            return None
        audio = await self.tts.synthesize(
            text,
            campaign.voice_id,
            voice_config=campaign.voice_config,
            model=campaign.tts_model,
            language=campaign.language,
        )
        if not audio:
            return None
        try:
            return await self.audio_store.save(audio, call_sid, prefix=prefix)
        except OSError as e:
            logger.warning("Could not store audio for %s: %s", call_sid, e)
            return None

    async def _get_campaign(self, campaign_id: str, call_sid: str) -> Optional[Campaign]:
        return await self._persist("get_campaign", call_sid, self.storage.get_campaign(campaign_id))

    def _remember_finalized(self, call_sid: str) -> None:
        self._finalized[call_sid] = None
        self._finalized.move_to_end(call_sid)
        while len(self._finalized) > FINALIZED_MEMORY:
            self._finalized.popitem(last=False)

    def _is_finished(self, call_sid: str) -> bool:
        return call_sid in self._finalizing or call_sid in self._finalized

    async def _claim(self, call_sid: str, max_idle: Optional[float] = None) -> Optional[CallSession]:
        """Remove the session so that exactly one caller finalizes it."""
        async with self.registry.hold(call_sid) as session:
            if session is None:
                return None
            if max_idle is not None and self.clock() - session.last_activity <= max_idle:
                return None
            self.registry.pop_locked(call_sid)
            session.state = CallState.FINALIZING
            self._finalizing.add(call_sid)
            return session

    async def _reconstruct(
        self,
        call_sid: str,
        campaign_id: Optional[str] = None,
        contact_id: Optional[str] = None,
        phone_number: str = "",
    ) -> Optional[CallSession]:
        """Rebuild a session the registry lost (restart) or never saw (early callback)."""
        if self._is_finished(call_sid):
            return None
        call = await self._persist("get_call_by_carrier_id", call_sid, self.storage.get_call_by_carrier_id(call_sid))
        if call is not None:
            if call.status in TERMINAL_CALL_STATUSES:
                return None
            logger.info("Rebuilt session for %s from its Call record", call_sid)
            return CallSession(
                carrier_call_id=call_sid,
                campaign_id=call.campaign_id,
                phone_number=call.phone_number,
                contact_id=call.contact_id,
                call_record_id=call.id,
                started_at=call.started_at,
                last_activity=self.clock(),
            )

        if not campaign_id:
            return None
        campaign = await self._get_campaign(campaign_id, call_sid)
        if campaign is None:
            return None

        logger.info("Rebuilt session for %s from campaign %s", call_sid, campaign_id)
        session = CallSession(
            carrier_call_id=call_sid,
            campaign_id=campaign_id,
            phone_number=phone_number,
            contact_id=contact_id,
            started_at=self.clock(),
            last_activity=self.clock(),
        )
        call = await self._persist("create_call", call_sid, self.storage.create_call(
            call_sid,
            campaign_id,
            contact_id=contact_id,
            phone_number=phone_number,
            status="initiated",
            started_at=session.started_at,
        ))
        if call is not None:
            session.call_record_id = call.id
        return session

    async def _live_session(self, call_sid: str, **context) -> Optional[CallSession]:
        session = self.registry.get(call_sid)
        if session is not None:
            return session
        session = await self._reconstruct(call_sid, **context)
        if session is None or self._is_finished(call_sid):
            return None
        return await self.registry.put_if_absent(call_sid, session)

    # ── Placement ─────────────────────────────────────────

    async def place_call(self, phone_number: str, campaign_id: str, contact_id: Optional[str] = None) -> str:
        """Dial a contact for a campaign and start tracking the call.

        Raises CampaignNotFound, or CallPlacementError when the carrier refuses;
        in both cases no session or Call record is created.
        """
        campaign = await self.storage.get_campaign(campaign_id)
        if campaign is None:
            raise CampaignNotFound(campaign_id)

        contact = None
        if contact_id:
            contact = await self._persist("get_contact", phone_number, self.storage.get_contact(contact_id))
        if contact is None:
            contact = await self._persist("get_contact_by_phone", phone_number, self.storage.get_contact_by_phone(phone_number))
        if contact is None:
            contact = await self._persist("create_contact", phone_number, self.storage.create_contact(
                phone_number, name=f"Direct Call {phone_number}",
            ))
        resolved_contact_id = contact.id if contact else None

        call_sid = await self.gateway.place_call(phone_number, CallbackContext(campaign_id, resolved_contact_id))

        session = CallSession(
            carrier_call_id=call_sid,
            campaign_id=campaign_id,
            phone_number=phone_number,
            contact_id=resolved_contact_id,
            state=CallState.RINGING,
            started_at=self.clock(),
            last_activity=self.clock(),
        )
        # Registered before the Call row exists: the answer webhook can beat us here
        session = await self.registry.put_if_absent(call_sid, session)

        call = await self._persist("create_call", call_sid, self.storage.create_call(
            call_sid,
            campaign_id,
            contact_id=resolved_contact_id,
            phone_number=phone_number,
            status="initiated",
            started_at=session.started_at,
        ))
        if call is not None:
            async with self.registry.hold(call_sid) as live:
                # An answer that beat the Call row could not record itself
                answered_early = (
                    live is not None and live.state == CallState.ACTIVE and live.call_record_id is None
                )
                if live is not None and live.call_record_id is None:
                    live.call_record_id = call.id
            if answered_early:
                await self._persist("update_call", call_sid, self.storage.update_call(call.id, {"status": "active"}))
                await self._persist("create_call_message", call_sid, self.storage.create_call_message(
                    call.id, "assistant", campaign.intro_line, turn=0,
                ))

        logger.info("Call %s initiated to %s for campaign %s", call_sid, phone_number, campaign_id)
        self.notifier.broadcast("call_initiated", {
            "call_sid": call_sid,
            "call_id": call.id if call else None,
            "campaign_id": campaign_id,
            "contact_id": resolved_contact_id,
            "phone_number": phone_number,
        })
        return call_sid

    # ── Answer ────────────────────────────────────────────

    async def answer(
        self,
        call_sid: str,
        campaign_id: Optional[str] = None,
        contact_id: Optional[str] = None,
        phone_number: str = "",
    ) -> str:
        """Return the opening document for an answered call."""
        session = await self._live_session(
            call_sid, campaign_id=campaign_id, contact_id=contact_id, phone_number=phone_number,
        )
        if session is None:
            logger.warning("Answer for unknown call %s (campaign %s)", call_sid, campaign_id)
            return APOLOGY_DOCUMENT

        campaign = await self._get_campaign(session.campaign_id, call_sid)
        if campaign is None:
            logger.error("Campaign %s missing for answered call %s", session.campaign_id, call_sid)
            return APOLOGY_DOCUMENT

        async with self.registry.hold(call_sid) as live:
            if live is None:
                return self._render("hangup", CALL_OVER, self._options(campaign))
            first_answer = live.state != CallState.ACTIVE
            live.state = CallState.ACTIVE
            live.touch(self.clock())
            call_record_id = live.call_record_id

        intro = campaign.intro_line
        if first_answer and call_record_id:
            await self._persist("update_call", call_sid, self.storage.update_call(call_record_id, {"status": "active"}))
            await self._persist("create_call_message", call_sid,
                                self.storage.create_call_message(call_record_id, "assistant", intro, turn=0))
        if first_answer:
            self.notifier.broadcast("call_answered", {"call_sid": call_sid, "campaign_id": campaign.id})

        audio_url = await self._speech_url(campaign, intro, call_sid, prefix="intro")
        return self._render("gather", intro, self._options(campaign, audio_url))

    # ── Turns ─────────────────────────────────────────────

    async def _generate(self, system_prompt: str, history: list[dict], utterance: str,
                        phase, extracted: dict) -> GeneratorReply:
        if self.generator is None:
            return fallback_reply(utterance, phase, extracted)
        try:
            return await self.generator.generate(system_prompt, history, utterance)
        except GeneratorUnavailable as e:
            logger.warning("Generator unavailable (%s), using fallback reply", e)
            return fallback_reply(utterance, phase, extracted, transient=e.transient)
        except Exception as e:
            logger.error("Generator error, using fallback reply: %r", e)
            return fallback_reply(utterance, phase, extracted, transient=False)

    async def turn(
        self,
        call_sid: str,
        speech_result: Optional[str] = None,
        unstable_result: Optional[str] = None,
        digits: Optional[str] = None,
        recording_url: Optional[str] = None,
    ) -> str:
        """Handle one caller utterance and return the next document."""
        session = await self._live_session(call_sid)
        if session is None:
            logger.warning("Turn for unknown or finished call %s", call_sid)
            return self._render("hangup", CALL_OVER)

        campaign = await self._get_campaign(session.campaign_id, call_sid)
        utterance = reconcile(speech_result, unstable_result, digits)

        if not utterance and recording_url and self.transcriber is not None:
            try:
                utterance = await self.transcriber.transcribe(
                    recording_url, language=campaign.language if campaign else None,
                )
            except TranscriptionError as e:
                logger.warning("Transcription failed for %s: %s", call_sid, e)

        if not utterance:
            async with self.registry.hold(call_sid) as live:
                if live is not None:
                    live.touch(self.clock())
            return self._render("gather", REPROMPT, self._options(campaign))

        async with self.registry.hold(call_sid) as live:
            if live is None:
                return self._render("hangup", CALL_OVER, self._options(campaign))
            live.state = CallState.ACTIVE
            ticket = live.take_ticket()
            live.touch(self.clock())
            history = live.history_snapshot()
            phase = live.phase
            extracted_before = dict(live.extracted_data)
            system_prompt = get_system_prompt(campaign, live)

        termination_intent = is_termination_intent(utterance)
        committed = False
        try:
            if termination_intent:
                logger.info("Caller on %s asked to end the call: %r", call_sid, utterance)
                reply = GeneratorReply(message=GOODBYE, should_end_call=True)
            else:
                reply = await self._generate(system_prompt, history, utterance, phase, extracted_before)

            async with self.registry.hold(call_sid, ticket) as live:
                try:
                    if live is None:
                        # Finalized while we were generating
                        return self._render("hangup", reply.message, self._options(campaign))
                    live.append_turn(utterance, reply.message, self.clock())
                    live.merge_extracted(reply.extracted_data)
                    live.phase = next_phase(live.extracted_data, live.turn_count)
                    extracted = dict(live.extracted_data)
                    call_record_id = live.call_record_id
                    contact_id = live.contact_id
                    turn_count = live.turn_count

                    whatsapp_number = extracted.get("whatsapp_number")
                    send_whatsapp = bool(whatsapp_number) and not live.whatsapp_sent
                    if send_whatsapp:
                        live.whatsapp_sent = True

                    ending = is_conversation_over(reply.should_end_call, termination_intent, extracted)
                    finishing = None
                    if ending:
                        finishing = self.registry.pop_locked(call_sid)
                        finishing.state = CallState.FINALIZING
                        self._finalizing.add(call_sid)
                finally:
                    if live is not None:
                        live.commit_ticket(ticket)
                    committed = True
        finally:
            if not committed:
                async with self.registry.hold(call_sid, ticket) as live:
                    if live is not None:
                        live.commit_ticket(ticket)

        if call_record_id:
            await self._persist("create_call_message", call_sid,
                                self.storage.create_call_message(call_record_id, "user", utterance, turn=turn_count))
            await self._persist("create_call_message", call_sid,
                                self.storage.create_call_message(call_record_id, "assistant", reply.message,
                                                                turn=turn_count))
            await self._persist("update_call", call_sid,
                                self.storage.update_call(call_record_id, {"collected_data": extracted}))

        new_contact_info = {k: reply.extracted_data[k] for k in ("whatsapp_number", "email") if reply.extracted_data.get(k)}
        if new_contact_info and contact_id:
            await self._persist("update_contact", call_sid, self.storage.update_contact(contact_id, new_contact_info))

        if send_whatsapp:
            await self._send_whatsapp(call_sid, call_record_id, campaign, whatsapp_number)

        self.notifier.broadcast("call_turn", {
            "call_sid": call_sid,
            "turn": turn_count,
            "user": utterance,
            "assistant": reply.message,
            "collected_data": extracted,
        })

        if finishing is not None:
            end_reason = end_reason_for_turn(reply.should_end_call, termination_intent, extracted)
            logger.info("Ending call %s: %s", call_sid, end_reason)
            # The hangup document ends the carrier leg; post-call work runs in the background
            self._spawn(self._finish(finishing, "completed", end_reason=end_reason))
            audio_url = await self._speech_url(campaign, reply.message, call_sid, prefix="bye")
            return self._render("hangup", reply.message, self._options(campaign, audio_url))

        audio_url = await self._speech_url(campaign, reply.message, call_sid, prefix="reply")
        return self._render("gather", reply.message, self._options(campaign, audio_url))

    async def _send_whatsapp(self, call_sid: str, call_record_id: Optional[str],
                             campaign: Optional[Campaign], number: str) -> None:
        template = (campaign.whatsapp_message if campaign else None) or DEFAULT_WHATSAPP_MESSAGE
        body = template.replace("{campaign}", campaign.name if campaign else "our offer")
        to = format_whatsapp_number(number, self.settings.default_country_code)

        result = await self.gateway.send_notification("whatsapp", to, body)
        if not result.success:
            logger.warning("WhatsApp to %s failed for %s: %s", to, call_sid, result.error)
            return
        logger.info("WhatsApp sent to %s for %s (%s)", to, call_sid, result.message_sid)
        if call_record_id:
            await self._persist("update_call", call_sid,
                                self.storage.update_call(call_record_id, {"whatsapp_sent": True}))
        self.notifier.broadcast("whatsapp_sent", {"call_sid": call_sid, "to": to, "message_sid": result.message_sid})

    # ── Carrier status ────────────────────────────────────

    async def status(self, call_sid: str, carrier_status: str, duration_seconds: Optional[int] = None) -> None:
        """React to a carrier status callback. Never raises."""
        carrier_status = (carrier_status or "").strip().lower()
        try:
            if carrier_status in CARRIER_TERMINAL_STATUSES:
                await self.finalize(
                    call_sid,
                    status=CARRIER_TERMINAL_STATUSES[carrier_status],
                    duration_seconds=duration_seconds,
                    end_reason=end_reason_for_status(carrier_status),
                )
            elif carrier_status in CARRIER_ACTIVE_STATUSES:
                await self._mark_active(call_sid)
            else:
                logger.debug("Call %s status %s", call_sid, carrier_status)
            self.notifier.broadcast("call_status", {"call_sid": call_sid, "status": carrier_status})
        except Exception as e:
            logger.error("Status %s for %s failed: %r", carrier_status, call_sid, e)

    async def _mark_active(self, call_sid: str) -> None:
        async with self.registry.hold(call_sid) as live:
            call_record_id = None
            if live is not None:
                live.state = CallState.ACTIVE
                call_record_id = live.call_record_id
        if call_record_id is None:
            call = await self._persist("get_call_by_carrier_id", call_sid,
                                       self.storage.get_call_by_carrier_id(call_sid))
            call_record_id = call.id if call else None
        if call_record_id:
            await self._persist("update_call", call_sid,
                                self.storage.update_call(call_record_id, {"status": "active"}))

    # ── Finalization ──────────────────────────────────────

    async def finalize(
        self,
        call_sid: str,
        status: str = "completed",
        duration_seconds: Optional[int] = None,
        end_reason: Optional[str] = None,
        end_carrier_call: bool = False,
    ) -> bool:
        """Finalize a call once. Returns False when there was nothing left to do."""
        session = await self._claim(call_sid)
        if session is None:
            self._remember_finalized(call_sid)
            await self._close_orphan_call(call_sid, status, duration_seconds, end_reason)
            return False
        await self._finish(session, status, duration_seconds, end_reason, end_carrier_call)
        return True

    async def _close_orphan_call(self, call_sid: str, status: str, duration_seconds: Optional[int],
                                 end_reason: Optional[str]) -> None:
        """No live session: only move a non-terminal Call row to its terminal status."""
        if call_sid in self._finalizing:
            return
        call = await self._persist("get_call_by_carrier_id", call_sid, self.storage.get_call_by_carrier_id(call_sid))
        if call is None or call.status in TERMINAL_CALL_STATUSES:
            return
        update = {"status": status, "ended_at": self.clock(), "end_reason": end_reason or status}
        if duration_seconds is not None:
            update["duration"] = int(duration_seconds)
        await self._persist("update_call", call_sid, self.storage.update_call(call.id, update))
        logger.info("Closed call %s without a live session: %s", call_sid, status)

    async def _summarize(self, history: list[dict]) -> str:
        if self.generator is None:
            return fallback_summary(transient=False)
        try:
            return await self.generator.summarize(history)
        except GeneratorUnavailable as e:
            logger.warning("Summary unavailable: %s", e)
            return fallback_summary(e.transient)
        except Exception as e:
            logger.error("Summary failed: %r", e)
            return fallback_summary(transient=False)

    async def _score(self, extracted: dict, objectives: str) -> int:
        if self.generator is None:
            return fallback_score(transient=False)
        try:
            return await self.generator.score(extracted, objectives)
        except GeneratorUnavailable as e:
            logger.warning("Score unavailable: %s", e)
            return fallback_score(e.transient)
        except Exception as e:
            logger.error("Scoring failed: %r", e)
            return fallback_score(transient=False)

    async def _finish(
        self,
        session: CallSession,
        status: str,
        duration_seconds: Optional[int] = None,
        end_reason: Optional[str] = None,
        end_carrier_call: bool = False,
    ) -> None:
        call_sid = session.carrier_call_id
        try:
            end_time = self.clock()
            campaign = await self._get_campaign(session.campaign_id, call_sid)

            if session.conversation_history:
                summary = await self._summarize(session.conversation_history)
                score = await self._score(session.extracted_data, campaign.ai_prompt if campaign else "")
            else:
                # Nothing was said: no summary, score 0
                summary, score = None, 0

            update = build_call_update(
                session, status, end_time,
                summary=summary,
                score=score,
                end_reason=end_reason or status,
                carrier_duration=duration_seconds,
            )

            call_record_id = session.call_record_id
            if call_record_id is None:
                call = await self._persist("get_call_by_carrier_id", call_sid,
                                           self.storage.get_call_by_carrier_id(call_sid))
                call_record_id = call.id if call else None
            if call_record_id:
                await self._persist("update_call", call_sid, self.storage.update_call(call_record_id, update))

            await self._merge_contact(session, call_record_id)

            if end_carrier_call:
                await self.gateway.end_call(call_sid)

            log_transcript_dump(session, status, end_time)
            session.state = CallState.CLOSED
            logger.info("Call %s finalized: status=%s reason=%s score=%s",
                        call_sid, status, update["end_reason"], score)
            self.notifier.broadcast("call_ended", build_call_ended_event(session, update))
        finally:
            self._remember_finalized(call_sid)
            self._finalizing.discard(call_sid)

    async def _merge_contact(self, session: CallSession, call_record_id: Optional[str]) -> None:
        call_sid = session.carrier_call_id
        values = build_contact_update(session.extracted_data)
        if not values:
            return

        if session.contact_id:
            existing = await self._persist("get_contact", call_sid, self.storage.get_contact(session.contact_id))
            if existing is not None and "notes" in values:
                values["notes"] = merge_notes(existing.notes, values["notes"])
            await self._persist("update_contact", call_sid, self.storage.update_contact(session.contact_id, values))
            return

        if values.get("name") and session.phone_number:
            contact = await self._persist("create_contact", call_sid,
                                          self.storage.create_contact(session.phone_number, **values))
            if contact is not None and call_record_id:
                await self._persist("update_call", call_sid,
                                    self.storage.update_call(call_record_id, {"contact_id": contact.id}))

    # ── Idle reaper ───────────────────────────────────────

    async def reap_idle_sessions(self, max_idle_seconds: float) -> list[str]:
        """Finalize sessions with no activity for longer than `max_idle_seconds`."""
        now = self.clock()
        candidates = [
            s.carrier_call_id for s in self.registry.list_active()
            if now - s.last_activity > max_idle_seconds
        ]
        reaped = []
        for call_sid in candidates:
            session = await self._claim(call_sid, max_idle=max_idle_seconds)
            if session is None:
                continue
            status = "completed" if session.turn_count > 0 else "failed"
            logger.warning("Reaping idle call %s (idle %.0fs)", call_sid, now - session.last_activity)
            await self._finish(session, status, end_reason="idle_timeout", end_carrier_call=True)
            reaped.append(call_sid)
        return reaped

    def list_active(self) -> list[dict]:
        return [
            {
                "call_sid": s.carrier_call_id,
                "call_id": s.call_record_id,
                "campaign_id": s.campaign_id,
                "contact_id": s.contact_id,
                "phone_number": s.phone_number,
                "state": s.state.value,
                "phase": s.phase.value,
                "turn_count": s.turn_count,
                "started_at": s.started_at,
                "last_activity": s.last_activity,
                "collected_data": dict(s.extracted_data),
            }
            for s in self.registry.list_active()
        ]
