"""Twilio carrier gateway.

Places and ends calls over the Twilio REST API (form-encoded, basic auth),
sends WhatsApp/SMS messages, and renders the TwiML documents the webhooks
return. Rendering is pure; only the REST methods touch the network.
"""

import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode

import httpx
from twilio.twiml.voice_response import Gather, VoiceResponse

from callflow.config import Settings
from callflow.errors import CallPlacementError

logger = logging.getLogger(__name__)

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01/Accounts"

RING_TIMEOUT_SECONDS = 20
STATUS_CALLBACK_EVENTS = ["initiated", "ringing", "answered", "completed"]

# Twilio error codes meaning the call is already over
_ALREADY_ENDED_CODES = {20404, 21220}

NO_INPUT_PROMPT = "I didn't catch that."


def speech_locale(language: str | None, default: str = "en") -> str:
    """Map a campaign language code to a regional speech locale.

    "en" -> "en-IN", "hi" -> "hi-IN"; full locales like "en-US" pass through.
    """
    lang = (language or default or "en").strip()
    if "-" in lang:
        return lang
    return f"{lang.lower()}-IN"


@dataclass
class CallbackContext:
    """Where the carrier should call back for a call we place."""

    campaign_id: str
    contact_id: Optional[str] = None


@dataclass
class DocumentOptions:
    audio_url: Optional[str] = None
    language: Optional[str] = None
    voice: Optional[str] = None
    # Short pauses before speaking so replies don't sound instant
    pacing: bool = False
    thinking_pause: bool = False
    action: Optional[str] = None
    speech_timeout: str = "auto"
    gather_timeout: int = 8
    # Record after a silent gather so the turn can be transcribed from audio
    record_fallback: bool = True


@dataclass
class NotificationResult:
    success: bool
    message_sid: Optional[str] = None
    error: Optional[str] = None


def _speak(verb, content: str, audio_url: Optional[str], voice: str, language: str) -> None:
    if audio_url:
        verb.play(audio_url)
    elif content:
        verb.say(content, voice=voice, language=language)


def render_document(
    kind: str,
    content: str = "",
    options: Optional[DocumentOptions] = None,
    *,
    default_language: str = "en",
    default_voice: str = "alice",
) -> str:
    """Render a TwiML document of kind speak, gather, or hangup."""
    opts = options or DocumentOptions()
    language = speech_locale(opts.language, default_language)
    voice = opts.voice or default_voice
    vr = VoiceResponse()

    if opts.pacing:
        vr.pause(length=1)
        if opts.thinking_pause and kind == "gather":
            vr.pause(length=1)

    if kind == "speak":
        _speak(vr, content, opts.audio_url, voice, language)

    elif kind == "gather":
        gather_kwargs = {
            "input": "speech dtmf",
            "method": "POST",
            "timeout": opts.gather_timeout,
            "speech_timeout": opts.speech_timeout,
            "language": language,
        }
        if opts.action:
            gather_kwargs["action"] = opts.action
        gather = Gather(**gather_kwargs)
        _speak(gather, content, opts.audio_url, voice, language)
        vr.append(gather)

        vr.say(NO_INPUT_PROMPT, voice=voice, language=language)
        if opts.record_fallback and opts.action:
            vr.record(
                action=opts.action,
                method="POST",
                timeout=5,
                max_length=30,
                play_beep=False,
                trim="trim-silence",
            )
        elif opts.action:
            vr.redirect(opts.action, method="POST")

    elif kind == "hangup":
        _speak(vr, content, opts.audio_url, voice, language)
        vr.hangup()

    else:
        raise ValueError(f"Unknown document kind: {kind}")

    return str(vr)


def _apology() -> str:
    vr = VoiceResponse()
    vr.say("Sorry, there was a technical issue. Thank you for your time.", voice="alice", language="en-IN")
    vr.hangup()
    return str(vr)


APOLOGY_DOCUMENT = _apology()


class TwilioGateway:
    """Twilio REST client plus TwiML rendering with per-deployment defaults."""

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self.base_url = f"{TWILIO_API_BASE}/{settings.twilio_account_sid}"
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                auth=(self.settings.twilio_account_sid, self.settings.twilio_auth_token),
                timeout=httpx.Timeout(15.0, connect=5.0),
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()

    def answer_url(self, callback: CallbackContext) -> str:
        params = {"campaignId": callback.campaign_id}
        if callback.contact_id:
            params["contactId"] = callback.contact_id
        return f"{self.settings.public_base_url}/calls/webhook/answer?{urlencode(params)}"

    @property
    def turn_url(self) -> str:
        return f"{self.settings.public_base_url}/calls/webhook/turn"

    @property
    def status_url(self) -> str:
        return f"{self.settings.public_base_url}/calls/webhook/status"

    async def place_call(self, to: str, callback: CallbackContext) -> str:
        """Dial `to` and return the carrier call id.

        Raises CallPlacementError when Twilio rejects the request or is unreachable.
        """
        payload = {
            "From": self.settings.twilio_phone_number,
            "To": to,
            "Url": self.answer_url(callback),
            "Method": "POST",
            "StatusCallback": self.status_url,
            "StatusCallbackEvent": STATUS_CALLBACK_EVENTS,
            "StatusCallbackMethod": "POST",
            "Timeout": str(RING_TIMEOUT_SECONDS),
            "MachineDetection": "Enable",
        }
        try:
            resp = await self._get_client().post(f"{self.base_url}/Calls.json", data=payload)
        except httpx.HTTPError as e:
            logger.error("Twilio call placement to %s failed: %s", to, e)
            raise CallPlacementError(f"Carrier unreachable: {e}") from e

        if resp.status_code >= 400:
            logger.error("Twilio rejected call to %s: %s %s", to, resp.status_code, resp.text[:500])
            raise CallPlacementError(f"Carrier rejected call ({resp.status_code})")

        sid = resp.json().get("sid")
        if not sid:
            raise CallPlacementError("Carrier response missing call sid")
        logger.info("Placed call %s to %s (campaign %s)", sid, to, callback.campaign_id)
        return sid

    async def end_call(self, sid: str) -> bool:
        """Hang up a call. A call that already ended counts as success."""
        try:
            resp = await self._get_client().post(
                f"{self.base_url}/Calls/{sid}.json", data={"Status": "completed"}
            )
        except httpx.HTTPError as e:
            logger.error("Twilio end_call %s failed: %s", sid, e)
            return False

        if resp.status_code < 400:
            return True
        code = None
        try:
            code = resp.json().get("code")
        except ValueError:
            pass
        if resp.status_code == 404 or code in _ALREADY_ENDED_CODES:
            logger.info("Call %s already ended", sid)
            return True
        logger.error("Twilio end_call %s rejected: %s %s", sid, resp.status_code, resp.text[:500])
        return False

    async def send_notification(self, channel: str, to: str, body: str) -> NotificationResult:
        """Send a WhatsApp or SMS message. Failures are returned, not raised."""
        if channel not in ("whatsapp", "sms"):
            return NotificationResult(success=False, error=f"Unsupported channel: {channel}")

        from_number = self.settings.twilio_phone_number
        if channel == "whatsapp":
            from_number = f"whatsapp:{from_number}"
            if not to.startswith("whatsapp:"):
                to = f"whatsapp:{to}"

        try:
            resp = await self._get_client().post(
                f"{self.base_url}/Messages.json",
                data={"From": from_number, "To": to, "Body": body},
            )
        except httpx.HTTPError as e:
            logger.error("Twilio %s message to %s failed: %s", channel, to, e)
            return NotificationResult(success=False, error=str(e))

        if resp.status_code >= 400:
            logger.error("Twilio %s message to %s rejected: %s", channel, to, resp.text[:500])
            return NotificationResult(success=False, error=f"HTTP {resp.status_code}")
        return NotificationResult(success=True, message_sid=resp.json().get("sid"))

    def render(self, kind: str, content: str = "", options: Optional[DocumentOptions] = None) -> str:
        return render_document(
            kind,
            content,
            options,
            default_language=self.settings.default_language,
            default_voice=self.settings.default_voice,
        )
