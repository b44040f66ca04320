"""ElevenLabs text-to-speech with a circuit breaker.

Synthesis is best-effort: any failure returns None and the caller falls back
to the carrier's built-in <Say> voice.
"""

import logging
from typing import Optional

import httpx

from callflow.circuit_breaker import CircuitBreaker

logger = logging.getLogger(__name__)

ELEVENLABS_TTS_URL = "https://api.elevenlabs.io/v1/text-to-speech/{voice_id}"

DEFAULT_VOICE_SETTINGS = {
    "stability": 0.5,
    "similarity_boost": 0.75,
    "style": 0.0,
    "use_speaker_boost": True,
}


class ElevenLabsTTS:
    def __init__(
        self,
        *,
        api_key: str,
        timeout: float = 8.0,
        failure_threshold: int = 3,
        cooldown_seconds: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.timeout = timeout
        self._client = client
        self._circuit = CircuitBreaker(
            failure_threshold=failure_threshold,
            cooldown_seconds=cooldown_seconds,
            label="ElevenLabs",
        )

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()

    @staticmethod
    def voice_settings(voice_config: Optional[dict]) -> dict:
        settings = dict(DEFAULT_VOICE_SETTINGS)
        for key in settings:
            value = (voice_config or {}).get(key)
            if value is not None:
                settings[key] = value
        return settings

    async def synthesize(
        self,
        text: str,
        voice_id: Optional[str],
        *,
        voice_config: Optional[dict] = None,
        model: str = "eleven_turbo_v2",
        language: Optional[str] = None,
    ) -> Optional[bytes]:
        if not text or not voice_id or not self.api_key:
            return None
        if not self._circuit.should_try():
            logger.info("ElevenLabs circuit open, using carrier voice")
            return None

        payload = {
            "text": text,
            "model_id": model,
            "voice_settings": self.voice_settings(voice_config),
        }
        if language and model.startswith(("eleven_turbo_v2_5", "eleven_flash")):
            payload["language_code"] = language.split("-")[0]

        try:
            resp = await self._get_client().post(
                ELEVENLABS_TTS_URL.format(voice_id=voice_id),
                json=payload,
                headers={"xi-api-key": self.api_key, "Accept": "audio/mpeg"},
            )
            resp.raise_for_status()
        except httpx.HTTPError as e:
            self._circuit.record_failure()
            logger.warning("ElevenLabs synthesis failed for voice %s: %s", voice_id, e)
            return None

        if not resp.content:
            self._circuit.record_failure()
            logger.warning("ElevenLabs returned empty audio for voice %s", voice_id)
            return None

        self._circuit.record_success()
        return resp.content
