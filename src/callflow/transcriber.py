import logging
from typing import Optional

import httpx

from callflow.errors import TranscriptionError

logger = logging.getLogger(__name__)

OPENAI_TRANSCRIPTION_URL = "https://api.openai.com/v1/audio/transcriptions"


class WhisperTranscriber:
    """Download a carrier recording and transcribe it with OpenAI Whisper.

    Used when the carrier's own recognizer returned nothing for a turn.
    """

    def __init__(
        self,
        *,
        api_key: str,
        recording_auth: Optional[tuple[str, str]] = None,
        model: str = "whisper-1",
        timeout: float = 20.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.recording_auth = recording_auth
        self.model = model
        self.timeout = timeout
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout, follow_redirects=True)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()

    async def _download(self, recording_url: str) -> bytes:
        # Twilio serves the recording as mp3 when the extension is given
        url = recording_url if recording_url.endswith((".mp3", ".wav")) else f"{recording_url}.mp3"
        try:
            resp = await self._get_client().get(url, auth=self.recording_auth)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise TranscriptionError(f"Recording download failed: {e}") from e
        if not resp.content:
            raise TranscriptionError("Recording was empty")
        return resp.content

    async def transcribe(self, recording_url: str, language: Optional[str] = None) -> str:
        """Return the recognized text (may be empty). Raises TranscriptionError."""
        if not self.api_key:
            raise TranscriptionError("OpenAI API key not configured")

        audio = await self._download(recording_url)
        data = {"model": self.model}
        if language:
            # Whisper wants ISO-639-1, not a regional locale
            data["language"] = language.split("-")[0].lower()

        try:
            resp = await self._get_client().post(
                OPENAI_TRANSCRIPTION_URL,
                headers={"Authorization": f"Bearer {self.api_key}"},
                data=data,
                files={"file": ("recording.mp3", audio, "audio/mpeg")},
            )
            resp.raise_for_status()
            text = resp.json().get("text", "")
        except (httpx.HTTPError, ValueError) as e:
            raise TranscriptionError(f"Whisper transcription failed: {e}") from e

        logger.info("Whisper transcribed %d bytes: %r", len(audio), text)
        return (text or "").strip()
