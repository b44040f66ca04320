"""Response generator backed by OpenAI chat completions.

Every failure surfaces as GeneratorUnavailable; the orchestrator decides what
to say instead. A circuit breaker skips the provider after repeated failures.
"""

import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Optional

import httpx

from callflow.circuit_breaker import CircuitBreaker
from callflow.errors import GeneratorUnavailable
from callflow.prompts import SCORE_PROMPT, SUMMARY_PROMPT
from callflow.transcript import to_plain_text
from callflow.validation import sanitize_extracted

logger = logging.getLogger(__name__)

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"


@dataclass
class GeneratorReply:
    message: str
    should_end_call: bool = False
    extracted_data: dict = field(default_factory=dict)
    response_time_ms: int = 0


class OpenAIGenerator:
    def __init__(
        self,
        *,
        api_key: str,
        model: str = "gpt-4o-mini",
        summary_model: str = "gpt-4o",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.summary_model = summary_model
        self.timeout = timeout
        self._client = client
        self._circuit = CircuitBreaker(label="openai")

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()

    async def _complete(self, payload: dict, label: str) -> str:
        """POST a chat completion and return the first choice's content."""
        if not self.api_key:
            raise GeneratorUnavailable("OpenAI API key not configured")
        if not self._circuit.should_try():
            raise GeneratorUnavailable("OpenAI circuit open", transient=True)

        try:
            resp = await self._get_client().post(
                OPENAI_CHAT_URL,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        except httpx.HTTPError as e:
            self._circuit.record_failure()
            logger.warning("%s request failed: %s", label, e)
            raise GeneratorUnavailable(f"{label} request failed: {e}", transient=True) from e

        if resp.status_code >= 400:
            self._circuit.record_failure()
            transient = resp.status_code == 429 or resp.status_code >= 500
            logger.warning("%s returned %s: %s", label, resp.status_code, resp.text[:300])
            raise GeneratorUnavailable(f"{label} returned {resp.status_code}", transient=transient)

        try:
            content = resp.json()["choices"][0]["message"]["content"] or ""
        except (ValueError, KeyError, IndexError, TypeError) as e:
            self._circuit.record_failure()
            raise GeneratorUnavailable(f"{label} returned an unexpected body") from e

        self._circuit.record_success()
        return content

    async def generate(self, system_prompt: str, history: list[dict], user_input: str) -> GeneratorReply:
        """Produce the next agent line for `user_input` given the prior history."""
        start = time.monotonic()
        messages = [{"role": "system", "content": system_prompt}]
        messages.extend({"role": m["role"], "content": m["content"]} for m in history)
        messages.append({"role": "user", "content": user_input})

        content = await self._complete(
            {
                "model": self.model,
                "messages": messages,
                "response_format": {"type": "json_object"},
                "max_tokens": 150,
                "temperature": 0.2,
            },
            "OpenAI reply",
        )

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            logger.warning("OpenAI reply was not JSON: %r", content[:200])
            raise GeneratorUnavailable("Reply was not valid JSON") from e
        if not isinstance(data, dict):
            raise GeneratorUnavailable("Reply JSON was not an object")

        message = str(data.get("message") or "").strip()
        if not message:
            message = "I'm sorry, could you repeat that?"
        elapsed = int((time.monotonic() - start) * 1000)
        logger.info("OpenAI reply in %dms: %r", elapsed, message)
        return GeneratorReply(
            message=message,
            should_end_call=bool(data.get("shouldEndCall", False)),
            extracted_data=sanitize_extracted(data.get("extractedData")),
            response_time_ms=elapsed,
        )

    async def summarize(self, history: list[dict]) -> str:
        content = await self._complete(
            {
                "model": self.summary_model,
                "messages": [
                    {"role": "system", "content": SUMMARY_PROMPT},
                    {"role": "user", "content": to_plain_text(history)},
                ],
                "max_tokens": 200,
            },
            "OpenAI summary",
        )
        return content.strip() or "No summary available"

    async def score(self, extracted_data: dict, objectives: str) -> int:
        """Rate the call 1-100 against the campaign objectives."""
        content = await self._complete(
            {
                "model": self.summary_model,
                "messages": [
                    {"role": "system", "content": SCORE_PROMPT},
                    {
                        "role": "user",
                        "content": f"Campaign Objectives: {objectives}\n\n"
                                   f"Data Collected: {json.dumps(extracted_data)}",
                    },
                ],
                "max_tokens": 10,
            },
            "OpenAI score",
        )
        match = re.search(r"\d+", content)
        if not match:
            raise GeneratorUnavailable(f"Score was not a number: {content!r}")
        return max(1, min(100, int(match.group(0))))
