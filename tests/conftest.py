from unittest.mock import AsyncMock, MagicMock

import pytest

from callflow.carrier import NotificationResult, TwilioGateway
from callflow.config import Settings
from callflow.generator import GeneratorReply
from callflow.notifier import Notifier
from callflow.orchestrator import CallOrchestrator
from callflow.session import CallSession
from callflow.storage import Campaign, InMemoryStorage


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingNotifier(Notifier):
    def __init__(self):
        super().__init__()
        self.events: list[tuple[str, dict]] = []

    def broadcast(self, event_type, payload):
        self.events.append((event_type, payload))

    def types(self) -> list[str]:
        return [t for t, _ in self.events]


@pytest.fixture
def settings():
    return Settings(
        twilio_account_sid="AC123",
        twilio_auth_token="token",
        twilio_phone_number="+15005550006",
        public_base_url="https://agent.example.com",
        openai_api_key="sk-test",
    )


@pytest.fixture
def campaign():
    return Campaign(
        id="camp_1",
        name="Lab Partners",
        intro_line="Hi, this is Aavika from LabsCheck. Do you have a minute?",
        ai_prompt="Collect WhatsApp number and email from lab owners.",
        language="en",
    )


@pytest.fixture
def session():
    return CallSession(carrier_call_id="CA100", campaign_id="camp_1", phone_number="+919876543210")


@pytest.fixture
def storage(campaign):
    return InMemoryStorage([campaign])


@pytest.fixture
def gateway(settings):
    gw = TwilioGateway(settings)
    gw.place_call = AsyncMock(return_value="CA100")
    gw.end_call = AsyncMock(return_value=True)
    gw.send_notification = AsyncMock(return_value=NotificationResult(success=True, message_sid="SM1"))
    return gw


@pytest.fixture
def generator():
    gen = MagicMock()
    gen.generate = AsyncMock(return_value=GeneratorReply(
        message="Great! Can you share your WhatsApp number?",
        extracted_data={"customer_interest": "interested"},
    ))
    gen.summarize = AsyncMock(return_value="Caller shared contact details.")
    gen.score = AsyncMock(return_value=80)
    return gen


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def orchestrator(settings, storage, gateway, generator, notifier, clock):
    return CallOrchestrator(
        settings=settings,
        storage=storage,
        gateway=gateway,
        generator=generator,
        notifier=notifier,
        clock=clock,
    )
