from urllib.parse import parse_qs

import httpx
import pytest
import respx

from callflow.carrier import (
    APOLOGY_DOCUMENT,
    CallbackContext,
    DocumentOptions,
    TwilioGateway,
    render_document,
    speech_locale,
)
from callflow.errors import CallPlacementError

CALLS_URL = "https://api.twilio.com/2010-04-01/Accounts/AC123/Calls.json"
MESSAGES_URL = "https://api.twilio.com/2010-04-01/Accounts/AC123/Messages.json"


@pytest.fixture
def twilio(settings):
    return TwilioGateway(settings)


def _form(request) -> dict:
    return parse_qs(request.content.decode())


class TestSpeechLocale:
    def test_short_codes_get_region(self):
        assert speech_locale("en") == "en-IN"
        assert speech_locale("hi") == "hi-IN"

    def test_full_locale_passes_through(self):
        assert speech_locale("en-US") == "en-US"

    def test_missing_uses_default(self):
        assert speech_locale(None) == "en-IN"
        assert speech_locale("", default="hi") == "hi-IN"


class TestRender:
    def test_gather_with_say(self):
        xml = render_document("gather", "Hello there", DocumentOptions(action="https://x/turn"))
        assert "<Gather" in xml
        assert 'action="https://x/turn"' in xml
        assert 'language="en-IN"' in xml
        assert 'voice="alice"' in xml
        assert "Hello there" in xml
        assert "I didn't catch that." in xml or "I didn&apos;t catch that." in xml
        assert "<Record" in xml

    def test_gather_with_audio_uses_play(self):
        xml = render_document("gather", "Hello", DocumentOptions(audio_url="https://x/audio/a.mp3"))
        assert "<Play>https://x/audio/a.mp3</Play>" in xml
        assert "<Say" not in xml.split("</Gather>")[0]

    def test_pacing_adds_pauses(self):
        xml = render_document("gather", "Hi", DocumentOptions(pacing=True, thinking_pause=True))
        assert xml.count("<Pause") == 2

    def test_no_pacing_no_pauses(self):
        assert "<Pause" not in render_document("gather", "Hi", DocumentOptions())

    def test_hangup(self):
        xml = render_document("hangup", "Bye now")
        assert "Bye now" in xml
        assert "<Hangup" in xml
        assert "<Gather" not in xml

    def test_speak(self):
        xml = render_document("speak", "One moment", DocumentOptions(language="hi"))
        assert 'language="hi-IN"' in xml
        assert "<Hangup" not in xml

    def test_missing_options_do_not_throw(self):
        xml = render_document("gather")
        assert xml.startswith("<?xml")
        assert "<Gather" in xml

    def test_unknown_kind_raises(self):
        with pytest.raises(ValueError):
            render_document("dance", "x")

    def test_gateway_applies_settings_defaults(self, twilio):
        xml = twilio.render("speak", "Hello")
        assert 'voice="alice"' in xml

    def test_apology_document_hangs_up(self):
        assert "<Hangup" in APOLOGY_DOCUMENT
        assert "technical issue" in APOLOGY_DOCUMENT


class TestPlaceCall:
    @respx.mock
    @pytest.mark.asyncio
    async def test_places_call_with_callbacks(self, twilio):
        route = respx.post(CALLS_URL).mock(return_value=httpx.Response(201, json={"sid": "CA999"}))
        sid = await twilio.place_call("+919876543210", CallbackContext("camp_1", "contact_1"))
        assert sid == "CA999"

        form = _form(route.calls[0].request)
        assert form["To"] == ["+919876543210"]
        assert form["From"] == ["+15005550006"]
        assert form["Url"] == ["https://agent.example.com/calls/webhook/answer?campaignId=camp_1&contactId=contact_1"]
        assert form["StatusCallback"] == ["https://agent.example.com/calls/webhook/status"]
        assert form["StatusCallbackEvent"] == ["initiated", "ringing", "answered", "completed"]
        assert form["Timeout"] == ["20"]
        assert form["MachineDetection"] == ["Enable"]

    @respx.mock
    @pytest.mark.asyncio
    async def test_rejection_raises(self, twilio):
        respx.post(CALLS_URL).mock(return_value=httpx.Response(400, json={"code": 21211}))
        with pytest.raises(CallPlacementError):
            await twilio.place_call("+1", CallbackContext("camp_1"))

    @respx.mock
    @pytest.mark.asyncio
    async def test_network_error_raises(self, twilio):
        respx.post(CALLS_URL).mock(side_effect=httpx.ConnectError("down"))
        with pytest.raises(CallPlacementError):
            await twilio.place_call("+919876543210", CallbackContext("camp_1"))


class TestEndCall:
    @respx.mock
    @pytest.mark.asyncio
    async def test_ends_call(self, twilio):
        route = respx.post("https://api.twilio.com/2010-04-01/Accounts/AC123/Calls/CA1.json").mock(
            return_value=httpx.Response(200, json={"sid": "CA1", "status": "completed"})
        )
        assert await twilio.end_call("CA1") is True
        assert _form(route.calls[0].request)["Status"] == ["completed"]

    @respx.mock
    @pytest.mark.asyncio
    async def test_already_ended_counts_as_success(self, twilio):
        respx.post("https://api.twilio.com/2010-04-01/Accounts/AC123/Calls/CA1.json").mock(
            return_value=httpx.Response(400, json={"code": 21220, "message": "Call is not in-progress"})
        )
        assert await twilio.end_call("CA1") is True

    @respx.mock
    @pytest.mark.asyncio
    async def test_other_failure_returns_false(self, twilio):
        respx.post("https://api.twilio.com/2010-04-01/Accounts/AC123/Calls/CA1.json").mock(
            return_value=httpx.Response(500)
        )
        assert await twilio.end_call("CA1") is False


class TestSendNotification:
    @respx.mock
    @pytest.mark.asyncio
    async def test_whatsapp_prefixes_numbers(self, twilio):
        route = respx.post(MESSAGES_URL).mock(return_value=httpx.Response(201, json={"sid": "SM1"}))
        result = await twilio.send_notification("whatsapp", "+919876543210", "Details")
        assert result.success is True
        assert result.message_sid == "SM1"
        form = _form(route.calls[0].request)
        assert form["From"] == ["whatsapp:+15005550006"]
        assert form["To"] == ["whatsapp:+919876543210"]
        assert form["Body"] == ["Details"]

    @respx.mock
    @pytest.mark.asyncio
    async def test_sms_has_no_prefix(self, twilio):
        route = respx.post(MESSAGES_URL).mock(return_value=httpx.Response(201, json={"sid": "SM2"}))
        await twilio.send_notification("sms", "+919876543210", "Hi")
        assert _form(route.calls[0].request)["To"] == ["+919876543210"]

    @respx.mock
    @pytest.mark.asyncio
    async def test_failure_is_returned(self, twilio):
        respx.post(MESSAGES_URL).mock(return_value=httpx.Response(400, json={"code": 63007}))
        result = await twilio.send_notification("whatsapp", "+919876543210", "Hi")
        assert result.success is False
        assert result.error

    @pytest.mark.asyncio
    async def test_unknown_channel(self, twilio):
        result = await twilio.send_notification("pigeon", "+1", "Hi")
        assert result.success is False
