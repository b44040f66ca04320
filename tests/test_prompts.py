from callflow.prompts import PERSONA, PHASE_PROMPTS, RESPONSE_FORMAT, get_system_prompt
from callflow.states import Phase
from callflow.storage import Campaign


class TestSystemPrompt:
    def test_includes_persona_campaign_and_format(self, campaign, session):
        prompt = get_system_prompt(campaign, session)
        assert prompt.startswith(PERSONA)
        assert "CAMPAIGN: Lab Partners" in prompt
        assert campaign.intro_line in prompt
        assert "Collect WhatsApp number and email" in prompt
        assert prompt.endswith(RESPONSE_FORMAT)

    def test_phase_block_follows_session(self, campaign, session):
        session.phase = Phase.COLLECTING_EMAIL
        prompt = get_system_prompt(campaign, session)
        assert PHASE_PROMPTS[Phase.COLLECTING_EMAIL] in prompt
        assert PHASE_PROMPTS[Phase.GREETING] not in prompt

    def test_known_info_listed(self, campaign, session):
        session.extracted_data = {"name": "Ravi", "whatsapp_number": "9876543210"}
        prompt = get_system_prompt(campaign, session)
        assert "KNOWN INFO:" in prompt
        assert "- Caller's name: Ravi" in prompt
        assert "- WhatsApp number: 9876543210" in prompt

    def test_no_known_info_block_when_empty(self, campaign, session):
        assert "KNOWN INFO" not in get_system_prompt(campaign, session)

    def test_hindi_campaign_asks_for_hinglish(self, session):
        campaign = Campaign(id="c", name="Hindi", intro_line="Namaste", language="hi")
        assert "Hinglish." in get_system_prompt(campaign, session)

    def test_without_campaign(self, session):
        prompt = get_system_prompt(None, session)
        assert "CAMPAIGN:" not in prompt
        assert RESPONSE_FORMAT in prompt


def test_every_phase_has_a_prompt():
    assert set(PHASE_PROMPTS) == set(Phase)
