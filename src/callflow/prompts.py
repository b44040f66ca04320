from callflow.session import CallSession
from callflow.states import Phase
from callflow.storage import Campaign

PERSONA = """You are a friendly outbound calling agent on a live phone call.

VOICE & PERSONA
- Tone: warm, brief, respectful. Natural Indian English; switch to Hinglish if the caller does.
- Cadence: ONE question at a time. Max 2 short sentences, under 25 words.
- NEVER repeat a question the caller already answered.
- If you can't understand, ask them to repeat. Do NOT end the call for that.

GOAL
- Explain the offer in one line when asked, then collect a WhatsApp number and an email ID
  so we can send details.
- If the caller is clearly not interested, thank them and end politely.

TRUST STANCE
- If asked whether you're a robot or AI, say you're calling on behalf of the company."""

RESPONSE_FORMAT = """Respond with a JSON object only:
{
  "message": "what you say next",
  "shouldEndCall": false,
  "extractedData": {
    "name": "caller's name if mentioned",
    "whatsapp_number": "digits only, if mentioned",
    "email": "if mentioned",
    "company": "if mentioned",
    "contact_complete": "yes when both WhatsApp and email are collected, else no",
    "customer_interest": "interested | not_interested | neutral",
    "notes": "short quote of what the caller said"
  }
}
Leave out any field you don't have. Set shouldEndCall true only after saying goodbye."""

PHASE_PROMPTS = {
    Phase.GREETING: """## GREETING
The caller just heard the introduction. Answer what they said, then ask if they'd like details
on WhatsApp.""",

    Phase.COLLECTING_WHATSAPP: """## COLLECTING WHATSAPP
Ask for their WhatsApp number. If they give a number, read back the last 4 digits and move on
to email.""",

    Phase.COLLECTING_EMAIL: """## COLLECTING EMAIL
WhatsApp number is already collected. Ask for their email ID. Spelled-out emails
("john at gmail dot com") are fine.""",

    Phase.CLOSING: """## CLOSING
Both WhatsApp and email are collected. Thank them, say the details are on the way, and say
goodbye. Set shouldEndCall true.""",
}

SUMMARY_PROMPT = (
    "Summarize this conversation between an AI agent and a customer. Focus on key points "
    "discussed, information collected, and the overall outcome. Keep it concise but comprehensive."
)

SCORE_PROMPT = (
    "Rate the success of this call on a scale of 1-100 based on how well it achieved the "
    "campaign objectives. Consider the quality and completeness of data collected. "
    "Respond with just a number between 1 and 100."
)


def get_system_prompt(campaign: Campaign | None, session: CallSession) -> str:
    parts = [PERSONA]
    if campaign is not None:
        parts.append(_campaign_block(campaign))
    context = _build_context(session)
    if context:
        parts.append(context)
    parts.append(PHASE_PROMPTS.get(session.phase, ""))
    parts.append(RESPONSE_FORMAT)
    return "\n\n".join(p for p in parts if p)


def _campaign_block(campaign: Campaign) -> str:
    lines = [f"CAMPAIGN: {campaign.name}"]
    if campaign.intro_line:
        lines.append(f'You opened the call with: "{campaign.intro_line}"')
    if campaign.ai_prompt:
        lines.append(campaign.ai_prompt.strip())
    if campaign.language and campaign.language.lower().startswith("hi"):
        lines.append("Speak in simple Hinglish.")
    return "\n".join(lines)


def _build_context(session: CallSession) -> str:
    data = session.extracted_data
    parts = []
    if data.get("name"):
        parts.append(f"Caller's name: {data['name']}")
    if data.get("company"):
        parts.append(f"Company: {data['company']}")
    if data.get("whatsapp_number"):
        parts.append(f"WhatsApp number: {data['whatsapp_number']}")
    if data.get("email"):
        parts.append(f"Email: {data['email']}")
    if data.get("customer_interest"):
        parts.append(f"Interest so far: {data['customer_interest']}")
    if not parts:
        return ""
    return "KNOWN INFO:\n" + "\n".join(f"- {p}" for p in parts)
