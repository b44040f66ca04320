"""Deterministic replies used when the response generator is unavailable.

Transient outages (rate limits, quota, timeouts) keep the conversation going
with keyword rules on the caller's last utterance and the current phase. A hard
failure ends the call politely instead of looping on canned lines.
"""

from callflow.generator import GeneratorReply
from callflow.states import Phase
from callflow.validation import find_email, find_phone_number, match_any_keyword

POSITIVE_KEYWORDS = {"fine", "good", "great", "ok", "okay", "sure", "yes", "haan", "ha", "theek", "thik", "accha", "achha"}
QUESTION_KEYWORDS = {"what", "why", "who", "kya", "kyon", "kyu", "kaun"}
DECLINE_KEYWORDS = {"not interested", "no", "nahi", "nahin", "mat"}
EMAIL_KEYWORDS = {"email", "gmail", "mail"}

ASK_WHATSAPP = "Can you share your WhatsApp number so we can send you the details?"
ASK_EMAIL = "Perfect! Now can you share your email ID?"
THANKS_AND_CLOSE = "Thank you! We'll send you the details soon. Have a great day!"
DECLINED = "No problem. Have a good day!"
EXPLAIN = "We'd like to share some details about our offer with you. Can I send them on WhatsApp?"
TECHNICAL_FAREWELL = "Sorry sir, thoda technical issue hai. Main dubara call karunga. Dhanyawad!"

SUMMARY_UNAVAILABLE_TRANSIENT = "Call completed successfully. Summary temporarily unavailable due to service limits."
SUMMARY_UNAVAILABLE = "Call completed successfully. Summary generation failed."
SCORE_TRANSIENT = 75
SCORE_FAILED = 50


def _notes(utterance: str) -> str:
    return f'Customer said: "{utterance}"'


def keyword_reply(utterance: str, phase: Phase, extracted: dict | None = None) -> GeneratorReply:
    """Pick a reply from what the caller just said and what we still need."""
    extracted = extracted or {}
    text = utterance or ""
    data: dict = {}

    phone = find_phone_number(text)
    email = find_email(text)
    has_whatsapp = bool(extracted.get("whatsapp_number") or phone)

    if phone and not email:
        data["whatsapp_number"] = phone
        data["customer_interest"] = "interested"
        if extracted.get("email"):
            data["contact_complete"] = "yes"
            message, end = THANKS_AND_CLOSE, True
        else:
            message, end = ASK_EMAIL, False
    elif email or (phase == Phase.COLLECTING_EMAIL and match_any_keyword(text, EMAIL_KEYWORDS)):
        if email:
            data["email"] = email
        if phone:
            data["whatsapp_number"] = phone
        if has_whatsapp and email:
            data["contact_complete"] = "yes"
            message, end = THANKS_AND_CLOSE, True
        elif email:
            message, end = ASK_WHATSAPP, False
        else:
            message, end = "Sure, please say your email ID slowly.", False
    elif match_any_keyword(text, DECLINE_KEYWORDS):
        data["customer_interest"] = "not_interested"
        message, end = DECLINED, True
    elif match_any_keyword(text, POSITIVE_KEYWORDS):
        data["customer_interest"] = "interested"
        message, end = _next_ask(phase, has_whatsapp)
    elif match_any_keyword(text, QUESTION_KEYWORDS):
        data["customer_interest"] = "neutral"
        message, end = EXPLAIN, False
    else:
        data["customer_interest"] = "neutral"
        message, end = _next_ask(phase, has_whatsapp)

    data["notes"] = _notes(text)
    return GeneratorReply(message=message, should_end_call=end, extracted_data=data)


def _next_ask(phase: Phase, has_whatsapp: bool) -> tuple[str, bool]:
    if phase == Phase.CLOSING:
        return THANKS_AND_CLOSE, True
    if phase == Phase.COLLECTING_EMAIL or has_whatsapp:
        return "Could you share your email ID as well?", False
    if phase == Phase.GREETING:
        return "Great! " + ASK_WHATSAPP, False
    return ASK_WHATSAPP, False


def fallback_reply(utterance: str, phase: Phase, extracted: dict | None = None, transient: bool = True) -> GeneratorReply:
    if not transient:
        return GeneratorReply(
            message=TECHNICAL_FAREWELL,
            should_end_call=True,
            extracted_data={"notes": "Technical error - farewell provided"},
        )
    return keyword_reply(utterance, phase, extracted)


def fallback_summary(transient: bool) -> str:
    return SUMMARY_UNAVAILABLE_TRANSIENT if transient else SUMMARY_UNAVAILABLE


def fallback_score(transient: bool) -> int:
    return SCORE_TRANSIENT if transient else SCORE_FAILED
