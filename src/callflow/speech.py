"""Normalize what the carrier's recognizer sent us.

Twilio reports a finalized transcript (SpeechResult), sometimes only a
partial one (UnstableSpeechResult), and keypad input (Digits). The turn
handler wants one string.
"""

import re

# Whole-phrase matches only: "no" alone is an answer, not a goodbye.
TERMINATION_PHRASES = {
    # English
    "goodbye", "good bye", "bye bye", "not interested", "no thanks", "no thank you",
    "stop calling", "don't call", "do not call", "dont call", "remove my number",
    "wrong number",
    # Hinglish
    "band karo", "nahi chahiye", "interest nahi", "interested nahi", "mat karo",
    "phone rakho", "call mat karna",
}

# Devanagari combining marks are not word characters, so these match as substrings
DEVANAGARI_TERMINATION_PHRASES = {"बंद करो", "नहीं चाहिए", "फोन रखो", "कॉल मत करना"}

# "don't hang up", "don't say goodbye": a negation just before a phrase cancels it
NEGATED_PREFIX = re.compile(r"\b(?:don't|dont|do not|never)(?: \w+)? $")


def reconcile(primary: str | None, unstable: str | None = None, digits: str | None = None) -> str:
    """Return the first non-blank of finalized speech, partial speech, DTMF digits."""
    for candidate in (primary, unstable, digits):
        if candidate is None:
            continue
        cleaned = re.sub(r"\s+", " ", str(candidate)).strip()
        if cleaned:
            return cleaned
    return ""


def is_termination_intent(utterance: str | None) -> bool:
    if not utterance or not utterance.strip():
        return False
    normalized = re.sub(r"\s+", " ", re.sub(r"[’`]", "'", utterance))
    if any(phrase in normalized for phrase in DEVANAGARI_TERMINATION_PHRASES):
        return True
    lower = normalized.lower()
    return any(_unnegated_match(lower, phrase) for phrase in TERMINATION_PHRASES)


def _unnegated_match(text: str, phrase: str) -> bool:
    for match in re.finditer(rf"\b{re.escape(phrase)}\b", text):
        if not NEGATED_PREFIX.search(text[:match.start()]):
            return True
    return False
