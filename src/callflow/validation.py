import re


def match_any_keyword(text: str, keywords: set[str]) -> bool:
    """Check if any keyword appears in text as a whole word (not substring)."""
    lower = text.lower()
    return any(re.search(rf'\b{re.escape(kw)}\b', lower) for kw in keywords)


# Placeholders a generator sometimes echoes back instead of real values
SENTINEL_VALUES = {
    "not provided", "n/a", "na", "unknown", "none", "null", "tbd",
    "value if mentioned", "not mentioned", "provided", "no", "yes/no",
}

WORD_TO_DIGIT = {
    "zero": "0", "oh": "0", "o": "0",
    "one": "1", "two": "2", "three": "3", "four": "4",
    "five": "5", "six": "6", "seven": "7", "eight": "8", "nine": "9",
    # Hindi
    "shunya": "0", "ek": "1", "do": "2", "teen": "3", "char": "4", "chaar": "4",
    "paanch": "5", "panch": "5", "chhe": "6", "che": "6", "saat": "7",
    "aath": "8", "nau": "9",
}

_REPEAT_WORDS = {"double": 2, "triple": 3}

EMAIL_RE = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
TEN_DIGITS_RE = re.compile(r"\d{10,13}")


def words_to_digits(text: str) -> str:
    """Convert spoken digits to a digit string.

    Handles single-digit words in English and Hindi plus "double"/"triple".
    Example: "nine eight double seven" -> "9877"
    """
    tokens = re.findall(r"[a-zA-Z]+|\d", text.lower())
    digits = []
    repeat = 1
    for tok in tokens:
        if tok in _REPEAT_WORDS:
            repeat = _REPEAT_WORDS[tok]
            continue
        if tok in WORD_TO_DIGIT:
            digits.append(WORD_TO_DIGIT[tok] * repeat)
        elif tok.isdigit():
            digits.append(tok * repeat)
        repeat = 1
    return "".join(digits)


def is_sentinel(value) -> bool:
    if value is None:
        return True
    if not isinstance(value, str):
        return False
    cleaned = value.strip().lower()
    return not cleaned or cleaned in SENTINEL_VALUES


def find_phone_number(text: str) -> str:
    """Return the first 10-13 digit run in text, written or spoken."""
    if not text:
        return ""
    compact = re.sub(r"[\s\-().]", "", text)
    match = TEN_DIGITS_RE.search(compact)
    if match:
        return match.group(0)
    spoken = words_to_digits(text)
    match = TEN_DIGITS_RE.search(spoken)
    return match.group(0) if match else ""


def find_email(text: str) -> str:
    if not text:
        return ""
    normalized = re.sub(r"\s+at\s+", "@", text, flags=re.IGNORECASE)
    normalized = re.sub(r"\s+dot\s+", ".", normalized, flags=re.IGNORECASE)
    match = EMAIL_RE.search(normalized)
    return match.group(0) if match else ""


def validate_phone(value: str | None) -> str:
    if is_sentinel(value):
        return ""
    cleaned = str(value).strip()
    plus = cleaned.startswith("+")
    digits = re.sub(r"\D", "", cleaned)
    if len(digits) < 10 or len(digits) > 15:
        digits = find_phone_number(cleaned)
        if not digits:
            return ""
    return f"+{digits}" if plus else digits


def validate_email(value: str | None) -> str:
    if is_sentinel(value):
        return ""
    return find_email(str(value).strip())


def validate_name(value: str | None) -> str:
    if is_sentinel(value):
        return ""
    cleaned = str(value).strip()
    # Reject phone numbers used as names
    if re.match(r"^[\d+\-() ]{7,}$", cleaned):
        return ""
    if "{{" in cleaned or "}}" in cleaned:
        return ""
    return cleaned


INTEREST_LEVELS = {"interested", "not_interested", "neutral"}


def sanitize_extracted(data: dict | None) -> dict:
    """Drop placeholders and normalize the fields the call flow acts on."""
    if not isinstance(data, dict):
        return {}
    out = {}
    for key, value in data.items():
        if is_sentinel(value):
            continue
        if key == "whatsapp_number":
            value = validate_phone(value)
        elif key == "email":
            value = validate_email(value)
        elif key == "name":
            value = validate_name(value)
        elif key == "customer_interest":
            value = str(value).strip().lower().replace(" ", "_").replace("-", "_")
            if value not in INTEREST_LEVELS:
                continue
        elif isinstance(value, str):
            value = value.strip()
        if value == "" or value is None:
            continue
        out[key] = value
    return out


def format_whatsapp_number(number: str, default_country_code: str = "+91") -> str:
    """E.164 for local numbers; numbers with a country code pass through."""
    number = (number or "").strip()
    if number.startswith("+"):
        return number
    digits = re.sub(r"\D", "", number)
    if len(digits) > 10:
        return f"+{digits}"
    return f"{default_country_code}{digits}"
