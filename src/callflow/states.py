from enum import Enum

TERMINAL_STATES = {"finalizing", "closed"}

# Durable Call.status values, in the only order they may advance.
CALL_STATUS_ORDER = ("initiated", "active", "completed")
TERMINAL_CALL_STATUSES = {"completed", "failed"}

# Carrier CallStatus values that end a call, mapped to the Call.status they produce.
CARRIER_TERMINAL_STATUSES = {
    "completed": "completed",
    "failed": "failed",
    "busy": "failed",
    "no-answer": "failed",
    "canceled": "failed",
}
CARRIER_ACTIVE_STATUSES = {"answered", "in-progress"}


class CallState(Enum):
    INITIATING = "initiating"
    RINGING = "ringing"
    ACTIVE = "active"
    FINALIZING = "finalizing"
    CLOSED = "closed"

    @property
    def is_live(self) -> bool:
        return self in (CallState.RINGING, CallState.ACTIVE)

    @property
    def is_terminal(self) -> bool:
        return self.value in TERMINAL_STATES


class Phase(Enum):
    """Where the conversation is, set by the turn handler from collected data."""

    GREETING = "greeting"
    COLLECTING_WHATSAPP = "collecting_whatsapp"
    COLLECTING_EMAIL = "collecting_email"
    CLOSING = "closing"


def next_phase(extracted: dict, turn_count: int) -> Phase:
    if extracted.get("whatsapp_number") and extracted.get("email"):
        return Phase.CLOSING
    if extracted.get("whatsapp_number"):
        return Phase.COLLECTING_EMAIL
    if turn_count == 0:
        return Phase.GREETING
    return Phase.COLLECTING_WHATSAPP


def can_advance_status(current: str | None, new: str) -> bool:
    """True when moving a Call from `current` to `new` is a forward step.

    initiated -> active -> {completed | failed}. Terminal statuses never change,
    and failed is reachable from any non-terminal status.
    """
    if current == new:
        return False
    if current in TERMINAL_CALL_STATUSES:
        return False
    if new == "failed":
        return True
    if new not in CALL_STATUS_ORDER:
        return False
    if current is None:
        return True
    if current not in CALL_STATUS_ORDER:
        return True
    return CALL_STATUS_ORDER.index(new) > CALL_STATUS_ORDER.index(current)
