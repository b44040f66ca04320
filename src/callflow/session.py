import time
from dataclasses import dataclass, field

from callflow.states import CallState, Phase


@dataclass
class CallSession:
    carrier_call_id: str
    campaign_id: str
    phone_number: str = ""
    contact_id: str | None = None
    call_record_id: str | None = None

    state: CallState = CallState.RINGING
    phase: Phase = Phase.GREETING

    # [{"role": "user" | "assistant", "content": str}], appended in pairs
    conversation_history: list = field(default_factory=list)
    extracted_data: dict = field(default_factory=dict)
    whatsapp_sent: bool = False

    started_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)

    # Timestamped entries for the post-call transcript dump
    transcript_log: list = field(default_factory=list)

    turn_count: int = 0

    # Turn ordering: tickets are issued on arrival and committed in the same order
    next_ticket: int = 0
    committed_ticket: int = -1

    def take_ticket(self) -> int:
        ticket = self.next_ticket
        self.next_ticket += 1
        return ticket

    def is_turn_of(self, ticket: int) -> bool:
        return self.committed_ticket == ticket - 1

    def commit_ticket(self, ticket: int) -> None:
        if ticket > self.committed_ticket:
            self.committed_ticket = ticket

    def history_snapshot(self) -> list[dict]:
        return [dict(m) for m in self.conversation_history]

    def append_turn(self, user_text: str, assistant_text: str, now: float | None = None) -> None:
        now = now if now is not None else time.time()
        self.conversation_history.append({"role": "user", "content": user_text})
        self.conversation_history.append({"role": "assistant", "content": assistant_text})
        self.transcript_log.append({"role": "user", "content": user_text, "timestamp": now, "phase": self.phase.value})
        self.transcript_log.append({"role": "assistant", "content": assistant_text, "timestamp": now, "phase": self.phase.value})
        self.turn_count += 1
        self.last_activity = now

    def merge_extracted(self, data: dict) -> None:
        """Last write wins per key; empty values never overwrite."""
        for key, value in (data or {}).items():
            if value is None or value == "":
                continue
            self.extracted_data[key] = value

    def touch(self, now: float | None = None) -> None:
        self.last_activity = now if now is not None else time.time()
