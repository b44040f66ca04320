import json
import logging
import time
from datetime import datetime, timezone

from callflow.session import CallSession
from callflow.transcript import to_json_array, to_timestamped_dump

logger = logging.getLogger(__name__)

# Carrier CallStatus -> end_reason when the carrier ended the call
_STATUS_END_REASONS = {
    "completed": "customer_hangup",
    "busy": "busy",
    "no-answer": "no_answer",
    "failed": "carrier_failed",
    "canceled": "canceled",
}

CONTACT_FIELDS = ("name", "email", "whatsapp_number", "company")


def end_reason_for_status(carrier_status: str) -> str:
    return _STATUS_END_REASONS.get(carrier_status, "customer_hangup")


def end_reason_for_turn(should_end_call: bool, termination_intent: bool, extracted: dict) -> str:
    """Which condition of the end-of-conversation predicate fired first."""
    if termination_intent:
        return "caller_ended"
    if extracted.get("customer_interest") == "not_interested":
        return "not_interested"
    if (extracted.get("whatsapp_number") and extracted.get("email")) or extracted.get("contact_complete") == "yes":
        return "contact_complete"
    if should_end_call:
        return "agent_ended"
    return "completed"


def is_conversation_over(should_end_call: bool, termination_intent: bool, extracted: dict) -> bool:
    return bool(
        should_end_call
        or termination_intent
        or extracted.get("contact_complete") == "yes"
        or (extracted.get("whatsapp_number") and extracted.get("email"))
        or extracted.get("customer_interest") == "not_interested"
    )


def build_contact_update(extracted: dict) -> dict:
    """Contact fields from extracted data. Only non-empty values are included."""
    update = {k: extracted[k] for k in CONTACT_FIELDS if extracted.get(k)}
    if extracted.get("notes"):
        update["notes"] = str(extracted["notes"])
    return update


def merge_notes(existing: str, new: str) -> str:
    if not new or new in (existing or ""):
        return existing or ""
    if not existing:
        return new
    return f"{existing}\n{new}"


def build_call_update(
    session: CallSession,
    status: str,
    end_time: float,
    *,
    summary: str | None,
    score: int,
    end_reason: str,
    carrier_duration: int | None = None,
) -> dict:
    """Final Call row values written once at finalization."""
    if carrier_duration is not None:
        duration = int(carrier_duration)
    else:
        duration = max(0, int(end_time - session.started_at))
    return {
        "status": status,
        "ended_at": end_time,
        "duration": duration,
        "conversation_summary": summary,
        "success_score": score,
        "collected_data": dict(session.extracted_data),
        "end_reason": end_reason,
        "whatsapp_sent": session.whatsapp_sent,
    }


def build_call_ended_event(session: CallSession, call_update: dict) -> dict:
    """Payload broadcast to dashboards when a call is finalized."""
    return {
        "call_sid": session.carrier_call_id,
        "call_id": session.call_record_id,
        "campaign_id": session.campaign_id,
        "phone_number": session.phone_number,
        "status": call_update["status"],
        "end_reason": call_update["end_reason"],
        "duration_seconds": call_update["duration"],
        "success_score": call_update["success_score"],
        "summary": call_update["conversation_summary"],
        "collected_data": call_update["collected_data"],
        "ended_at": datetime.fromtimestamp(call_update["ended_at"], tz=timezone.utc).isoformat(),
        "transcript": to_json_array(session.conversation_history),
    }


def chunk_transcript_dump(dump: dict, max_bytes: int = 3500) -> list[str]:
    """Split a transcript dump into log-line sized chunks.

    Each chunk is a string: TRANSCRIPT_DUMP|N/M|{json}
    The first chunk carries the header fields; later chunks carry only entries.
    """
    header = {k: v for k, v in dump.items() if k != "entries"}
    entries = dump.get("entries", [])

    groups: list[list[dict]] = []
    current: list[dict] = []
    size = len(json.dumps({**header, "entries": []}).encode("utf-8"))

    for entry in entries:
        # +2 for the separator and bracket
        entry_size = len(json.dumps(entry).encode("utf-8")) + 2
        if current and size + entry_size > max_bytes:
            groups.append(current)
            current = []
            size = len(json.dumps({"entries": []}).encode("utf-8"))
        current.append(entry)
        size += entry_size
    groups.append(current)

    total = len(groups)
    lines = []
    for i, group in enumerate(groups):
        body = {**header, "entries": group} if i == 0 else {"entries": group}
        lines.append(f"TRANSCRIPT_DUMP|{i + 1}/{total}|{json.dumps(body)}")
    return lines


def log_transcript_dump(session: CallSession, final_status: str, end_time: float | None = None) -> None:
    end_time = end_time if end_time is not None else time.time()
    dump = to_timestamped_dump(
        session.transcript_log,
        start_time=session.started_at,
        call_sid=session.carrier_call_id,
        phone=session.phone_number,
        final_status=final_status,
    )
    dump["duration_s"] = round(end_time - session.started_at, 1)
    for line in chunk_transcript_dump(dump):
        logger.info(line)
