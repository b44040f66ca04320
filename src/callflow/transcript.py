_SPEAKER = {"assistant": "Agent", "user": "Customer"}


def to_plain_text(log: list[dict]) -> str:
    """Convert conversation entries to plain text.

    Assistant lines prefixed with "Agent:", user lines with "Customer:".
    Entries with any other role are skipped.
    """
    if not log:
        return ""

    lines = []
    for entry in log:
        speaker = _SPEAKER.get(entry.get("role", ""))
        if speaker:
            lines.append(f"{speaker}: {entry.get('content', '')}")
    return "\n".join(lines)


def to_json_array(log: list[dict]) -> list[dict]:
    """Convert conversation entries to a list of {role, content} dicts."""
    if not log:
        return []
    return [
        {"role": entry["role"], "content": entry.get("content", "")}
        for entry in log
        if entry.get("role") in _SPEAKER
    ]


def to_timestamped_dump(
    log: list[dict],
    start_time: float,
    call_sid: str,
    phone: str,
    final_status: str,
) -> dict:
    """Build a timestamped transcript dump dict for structured logging.

    Timestamps are converted to relative seconds from call start.
    If start_time is 0, uses the first entry's timestamp as base.
    Entries missing a timestamp key are skipped.
    """
    base_time = start_time
    if base_time <= 0 and log:
        for entry in log:
            if "timestamp" in entry:
                base_time = entry["timestamp"]
                break

    entries = []
    for entry in log:
        if "timestamp" not in entry:
            continue
        entries.append({
            "t": round(entry["timestamp"] - base_time, 1),
            "role": entry.get("role", ""),
            "phase": entry.get("phase", ""),
            "content": entry.get("content", ""),
        })

    return {
        "call_sid": call_sid,
        "phone": phone,
        "final_status": final_status,
        "entries": entries,
    }
