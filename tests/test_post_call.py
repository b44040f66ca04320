import json
import logging

from callflow.post_call import (
    build_call_ended_event,
    build_call_update,
    build_contact_update,
    chunk_transcript_dump,
    end_reason_for_status,
    end_reason_for_turn,
    is_conversation_over,
    log_transcript_dump,
    merge_notes,
)


class TestConversationOver:
    def test_generator_asked_to_end(self):
        assert is_conversation_over(True, False, {})

    def test_termination_intent(self):
        assert is_conversation_over(False, True, {})

    def test_both_contacts_collected(self):
        assert is_conversation_over(False, False, {"whatsapp_number": "9876543210", "email": "a@b.com"})

    def test_contact_complete_flag(self):
        assert is_conversation_over(False, False, {"contact_complete": "yes"})

    def test_not_interested(self):
        assert is_conversation_over(False, False, {"customer_interest": "not_interested"})

    def test_keeps_going(self):
        assert not is_conversation_over(False, False, {"whatsapp_number": "9876543210"})


class TestEndReasons:
    def test_turn_reasons(self):
        assert end_reason_for_turn(True, True, {}) == "caller_ended"
        assert end_reason_for_turn(True, False, {"customer_interest": "not_interested"}) == "not_interested"
        assert end_reason_for_turn(False, False, {"whatsapp_number": "1", "email": "a@b.com"}) == "contact_complete"
        assert end_reason_for_turn(True, False, {}) == "agent_ended"

    def test_status_reasons(self):
        assert end_reason_for_status("completed") == "customer_hangup"
        assert end_reason_for_status("no-answer") == "no_answer"
        assert end_reason_for_status("busy") == "busy"


class TestContactUpdate:
    def test_only_non_empty_contact_fields(self):
        extracted = {
            "name": "Ravi",
            "email": "",
            "whatsapp_number": "9876543210",
            "customer_interest": "interested",
            "notes": "asked for rates",
        }
        assert build_contact_update(extracted) == {
            "name": "Ravi",
            "whatsapp_number": "9876543210",
            "notes": "asked for rates",
        }

    def test_merge_notes(self):
        assert merge_notes("", "new") == "new"
        assert merge_notes("old", "new") == "old\nnew"
        assert merge_notes("old\nnew", "new") == "old\nnew"
        assert merge_notes("old", "") == "old"


class TestCallUpdate:
    def test_duration_from_session_start(self, session):
        session.started_at = 1000.0
        session.extracted_data = {"email": "a@b.com"}
        update = build_call_update(session, "completed", 1042.7, summary="s", score=80, end_reason="contact_complete")
        assert update["duration"] == 42
        assert update["status"] == "completed"
        assert update["collected_data"] == {"email": "a@b.com"}
        assert update["success_score"] == 80

    def test_carrier_duration_wins(self, session):
        session.started_at = 1000.0
        update = build_call_update(session, "completed", 1100.0, summary=None, score=0,
                                   end_reason="customer_hangup", carrier_duration=37)
        assert update["duration"] == 37

    def test_call_ended_event(self, session):
        session.started_at = 1000.0
        session.append_turn("hi", "hello", now=1001.0)
        update = build_call_update(session, "completed", 1010.0, summary="s", score=60, end_reason="agent_ended")
        event = build_call_ended_event(session, update)
        assert event["call_sid"] == "CA100"
        assert event["status"] == "completed"
        assert event["transcript"] == [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
        ]


class TestChunkTranscriptDump:
    def test_empty_dump_single_chunk(self):
        chunks = chunk_transcript_dump({"call_sid": "CA1", "entries": []})
        assert len(chunks) == 1
        assert chunks[0].startswith("TRANSCRIPT_DUMP|1/1|")
        assert json.loads(chunks[0].split("|", 2)[2]) == {"call_sid": "CA1", "entries": []}

    def test_large_dump_splits_and_keeps_every_entry(self):
        entries = [{"t": i, "role": "user", "content": "x" * 200} for i in range(50)]
        chunks = chunk_transcript_dump({"call_sid": "CA1", "entries": entries}, max_bytes=1000)
        assert len(chunks) > 1
        total = len(chunks)
        seen = []
        for i, chunk in enumerate(chunks):
            prefix, counter, body = chunk.split("|", 2)
            assert prefix == "TRANSCRIPT_DUMP"
            assert counter == f"{i + 1}/{total}"
            seen.extend(json.loads(body)["entries"])
        assert seen == entries
        assert "call_sid" in json.loads(chunks[0].split("|", 2)[2])
        assert "call_sid" not in json.loads(chunks[1].split("|", 2)[2])


def test_log_transcript_dump_emits_lines(session, caplog):
    session.started_at = 1000.0
    session.append_turn("hi", "hello", now=1002.0)
    with caplog.at_level(logging.INFO, logger="callflow.post_call"):
        log_transcript_dump(session, "completed", end_time=1010.0)
    lines = [r.getMessage() for r in caplog.records if r.getMessage().startswith("TRANSCRIPT_DUMP")]
    assert len(lines) == 1
    body = json.loads(lines[0].split("|", 2)[2])
    assert body["duration_s"] == 10.0
    assert [e["content"] for e in body["entries"]] == ["hi", "hello"]
