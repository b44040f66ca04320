from callflow.states import CallState, Phase, can_advance_status, next_phase


def test_live_states():
    assert CallState.RINGING.is_live
    assert CallState.ACTIVE.is_live
    assert not CallState.INITIATING.is_live
    assert not CallState.FINALIZING.is_live


def test_terminal_states():
    assert CallState.FINALIZING.is_terminal
    assert CallState.CLOSED.is_terminal
    assert not CallState.ACTIVE.is_terminal


class TestNextPhase:
    def test_greeting_before_first_turn(self):
        assert next_phase({}, 0) == Phase.GREETING

    def test_collecting_whatsapp_after_first_turn(self):
        assert next_phase({"customer_interest": "interested"}, 1) == Phase.COLLECTING_WHATSAPP

    def test_collecting_email_once_whatsapp_known(self):
        assert next_phase({"whatsapp_number": "9876543210"}, 2) == Phase.COLLECTING_EMAIL

    def test_closing_when_both_known(self):
        data = {"whatsapp_number": "9876543210", "email": "a@b.com"}
        assert next_phase(data, 3) == Phase.CLOSING


class TestCanAdvanceStatus:
    def test_forward_steps(self):
        assert can_advance_status("initiated", "active")
        assert can_advance_status("active", "completed")
        assert can_advance_status("initiated", "completed")

    def test_failed_from_any_non_terminal(self):
        assert can_advance_status("initiated", "failed")
        assert can_advance_status("active", "failed")

    def test_never_backwards(self):
        assert not can_advance_status("active", "initiated")
        assert not can_advance_status("completed", "active")

    def test_terminal_is_frozen(self):
        assert not can_advance_status("completed", "failed")
        assert not can_advance_status("failed", "completed")

    def test_same_status_is_not_a_step(self):
        assert not can_advance_status("active", "active")

    def test_unknown_target_rejected(self):
        assert not can_advance_status("active", "ringing")
