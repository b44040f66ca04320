import json

import pytest

from callflow.storage import Campaign, InMemoryStorage, load_campaigns


class TestContacts:
    @pytest.mark.asyncio
    async def test_create_and_lookup_by_phone(self, storage):
        contact = await storage.create_contact("+919876543210", name="Direct Call +919876543210")
        found = await storage.get_contact_by_phone("+919876543210")
        assert found.id == contact.id
        assert found.name == "Direct Call +919876543210"

    @pytest.mark.asyncio
    async def test_create_twice_merges(self, storage):
        first = await storage.create_contact("+919876543210", name="Ravi")
        second = await storage.create_contact("+919876543210", email="ravi@gmail.com")
        assert second.id == first.id
        assert second.name == "Ravi"
        assert second.email == "ravi@gmail.com"

    @pytest.mark.asyncio
    async def test_blank_values_never_erase(self, storage):
        contact = await storage.create_contact("+919876543210", email="ravi@gmail.com")
        updated = await storage.update_contact(contact.id, {"email": "", "company": "  ", "name": "Ravi"})
        assert updated.email == "ravi@gmail.com"
        assert updated.company == ""
        assert updated.name == "Ravi"

    @pytest.mark.asyncio
    async def test_returned_records_are_copies(self, storage):
        contact = await storage.create_contact("+919876543210")
        contact.name = "mutated"
        assert (await storage.get_contact(contact.id)).name == ""

    @pytest.mark.asyncio
    async def test_update_missing_contact(self, storage):
        assert await storage.update_contact("nope", {"name": "x"}) is None


class TestCalls:
    @pytest.mark.asyncio
    async def test_create_and_lookup_by_carrier_id(self, storage):
        call = await storage.create_call("CA1", "camp_1", phone_number="+919876543210")
        found = await storage.get_call_by_carrier_id("CA1")
        assert found.id == call.id
        assert found.status == "initiated"
        assert found.phone_number == "+919876543210"

    @pytest.mark.asyncio
    async def test_status_only_moves_forward(self, storage):
        call = await storage.create_call("CA1", "camp_1")
        assert (await storage.update_call(call.id, {"status": "active"})).status == "active"
        assert (await storage.update_call(call.id, {"status": "initiated"})).status == "active"
        assert (await storage.update_call(call.id, {"status": "completed"})).status == "completed"
        assert (await storage.update_call(call.id, {"status": "failed"})).status == "completed"

    @pytest.mark.asyncio
    async def test_rejected_status_still_applies_other_fields(self, storage):
        call = await storage.create_call("CA1", "camp_1", status="completed")
        updated = await storage.update_call(call.id, {"status": "active", "end_reason": "busy"})
        assert updated.status == "completed"
        assert updated.end_reason == "busy"

    @pytest.mark.asyncio
    async def test_unknown_fields_ignored(self, storage):
        call = await storage.create_call("CA1", "camp_1")
        updated = await storage.update_call(call.id, {"mood": "happy", "whatsapp_sent": True})
        assert updated.whatsapp_sent is True
        assert not hasattr(updated, "mood")

    @pytest.mark.asyncio
    async def test_messages_in_insert_order(self, storage):
        call = await storage.create_call("CA1", "camp_1")
        await storage.create_call_message(call.id, "assistant", "Hello")
        await storage.create_call_message(call.id, "user", "Hi")
        messages = await storage.get_call_messages(call.id)
        assert [(m.role, m.content) for m in messages] == [("assistant", "Hello"), ("user", "Hi")]

    @pytest.mark.asyncio
    async def test_messages_sorted_by_turn(self, storage):
        call = await storage.create_call("CA1", "camp_1")
        await storage.create_call_message(call.id, "assistant", "Hello", turn=0)
        await storage.create_call_message(call.id, "user", "second", turn=2)
        await storage.create_call_message(call.id, "user", "first", turn=1)
        await storage.create_call_message(call.id, "assistant", "reply to first", turn=1)
        messages = await storage.get_call_messages(call.id)
        assert [m.content for m in messages] == ["Hello", "first", "reply to first", "second"]


class TestCampaigns:
    @pytest.mark.asyncio
    async def test_get_campaign(self, storage):
        campaign = await storage.get_campaign("camp_1")
        assert campaign.name == "Lab Partners"
        assert await storage.get_campaign("missing") is None

    @pytest.mark.asyncio
    async def test_add_campaign(self, storage):
        storage.add_campaign(Campaign(id="camp_2", name="Other", intro_line="Hello"))
        assert (await storage.get_campaign("camp_2")).intro_line == "Hello"

    def test_load_campaigns_ignores_unknown_keys(self, tmp_path):
        path = tmp_path / "campaigns.json"
        path.write_text(json.dumps([
            {"id": "c1", "name": "One", "intro_line": "Hi", "language": "hi", "owner": "sales"},
            {"id": "c2", "name": "Two", "intro_line": "Hello"},
        ]))
        campaigns = load_campaigns(str(path))
        assert [c.id for c in campaigns] == ["c1", "c2"]
        assert campaigns[0].language == "hi"
        assert campaigns[1].tts_model == "eleven_turbo_v2"


@pytest.mark.asyncio
async def test_empty_storage():
    storage = InMemoryStorage()
    assert await storage.get_call_by_carrier_id("CA1") is None
    assert await storage.get_contact_by_phone("+1") is None
    assert await storage.get_call_messages("x") == []
