"""Persistence facade for campaigns, contacts, calls and call messages.

`Storage` is the interface the orchestrator consumes. `InMemoryStorage` is a
dict-backed implementation for development and tests; all data is lost on
restart.
"""

import json
import logging
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, fields, replace
from typing import Any, Optional

from callflow.states import can_advance_status

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return uuid.uuid4().hex[:16]


@dataclass
class Campaign:
    id: str
    name: str
    intro_line: str
    ai_prompt: str = ""
    language: str = "en"
    voice_id: Optional[str] = None
    voice_config: dict = field(default_factory=dict)
    tts_model: str = "eleven_turbo_v2"
    whatsapp_message: Optional[str] = None


@dataclass
class Contact:
    id: str
    phone: str
    name: str = ""
    email: str = ""
    whatsapp_number: str = ""
    company: str = ""
    notes: str = ""
    created_at: float = field(default_factory=time.time)


@dataclass
class Call:
    id: str
    carrier_call_id: str
    campaign_id: str
    contact_id: Optional[str] = None
    phone_number: str = ""
    status: str = "initiated"
    started_at: float = field(default_factory=time.time)
    ended_at: Optional[float] = None
    duration: Optional[int] = None
    conversation_summary: Optional[str] = None
    success_score: Optional[int] = None
    whatsapp_sent: bool = False
    collected_data: dict = field(default_factory=dict)
    end_reason: Optional[str] = None


@dataclass
class CallMessage:
    id: str
    call_id: str
    role: str
    content: str
    turn: int = 0  # conversation turn the row belongs to; 0 is the intro
    created_at: float = field(default_factory=time.time)


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def load_campaigns(path: str) -> list[Campaign]:
    """Read campaigns from a JSON file holding a list of campaign objects."""
    with open(path, encoding="utf-8") as fh:
        raw = json.load(fh)
    known = {f.name for f in fields(Campaign)}
    campaigns = [Campaign(**{k: v for k, v in item.items() if k in known}) for item in raw]
    logger.info("Loaded %d campaigns from %s", len(campaigns), path)
    return campaigns


class Storage(ABC):
    """Interface every storage backend implements."""

    # ── Campaigns ─────────────────────────────────────────

    @abstractmethod
    async def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        ...

    # ── Contacts ──────────────────────────────────────────

    @abstractmethod
    async def get_contact(self, contact_id: str) -> Optional[Contact]:
        ...

    @abstractmethod
    async def get_contact_by_phone(self, phone: str) -> Optional[Contact]:
        ...

    @abstractmethod
    async def create_contact(self, phone: str, **values) -> Contact:
        ...

    @abstractmethod
    async def update_contact(self, contact_id: str, values: dict) -> Optional[Contact]:
        """Merge `values` into the contact. Blank values never erase known fields."""

    # ── Calls ─────────────────────────────────────────────

    @abstractmethod
    async def create_call(self, carrier_call_id: str, campaign_id: str, **values) -> Call:
        ...

    @abstractmethod
    async def get_call_by_carrier_id(self, carrier_call_id: str) -> Optional[Call]:
        ...

    @abstractmethod
    async def update_call(self, call_id: str, values: dict) -> Optional[Call]:
        """Apply `values`. A status change is applied only when it moves forward."""

    # ── Messages ──────────────────────────────────────────

    @abstractmethod
    async def create_call_message(self, call_id: str, role: str, content: str, turn: int = 0) -> CallMessage:
        ...

    @abstractmethod
    async def get_call_messages(self, call_id: str) -> list[CallMessage]:
        """Messages ordered by turn; rows of one turn keep their insertion order."""


class InMemoryStorage(Storage):
    def __init__(self, campaigns: Optional[list[Campaign]] = None):
        self._campaigns: dict[str, Campaign] = {c.id: c for c in (campaigns or [])}
        self._contacts: dict[str, Contact] = {}
        self._calls: dict[str, Call] = {}
        self._messages: dict[str, list[CallMessage]] = {}

        # Indexes
        self._phone_index: dict[str, str] = {}     # phone -> contact id
        self._carrier_index: dict[str, str] = {}   # carrier call id -> call id

    def add_campaign(self, campaign: Campaign) -> None:
        self._campaigns[campaign.id] = campaign

    async def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        campaign = self._campaigns.get(campaign_id)
        return replace(campaign) if campaign else None

    async def get_contact(self, contact_id: str) -> Optional[Contact]:
        contact = self._contacts.get(contact_id)
        return replace(contact) if contact else None

    async def get_contact_by_phone(self, phone: str) -> Optional[Contact]:
        contact_id = self._phone_index.get(phone)
        if not contact_id:
            return None
        return await self.get_contact(contact_id)

    async def create_contact(self, phone: str, **values) -> Contact:
        existing = self._phone_index.get(phone)
        if existing:
            # Phone is the natural key; creating twice merges instead
            logger.info("Contact for %s already exists, merging", phone)
            return await self.update_contact(existing, values)
        contact = Contact(id=_new_id(), phone=phone)
        self._apply(contact, values, additive=True)
        self._contacts[contact.id] = contact
        self._phone_index[phone] = contact.id
        return replace(contact)

    async def update_contact(self, contact_id: str, values: dict) -> Optional[Contact]:
        contact = self._contacts.get(contact_id)
        if contact is None:
            return None
        self._apply(contact, values, additive=True)
        return replace(contact)

    async def create_call(self, carrier_call_id: str, campaign_id: str, **values) -> Call:
        call = Call(id=_new_id(), carrier_call_id=carrier_call_id, campaign_id=campaign_id)
        self._apply(call, values)
        self._calls[call.id] = call
        self._carrier_index[carrier_call_id] = call.id
        self._messages[call.id] = []
        return replace(call)

    async def get_call(self, call_id: str) -> Optional[Call]:
        call = self._calls.get(call_id)
        return replace(call) if call else None

    async def get_call_by_carrier_id(self, carrier_call_id: str) -> Optional[Call]:
        call_id = self._carrier_index.get(carrier_call_id)
        if not call_id:
            return None
        return await self.get_call(call_id)

    async def update_call(self, call_id: str, values: dict) -> Optional[Call]:
        call = self._calls.get(call_id)
        if call is None:
            return None
        values = dict(values)
        status = values.pop("status", None)
        if status is not None:
            if can_advance_status(call.status, status):
                call.status = status
            else:
                logger.debug("Ignoring status %s -> %s for call %s", call.status, status, call_id)
        self._apply(call, values)
        return replace(call)

    async def create_call_message(self, call_id: str, role: str, content: str, turn: int = 0) -> CallMessage:
        message = CallMessage(id=_new_id(), call_id=call_id, role=role, content=content, turn=turn)
        self._messages.setdefault(call_id, []).append(message)
        return message

    async def get_call_messages(self, call_id: str) -> list[CallMessage]:
        return sorted(self._messages.get(call_id, []), key=lambda m: m.turn)

    @staticmethod
    def _apply(record, values: dict, additive: bool = False) -> None:
        known = {f.name for f in fields(record)} - {"id"}
        for key, value in (values or {}).items():
            if key not in known:
                logger.debug("Ignoring unknown %s field %s", type(record).__name__, key)
                continue
            if additive and _blank(value):
                continue
            setattr(record, key, value)
