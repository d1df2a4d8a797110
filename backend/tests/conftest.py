from datetime import timedelta

import pytest

from chatfunnel.engine.blocks import parse_block
from chatfunnel.engine.clock import VirtualClock
from chatfunnel.engine.records import Funnel, LeadTicket
from chatfunnel.engine.store import InMemorySessionStore
from chatfunnel.services.attachments import AttachmentUploader


class FakeUploader(AttachmentUploader):
    """Records uploads instead of talking to object storage."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.uploads = []

    async def upload(self, path, data, content_type):
        if self.fail:
            raise RuntimeError("storage unavailable")
        self.uploads.append((path, data, content_type))
        return f"https://cdn.example.com/chat-attachments/{path}"


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def clock():
    return VirtualClock()


@pytest.fixture
def uploader():
    return FakeUploader()


@pytest.fixture
def funnel():
    return Funnel(
        id="funnel-1",
        name="Empréstimo Rápido",
        slug="emprestimo-rapido",
        profile_name="Ana | Atendimento",
    )


@pytest.fixture
def make_blocks(funnel):
    """Build blocks from (type, content) pairs, ids b0, b1, ... in order."""

    def build(*specs, funnel_id=None):
        return [
            parse_block({
                "id": f"b{index}",
                "funnel_id": funnel_id or funnel.id,
                "type": block_type,
                "content": content,
                "order_index": index,
            })
            for index, (block_type, content) in enumerate(specs)
        ]

    return build


@pytest.fixture
def make_ticket(funnel, clock):
    def build(code="TKT-TEST0001", lead_data=None, **overrides):
        fields = {
            "ticket_code": code,
            "funnel_id": funnel.id,
            "lead_data": lead_data if lead_data is not None else {"nome": "Ana", "email": "ana@example.com"},
            "created_at": clock.now(),
            "expires_at": clock.now() + timedelta(hours=24),
        }
        fields.update(overrides)
        return LeadTicket(**fields)

    return build
