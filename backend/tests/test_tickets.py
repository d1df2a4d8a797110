"""
Tests for ticket issuance and bulk CSV import.
"""

from datetime import timedelta

import pytest

from chatfunnel.engine.errors import ScriptUnavailableError
from chatfunnel.services.tickets import (
    TICKET_PREFIX,
    create_ticket,
    generate_ticket_code,
    import_tickets_from_csv,
    parse_leads_csv,
)


def test_ticket_code_format():
    code = generate_ticket_code()
    assert code.startswith(TICKET_PREFIX)
    assert len(code) == len(TICKET_PREFIX) + 8
    assert code[len(TICKET_PREFIX):].isalnum()


@pytest.mark.asyncio
class TestCreateTicket:

    async def test_issues_ticket_and_link(self, store, funnel, clock):
        await store.save_funnel(funnel)
        issued = await create_ticket(
            store,
            funnel.slug,
            {"nome": "Ana"},
            chat_base_url="https://chat.example.com/",
            ip_address="10.0.0.1",
            now=clock.now(),
        )

        assert issued.chat_url == f"https://chat.example.com/chat/{funnel.slug}?ticket={issued.ticket_code}"
        assert issued.expires_at == clock.now() + timedelta(hours=24)
        stored = store.tickets[issued.ticket_code]
        assert stored.funnel_id == funnel.id
        assert stored.lead_data == {"nome": "Ana"}
        assert stored.ip_address == "10.0.0.1"
        assert stored.used_at is None

    async def test_custom_expiration(self, store, funnel, clock):
        await store.save_funnel(funnel)
        issued = await create_ticket(store, funnel.slug, {}, expiration_hours=2, now=clock.now())
        assert issued.expires_at == clock.now() + timedelta(hours=2)
        assert store.tickets[issued.ticket_code].ip_address == "unknown"

    async def test_unknown_funnel(self, store):
        with pytest.raises(ScriptUnavailableError):
            await create_ticket(store, "nao-existe", {"nome": "Ana"})

    async def test_code_collision_retried(self, store, funnel, monkeypatch):
        await store.save_funnel(funnel)
        codes = iter(["TKT-AAAAAAAA", "TKT-AAAAAAAA", "TKT-BBBBBBBB"])
        monkeypatch.setattr("chatfunnel.services.tickets.generate_ticket_code", lambda: next(codes))

        first = await create_ticket(store, funnel.slug, {})
        second = await create_ticket(store, funnel.slug, {})
        assert (first.ticket_code, second.ticket_code) == ("TKT-AAAAAAAA", "TKT-BBBBBBBB")


class TestCsv:

    def test_headers_normalised_and_blanks_dropped(self):
        leads = parse_leads_csv(" Nome ,EMAIL,Contacto\nAna,ana@example.com,\nRui,,841234567\n")
        assert leads == [
            {"nome": "Ana", "email": "ana@example.com"},
            {"nome": "Rui", "contacto": "841234567"},
        ]

    def test_numbers_kept_as_text(self):
        assert parse_leads_csv("valor\n005000\n") == [{"valor": "005000"}]

    def test_empty_content(self):
        assert parse_leads_csv("") == []

    @pytest.mark.asyncio
    async def test_import_issues_one_ticket_per_row(self, store, funnel):
        await store.save_funnel(funnel)
        issued = await import_tickets_from_csv(store, funnel.slug, "nome,email\nAna,a@x.co\nRui,r@x.co\n")

        assert len(issued) == 2
        assert sorted(t.lead_data["nome"] for t in store.tickets.values()) == ["Ana", "Rui"]
