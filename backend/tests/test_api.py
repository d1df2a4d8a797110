"""
HTTP tests for the chat, funnel, ticket and conversation routers.
"""

import httpx
import pytest
import pytest_asyncio

from chatfunnel.api import deps
from chatfunnel.engine.blocks import parse_block
from chatfunnel.main import app
from chatfunnel.services.session_registry import RunRegistry
from conftest import FakeUploader

GRAPH = {
    "nodes": [
        {"id": "n1", "block_type": "text", "content": {"text": "Olá {{customer_name}}"}, "position": {"x": 0, "y": 0}},
        {"id": "n2", "block_type": "question", "content": {"text": "Nome?"}, "position": {"x": 0, "y": 100}},
        {"id": "n3", "block_type": "end", "content": {}, "position": {"x": 0, "y": 200}},
    ],
    "edges": [
        {"id": "n1-n2", "source": "n1", "target": "n2"},
        {"id": "n2-n3", "source": "n2", "target": "n3"},
    ],
}


@pytest.fixture
def overrides(store, clock, uploader):
    registry = RunRegistry(secret_key="test-secret")
    app.dependency_overrides[deps.get_store] = lambda: store
    app.dependency_overrides[deps.get_clock] = lambda: clock
    app.dependency_overrides[deps.get_registry] = lambda: registry
    app.dependency_overrides[deps.get_uploader] = lambda: uploader
    yield registry
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(overrides):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http


async def create_funnel(client, slug="emprestimo-rapido"):
    response = await client.post("/api/funnels", json={"name": "Empréstimo", "slug": slug, "profile_name": "Ana"})
    assert response.status_code == 201
    funnel_id = response.json()["id"]
    response = await client.put(f"/api/funnels/{funnel_id}/graph", json=GRAPH)
    assert response.status_code == 200
    return funnel_id


@pytest.mark.asyncio
class TestFunnels:

    async def test_duplicate_slug(self, client):
        await create_funnel(client)
        response = await client.post("/api/funnels", json={"name": "Outro", "slug": "emprestimo-rapido"})
        assert response.status_code == 409

    async def test_graph_saved_and_loaded(self, client, store):
        funnel_id = await create_funnel(client)

        blocks = await store.list_blocks(funnel_id)
        assert [b.type for b in blocks] == ["text", "question", "end"]

        response = await client.get(f"/api/funnels/{funnel_id}/graph")
        body = response.json()
        assert [n["id"] for n in body["nodes"]] == [b.id for b in blocks]
        assert len(body["edges"]) == 2

    async def test_invalid_graph(self, client):
        funnel_id = await create_funnel(client)
        graph = {"nodes": GRAPH["nodes"], "edges": GRAPH["edges"] + [{"source": "n3", "target": "n1"}]}
        response = await client.put(f"/api/funnels/{funnel_id}/graph", json=graph)
        assert response.status_code == 422

    async def test_unknown_funnel_graph(self, client):
        assert (await client.get("/api/funnels/nope/graph")).status_code == 404
        assert (await client.put("/api/funnels/nope/graph", json=GRAPH)).status_code == 404


@pytest.mark.asyncio
class TestChat:

    async def start(self, client, query=""):
        response = await client.post(f"/api/chat/emprestimo-rapido/runs{query}")
        assert response.status_code == 201
        return response.json()

    async def test_full_conversation(self, client, clock, store):
        await create_funnel(client)
        run = await self.start(client)
        assert run["state"] == "running"
        assert run["funnel"]["profile_name"] == "Ana"

        await clock.run_until_idle()
        snapshot = (await client.get(f"/api/chat/runs/{run['token']}")).json()
        assert snapshot["state"] == "waiting_for_input"
        assert [e["text"] for e in snapshot["transcript"]] == ["Olá {{customer_name}}", "Nome?"]

        response = await client.post(f"/api/chat/runs/{run['token']}/reply", json={"text": "Maria"})
        assert response.status_code == 200
        assert response.json()["entry"]["text"] == "Maria"

        again = await client.post(f"/api/chat/runs/{run['token']}/reply", json={"text": "Maria"})
        assert again.status_code == 409

        await clock.run_until_idle()
        snapshot = (await client.get(f"/api/chat/runs/{run['token']}")).json()
        assert snapshot["state"] == "completed"
        assert snapshot["conversation_status"] == "completed"

    async def test_seeded_run(self, client, clock, store):
        await create_funnel(client)
        ticket = (await client.post("/api/tickets", json={
            "funnel_slug": "emprestimo-rapido",
            "lead_data": {"nome": "Ana"},
        })).json()

        run = await self.start(client, f"?ticket={ticket['ticket_code']}")
        assert run["state"] == "agent_handoff"
        assert run["indicator"] == "searching_agent"

        await clock.run_until_idle()
        snapshot = (await client.get(f"/api/chat/runs/{run['token']}")).json()
        assert snapshot["transcript"][1]["text"] == "Olá Ana"

        reused = await self.start(client, f"?ticket={ticket['ticket_code']}")
        assert reused["notices"] == [{"level": "warning", "message": "Este ticket já foi utilizado."}]

    async def test_unknown_slug(self, client):
        response = await client.post("/api/chat/nao-existe/runs")
        assert response.status_code == 404
        assert response.json()["detail"] == "Funil não encontrado ou inativo"

    async def test_malformed_script(self, client, store, funnel):
        await store.save_funnel(funnel)
        await store.replace_blocks(funnel.id, [
            parse_block({"id": "a", "type": "text", "order_index": 0, "next_block_id": "b"}),
            parse_block({"id": "b", "type": "text", "order_index": 1, "next_block_id": "a"}),
        ])
        response = await client.post(f"/api/chat/{funnel.slug}/runs")
        assert response.status_code == 422

    async def test_bad_token(self, client):
        assert (await client.get("/api/chat/runs/not-a-token")).status_code == 404

    async def test_invalid_reply(self, client, clock, store, funnel):
        await store.save_funnel(funnel)
        await store.replace_blocks(funnel.id, [
            parse_block({"id": "q", "type": "question", "content": {"questionType": "email"}}),
        ])
        run = (await client.post(f"/api/chat/{funnel.slug}/runs")).json()
        await clock.run_until_idle()

        response = await client.post(f"/api/chat/runs/{run['token']}/reply", json={"text": "sem arroba"})
        assert response.status_code == 422


@pytest.mark.asyncio
class TestAttachments:

    async def waiting_token(self, client, clock):
        await create_funnel(client)
        run = (await client.post("/api/chat/emprestimo-rapido/runs")).json()
        await clock.run_until_idle()
        return run["token"]

    async def test_upload(self, client, clock, uploader):
        token = await self.waiting_token(client, clock)
        response = await client.post(
            f"/api/chat/runs/{token}/attachment",
            files={"file": ("bi.png", b"\x89PNG", "image/png")},
        )
        assert response.status_code == 200
        assert response.json()["entry"]["attachment_type"] == "image"
        assert len(uploader.uploads) == 1

    async def test_wrong_type(self, client, clock):
        token = await self.waiting_token(client, clock)
        response = await client.post(
            f"/api/chat/runs/{token}/attachment",
            files={"file": ("bi.txt", b"texto", "text/plain")},
        )
        assert response.status_code == 422

    async def test_storage_failure(self, client, clock):
        app.dependency_overrides[deps.get_uploader] = lambda: FakeUploader(fail=True)
        token = await self.waiting_token(client, clock)
        response = await client.post(
            f"/api/chat/runs/{token}/attachment",
            files={"file": ("bi.png", b"\x89PNG", "image/png")},
        )
        assert response.status_code == 502


@pytest.mark.asyncio
class TestTickets:

    async def test_issue(self, client, store):
        await create_funnel(client)
        response = await client.post(
            "/api/tickets",
            json={"funnel_slug": "emprestimo-rapido", "lead_data": {"nome": "Ana"}, "chat_base_url": "https://chat.example.com"},
            headers={"x-forwarded-for": "203.0.113.7, 10.0.0.1"},
        )
        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["chat_url"] == f"https://chat.example.com/chat/emprestimo-rapido?ticket={body['ticket_code']}"
        assert store.tickets[body["ticket_code"]].ip_address == "203.0.113.7"

    async def test_issue_unknown_funnel(self, client):
        response = await client.post("/api/tickets", json={"funnel_slug": "nope", "lead_data": {}})
        assert response.status_code == 404

    async def test_import_csv(self, client, store):
        await create_funnel(client)
        response = await client.post(
            "/api/tickets/import",
            data={"funnel_slug": "emprestimo-rapido"},
            files={"file": ("leads.csv", "Nome,Email\nAna,a@x.co\nRui,r@x.co\n".encode(), "text/csv")},
        )
        assert response.status_code == 201
        assert response.json()["count"] == 2
        assert len(store.tickets) == 2


@pytest.mark.asyncio
class TestConversations:

    async def test_transcript_and_export(self, client, clock):
        await create_funnel(client)
        run = (await client.post("/api/chat/emprestimo-rapido/runs")).json()
        await clock.run_until_idle()
        await client.post(f"/api/chat/runs/{run['token']}/reply", json={"text": "Maria"})
        await clock.run_until_idle()

        response = await client.get(f"/api/conversations/{run['conversation_id']}/transcript")
        assert response.status_code == 200
        body = response.json()
        assert body["lead_name"] == "Lead sem nome"
        assert [e["author"] for e in body["entries"]] == ["bot", "bot", "user"]

        export = await client.get(f"/api/conversations/{run['conversation_id']}/export")
        assert export.status_code == 200
        assert "Lead: Maria" in export.text
        assert export.headers["content-disposition"].endswith(f'conversa-{run["conversation_id"]}.txt"')

    async def test_unknown_conversation(self, client):
        assert (await client.get("/api/conversations/nope/transcript")).status_code == 404
        assert (await client.get("/api/conversations/nope/export")).status_code == 404
