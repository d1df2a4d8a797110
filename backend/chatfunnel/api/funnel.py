import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from chatfunnel.api.deps import get_store
from chatfunnel.authoring.graph import GraphEdge, GraphNode, compile_graph, graph_from_blocks
from chatfunnel.engine.errors import GraphValidationError
from chatfunnel.engine.records import Funnel
from chatfunnel.engine.store import SessionStore

logger = logging.getLogger(__name__)
router = APIRouter()


class FunnelRequest(BaseModel):
    name: str = Field(..., example="Empréstimo Rápido")
    slug: str = Field(..., example="emprestimo-rapido")
    profile_name: str = ""
    profile_image_url: Optional[str] = None
    is_active: bool = True


class GraphRequest(BaseModel):
    nodes: List[GraphNode]
    edges: List[GraphEdge] = Field(default_factory=list)


class GraphResponse(BaseModel):
    funnel_id: str
    nodes: List[GraphNode]
    edges: List[GraphEdge]


@router.post("/funnels", status_code=201)
async def create_funnel(body: FunnelRequest, store: SessionStore = Depends(get_store)):
    logger.info(f"[FUNNEL] Creating funnel '{body.slug}'")
    if await store.get_funnel_by_slug(body.slug):
        raise HTTPException(status_code=409, detail=f"Slug '{body.slug}' is already in use")

    funnel = Funnel(**body.model_dump())
    await store.save_funnel(funnel)
    logger.info(f"[FUNNEL] Funnel created: {funnel.id}")
    return funnel.model_dump(mode="json")


@router.put("/funnels/{funnel_id}/graph", response_model=GraphResponse)
async def save_graph(funnel_id: str, body: GraphRequest, store: SessionStore = Depends(get_store)):
    """
    Replace the funnel's script with the compiled editor graph. Blocks get
    fresh ids, so the response carries the graph as it is now stored.
    """
    funnel = await store.get_funnel(funnel_id)
    if not funnel:
        raise HTTPException(status_code=404, detail="Funnel not found")

    try:
        blocks = compile_graph(funnel_id, body.nodes, body.edges)
    except GraphValidationError as e:
        logger.warning(f"[FUNNEL] Graph rejected for funnel {funnel_id}: {e}")
        raise HTTPException(status_code=422, detail=str(e))

    await store.replace_blocks(funnel_id, blocks)
    funnel.updated_at = datetime.now(timezone.utc)
    await store.save_funnel(funnel)
    logger.info(f"[FUNNEL] Saved {len(blocks)} blocks for funnel {funnel_id}")

    nodes, edges = graph_from_blocks(blocks)
    return GraphResponse(funnel_id=funnel_id, nodes=nodes, edges=edges)


@router.get("/funnels/{funnel_id}/graph", response_model=GraphResponse)
async def load_graph(funnel_id: str, store: SessionStore = Depends(get_store)):
    if not await store.get_funnel(funnel_id):
        raise HTTPException(status_code=404, detail="Funnel not found")
    nodes, edges = graph_from_blocks(await store.list_blocks(funnel_id))
    return GraphResponse(funnel_id=funnel_id, nodes=nodes, edges=edges)
