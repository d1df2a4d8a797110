import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from pydantic import BaseModel

from chatfunnel.api.deps import get_clock, get_registry, get_store, get_uploader
from chatfunnel.engine.clock import Clock
from chatfunnel.engine.errors import (
    AttachmentUploadError,
    InputNotAcceptedError,
    InvalidAttachmentError,
    InvalidReplyError,
    MalformedScriptError,
    ScriptUnavailableError,
)
from chatfunnel.engine.interpreter import FunnelInterpreter
from chatfunnel.engine.loader import load_run
from chatfunnel.engine.store import SessionStore
from chatfunnel.services.attachments import AttachmentUploader
from chatfunnel.services.session_registry import RunRegistry

logger = logging.getLogger(__name__)
router = APIRouter()


class ReplyRequest(BaseModel):
    text: str


def _resolve_run(registry: RunRegistry, token: str) -> FunnelInterpreter:
    run = registry.resolve(token)
    if run is None:
        raise HTTPException(status_code=404, detail="Chat run not found or expired")
    return run


@router.post("/chat/{slug}/runs", status_code=201)
async def start_run(
    slug: str,
    ticket: Optional[str] = None,
    store: SessionStore = Depends(get_store),
    clock: Clock = Depends(get_clock),
    registry: RunRegistry = Depends(get_registry),
    uploader: Optional[AttachmentUploader] = Depends(get_uploader),
):
    """
    Load the funnel behind slug and start a chat run. The returned token
    addresses the run in every later call.
    """
    logger.info(f"[CHAT] Run requested for funnel '{slug}'")
    try:
        loaded = await load_run(store, slug, ticket_code=ticket, now=clock.now())
    except ScriptUnavailableError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except MalformedScriptError as e:
        logger.error(f"[CHAT] Funnel '{slug}' has a malformed script: {e}")
        raise HTTPException(status_code=422, detail=str(e))

    run = FunnelInterpreter(
        loaded.funnel,
        loaded.script,
        store,
        clock,
        ticket=loaded.ticket,
        uploader=uploader,
        notices=loaded.notices,
    )
    token = registry.register(run)
    await run.start()
    return {"token": token, **run.snapshot()}


@router.get("/chat/runs/{token}")
async def get_run(token: str, registry: RunRegistry = Depends(get_registry)):
    return _resolve_run(registry, token).snapshot()


@router.post("/chat/runs/{token}/reply")
async def reply(token: str, body: ReplyRequest, registry: RunRegistry = Depends(get_registry)):
    run = _resolve_run(registry, token)
    try:
        entry = await run.submit_reply(body.text)
    except InputNotAcceptedError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except InvalidReplyError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {"entry": entry.model_dump(mode="json"), "run": run.snapshot()}


@router.post("/chat/runs/{token}/attachment")
async def upload_attachment(
    token: str,
    file: UploadFile = File(...),
    registry: RunRegistry = Depends(get_registry),
):
    run = _resolve_run(registry, token)
    data = await file.read()
    logger.info(f"[CHAT] Attachment '{file.filename}' ({len(data)} bytes) for run {run.run_id}")
    try:
        entry = await run.submit_attachment(data, file.filename or "", file.content_type or "")
    except InputNotAcceptedError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except InvalidAttachmentError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except AttachmentUploadError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"entry": entry.model_dump(mode="json"), "run": run.snapshot()}
