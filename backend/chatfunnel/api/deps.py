from typing import Optional

from chatfunnel.engine.clock import AsyncioClock, Clock
from chatfunnel.engine.store import SessionStore
from chatfunnel.services.attachments import AttachmentUploader, HttpAttachmentUploader
from chatfunnel.services.beanie_store import BeanieSessionStore
from chatfunnel.services.session_registry import RunRegistry

# Process-wide singletons; tests swap them through app.dependency_overrides
store = BeanieSessionStore()
clock = AsyncioClock()
registry = RunRegistry()
uploader = HttpAttachmentUploader()


def get_store() -> SessionStore:
    return store


def get_clock() -> Clock:
    return clock


def get_registry() -> RunRegistry:
    return registry


def get_uploader() -> Optional[AttachmentUploader]:
    return uploader


def client_ip(headers) -> str:
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return headers.get("x-real-ip") or "unknown"
