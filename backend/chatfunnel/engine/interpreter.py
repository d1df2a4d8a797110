import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from chatfunnel import config
from chatfunnel.engine.blocks import (
    AudioBlock,
    Block,
    DelayBlock,
    EffectBlock,
    EndBlock,
    MediaBlock,
    QuestionBlock,
    Script,
    TextBlock,
)
from chatfunnel.engine.clock import Clock
from chatfunnel.engine.errors import (
    AttachmentUploadError,
    InputNotAcceptedError,
    InvalidAttachmentError,
)
from chatfunnel.engine.loader import TICKET_USED_MESSAGE
from chatfunnel.engine.records import (
    Conversation,
    Funnel,
    LeadResponse,
    LeadTicket,
    Notice,
    TranscriptEntry,
    new_id,
)
from chatfunnel.engine.store import SessionStore
from chatfunnel.engine.variables import format_ticket_message, merge_last_response, substitute_variables
from chatfunnel.services.attachments import AttachmentUploader

logger = logging.getLogger(__name__)

ATTACHMENT_RESPONSE_TEXT = "Enviou uma imagem"
ATTACHMENT_LAST_RESPONSE = "Imagem enviada"
ATTACHMENT_UPLOAD_FAILED_MESSAGE = "Erro ao enviar imagem. Tente novamente."
ATTACHMENT_INVALID_TYPE_MESSAGE = "Por favor, selecione uma imagem válida (JPG, PNG, GIF ou WEBP)"
ATTACHMENT_TOO_LARGE_MESSAGE = "A imagem deve ter no máximo 5MB"
SEED_MESSAGE_ID = "lead-ticket-intro"


class RunState(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    AGENT_HANDOFF = "agent_handoff"
    RUNNING = "running"
    WAITING_FOR_INPUT = "waiting_for_input"
    COMPLETED = "completed"


class Indicator(str, Enum):
    SEARCHING_AGENT = "searching_agent"
    AGENT_FOUND = "agent_found"
    TYPING = "typing"
    RECORDING = "recording"


@dataclass(frozen=True)
class Pacing:
    """Fixed beats between chat steps, in milliseconds."""

    message_delay_ms: int = 500
    text_advance_ms: int = 800
    media_advance_ms: int = 1000
    reply_advance_ms: int = 800
    agent_search_ms: int = 2000
    agent_found_ms: int = 1500
    seed_message_ms: int = 1000


class FunnelInterpreter:
    """
    Replays one funnel script to one chat client.

    The run is a state machine driven by three kinds of events: the start
    trigger, timers elapsing on the injected clock, and replies from the
    client. Timers are bound to the block they were scheduled for, so each
    block is dispatched at most once and the cursor only ever moves forward.
    """

    def __init__(
        self,
        funnel: Funnel,
        script: Script,
        store: SessionStore,
        clock: Clock,
        ticket: Optional[LeadTicket] = None,
        uploader: Optional[AttachmentUploader] = None,
        notices: Optional[List[Notice]] = None,
        pacing: Pacing = Pacing(),
    ):
        self.run_id = str(uuid.uuid4())
        self.funnel = funnel
        self.script = script
        self.store = store
        self.clock = clock
        self.ticket = ticket
        self.uploader = uploader
        self.pacing = pacing

        self.state = RunState.IDLE
        self.indicator: Optional[Indicator] = None
        self.cursor: Optional[str] = None
        self.conversation: Optional[Conversation] = None
        self.transcript: List[TranscriptEntry] = []
        self.notices: List[Notice] = list(notices or [])
        self.execution_path: List[str] = []
        self._conversation_id = new_id()

        # Only captured lead data feeds substitution; replies never do
        self._variables: Optional[Dict[str, Any]] = (
            {"ticket_code": ticket.ticket_code, **ticket.lead_data} if ticket else None
        )

        self._handlers: Dict[str, Callable[[Any], Awaitable[None]]] = {
            "text": self._execute_text_block,
            "question": self._execute_question_block,
            "image": self._execute_media_block,
            "video": self._execute_media_block,
            "audio": self._execute_media_block,
            "typing_effect": self._execute_effect_block,
            "recording_effect": self._execute_effect_block,
            "delay": self._execute_delay_block,
            "end": self._execute_end_block,
        }

    def _log_flow(self, message: str, level: str = "info", **kwargs):
        """Structured logging for run execution"""
        log_data = {
            "run_id": self.run_id,
            "funnel_id": self.funnel.id,
            "conversation_id": self.conversation.id if self.conversation else None,
            "message": message,
            **kwargs,
        }
        if level == "info":
            logger.info(f"[FLOW] {log_data}")
        elif level == "warning":
            logger.warning(f"[FLOW] {log_data}")
        elif level == "error":
            logger.error(f"[FLOW] {log_data}")
        elif level == "debug":
            logger.debug(f"[FLOW] {log_data}")

    async def _persist(self, description: str, write: Callable[..., Awaitable[None]], *args) -> bool:
        # Writes are best effort: the local transcript stays authoritative
        try:
            await write(*args)
            return True
        except Exception as e:
            self._log_flow(f"Persistence failed ({description}): {e}", level="error")
            logger.error(f"[PERSISTENCE_ERROR] {description} failed for run {self.run_id}", exc_info=True)
            return False

    def _schedule(self, delay_ms: int, event: str, handler: Callable[[Any], Awaitable[None]], block: Optional[Block] = None):
        block_id = block.id if block else None

        async def fire():
            if block_id is not None and self.cursor != block_id:
                self._log_flow(f"Stale timer '{event}' ignored", level="warning", block_id=block_id, cursor=self.cursor)
                return
            if self.state == RunState.COMPLETED:
                self._log_flow(f"Timer '{event}' ignored, run completed", level="debug")
                return
            self._log_flow(f"Timer elapsed: {event}", level="debug", block_id=block_id)
            await handler(block)

        self.clock.call_later(delay_ms, fire)

    # Start

    async def start(self) -> bool:
        """
        Begin the run. Only the first call does anything; the state leaves
        IDLE before any await, so a repeated trigger is a no-op.
        """
        if self.state != RunState.IDLE:
            self._log_flow(f"Start ignored, run already in state {self.state.value}", level="warning")
            return False

        self.state = RunState.INITIALIZING
        if self.ticket and not await self._claim_ticket():
            self._drop_ticket()
        self._log_flow(f"Run started with {len(self.script)} blocks", seeded=self.ticket is not None)

        if self.ticket:
            self.state = RunState.AGENT_HANDOFF
            self.indicator = Indicator.SEARCHING_AGENT
            self._schedule(self.pacing.agent_search_ms, "agent_found", self._agent_found)
        else:
            await self._open_session()
        return True

    async def _claim_ticket(self) -> bool:
        # The ticket is bound to the conversation this run will open
        try:
            claimed = await self.store.consume_ticket(
                self.ticket.ticket_code, self._conversation_id, self.clock.now()
            )
        except Exception as e:
            self._log_flow(f"Ticket claim failed: {e}", level="error", ticket_code=self.ticket.ticket_code)
            return False
        if not claimed:
            self._log_flow("Ticket already claimed by another run", level="warning", ticket_code=self.ticket.ticket_code)
        return claimed

    def _drop_ticket(self):
        self.ticket = None
        self._variables = None
        self.notices.append(Notice(level="warning", message=TICKET_USED_MESSAGE))

    async def _agent_found(self, _block):
        self.indicator = Indicator.AGENT_FOUND
        self._schedule(self.pacing.agent_found_ms, "handoff_done", self._finish_handoff)

    async def _finish_handoff(self, _block):
        self.indicator = None
        await self._open_session()

    async def _open_session(self):
        now = self.clock.now()
        lead_data = {"ticket_code": self.ticket.ticket_code, **self.ticket.lead_data} if self.ticket else {}
        self.conversation = Conversation(
            id=self._conversation_id,
            funnel_id=self.funnel.id,
            status="active",
            lead_data=lead_data,
            started_at=now,
            last_activity_at=now,
        )
        await self._persist("create conversation", self.store.create_conversation, self.conversation)
        self._log_flow("Conversation session opened")

        if not self.ticket:
            await self._dispatch(self.script.first())
            return

        self._add_entry(
            author="user",
            entry_id=SEED_MESSAGE_ID,
            block_type="text",
            text=format_ticket_message(self.ticket.ticket_code, self.ticket.lead_data),
        )
        self.state = RunState.RUNNING
        self._schedule(self.pacing.seed_message_ms, "begin", self._begin)

    async def _begin(self, _block):
        await self._dispatch(self.script.first())

    # Dispatch

    async def _dispatch(self, block: Optional[Block]):
        if block is None:
            await self._complete("Script exhausted")
            return

        self.cursor = block.id
        self.state = RunState.RUNNING
        self.execution_path.append(block.id)
        self._log_flow(f"Executing block {block.id} of type {block.type}", block_id=block.id, block_type=block.type)
        await self._handlers[block.type](block)

    async def _advance(self, block: Block):
        await self._dispatch(self.script.next_after(block))

    async def _execute_text_block(self, block: TextBlock):
        self._schedule(self.pacing.message_delay_ms, "show_text", self._show_text, block)

    async def _show_text(self, block: TextBlock):
        self._add_entry(
            author="bot",
            entry_id=block.id,
            block_type=block.type,
            text=substitute_variables(block.content.text, self._variables),
        )
        self._schedule(self.pacing.text_advance_ms, "advance", self._advance, block)

    async def _execute_question_block(self, block: QuestionBlock):
        self._schedule(self.pacing.message_delay_ms, "show_question", self._show_question, block)

    async def _show_question(self, block: QuestionBlock):
        self._add_entry(
            author="bot",
            entry_id=block.id,
            block_type=block.type,
            text=substitute_variables(block.content.text, self._variables),
            options=list(block.content.options),
        )
        self.state = RunState.WAITING_FOR_INPUT
        self._log_flow("Waiting for reply", block_id=block.id)

    async def _execute_media_block(self, block: Union[MediaBlock, AudioBlock]):
        self._schedule(self.pacing.message_delay_ms, "show_media", self._show_media, block)

    async def _show_media(self, block: Union[MediaBlock, AudioBlock]):
        caption = ""
        if isinstance(block, MediaBlock):
            caption = substitute_variables(block.content.text, self._variables)
        self._add_entry(
            author="bot",
            entry_id=block.id,
            block_type=block.type,
            text=caption,
            media_url=block.content.media_url,
        )
        self._schedule(self.pacing.media_advance_ms, "advance", self._advance, block)

    async def _execute_effect_block(self, block: EffectBlock):
        self.indicator = Indicator.TYPING if block.type == "typing_effect" else Indicator.RECORDING
        self._schedule(block.content.duration, "effect_done", self._finish_effect, block)

    async def _finish_effect(self, block: EffectBlock):
        self.indicator = None
        await self._advance(block)

    async def _execute_delay_block(self, block: DelayBlock):
        self._schedule(block.content.duration, "advance", self._advance, block)

    async def _execute_end_block(self, block: EndBlock):
        await self._complete("End block reached")

    async def _complete(self, reason: str):
        now = self.clock.now()
        self.state = RunState.COMPLETED
        self.indicator = None
        self.conversation.status = "completed"
        self.conversation.completed_at = now
        self._log_flow(f"Conversation completed: {reason}")
        await self._persist("mark conversation completed", self.store.mark_completed, self.conversation.id, now)

    # Replies

    @property
    def accepting_input(self) -> bool:
        return self.state in (RunState.WAITING_FOR_INPUT, RunState.COMPLETED)

    def _pending_question(self) -> Optional[QuestionBlock]:
        """Question the next reply answers, or None once the run is terminal."""
        if self.state == RunState.COMPLETED:
            return None
        if self.state != RunState.WAITING_FOR_INPUT:
            raise InputNotAcceptedError(f"Run is {self.state.value}, not waiting for input")
        return self.script.get(self.cursor)

    async def submit_reply(self, text: str) -> TranscriptEntry:
        """Accept a text reply to the pending question, or a free-form message after the end."""
        question = self._pending_question()
        answer = question.content.check_reply(text) if question else (text or "").strip()
        if not answer:
            raise InputNotAcceptedError("Empty message")
        return await self._accept_reply(question, text=answer, response_text=answer, last_response=answer)

    async def submit_attachment(self, data: bytes, filename: str, content_type: str) -> TranscriptEntry:
        """Upload an image reply; on failure the question stays pending."""
        self._pending_question()

        if content_type not in config.ALLOWED_ATTACHMENT_TYPES:
            raise InvalidAttachmentError(ATTACHMENT_INVALID_TYPE_MESSAGE)
        if len(data) > config.MAX_ATTACHMENT_BYTES:
            raise InvalidAttachmentError(ATTACHMENT_TOO_LARGE_MESSAGE)
        if self.uploader is None:
            raise AttachmentUploadError(ATTACHMENT_UPLOAD_FAILED_MESSAGE)

        # Storage keys never carry client-supplied text
        extension = config.ATTACHMENT_EXTENSIONS[content_type]
        path = f"{self.conversation.id}/{int(self.clock.now().timestamp() * 1000)}.{extension}"
        try:
            url = await self.uploader.upload(path, data, content_type)
        except Exception as e:
            self._log_flow(f"Attachment upload failed: {e}", level="error", path=path)
            raise AttachmentUploadError(ATTACHMENT_UPLOAD_FAILED_MESSAGE) from e

        # Re-read: the run may have moved on while the upload was in flight
        question = self._pending_question()
        return await self._accept_reply(
            question,
            text="",
            response_text=ATTACHMENT_RESPONSE_TEXT,
            last_response=ATTACHMENT_LAST_RESPONSE,
            attachment_url=url,
            attachment_type="image",
        )

    async def _accept_reply(
        self,
        question: Optional[QuestionBlock],
        text: str,
        response_text: str,
        last_response: str,
        attachment_url: Optional[str] = None,
        attachment_type: Optional[str] = None,
    ) -> TranscriptEntry:
        if question is not None:
            # Leave WAITING_FOR_INPUT before any await so a second reply is refused
            self.state = RunState.RUNNING

        now = self.clock.now()
        entry = self._add_entry(
            author="user",
            entry_id=f"user-{new_id()}",
            text=text,
            attachment_url=attachment_url,
            attachment_type=attachment_type,
        )

        response = LeadResponse(
            conversation_id=self.conversation.id,
            block_id=question.id if question else None,
            response_text=response_text,
            attachment_url=attachment_url,
            attachment_type=attachment_type,
            created_at=now,
        )
        await self._persist("save lead response", self.store.add_response, response)

        self.conversation.lead_data = merge_last_response(self.conversation.lead_data, last_response)
        self.conversation.last_activity_at = now
        await self._persist(
            "record conversation activity",
            self.store.record_activity,
            self.conversation.id,
            self.conversation.lead_data,
            now,
        )

        if question is not None:
            self._log_flow("Reply accepted", block_id=question.id)
            self._schedule(self.pacing.reply_advance_ms, "advance", self._advance, question)
        else:
            self._log_flow("Message accepted after completion")
        return entry

    # Transcript

    def _add_entry(self, author: str, entry_id: str, block_type: Optional[str] = None, **fields) -> TranscriptEntry:
        entry = TranscriptEntry(
            id=entry_id,
            author=author,
            block_type=block_type,
            created_at=self.clock.now(),
            **fields,
        )
        self.transcript.append(entry)
        return entry

    def snapshot(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "funnel": {
                "id": self.funnel.id,
                "slug": self.funnel.slug,
                "profile_name": self.funnel.profile_name,
                "profile_image_url": self.funnel.profile_image_url,
            },
            "state": self.state.value,
            "indicator": self.indicator.value if self.indicator else None,
            "cursor": self.cursor,
            "accepting_input": self.accepting_input,
            "conversation_id": self.conversation.id if self.conversation else None,
            "conversation_status": self.conversation.status if self.conversation else None,
            "transcript": [entry.model_dump(mode="json") for entry in self.transcript],
            "notices": [notice.model_dump() for notice in self.notices],
        }
