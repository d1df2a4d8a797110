import re
from datetime import datetime
from typing import Annotated, Dict, Iterable, List, Literal, Optional, Union, get_args

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from chatfunnel.engine.errors import InvalidReplyError, MalformedScriptError

BlockType = Literal[
    "text",
    "question",
    "image",
    "video",
    "audio",
    "typing_effect",
    "recording_effect",
    "delay",
    "end",
]
BLOCK_TYPES = get_args(BlockType)

QuestionType = Literal["text", "email", "phone", "multiple_choice"]

DEFAULT_EFFECT_DURATION_MS = 2000
DEFAULT_DELAY_DURATION_MS = 1000

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PHONE_PATTERN = re.compile(r"^\+?[\d\s().-]+$")
MIN_PHONE_DIGITS = 7


def _duration_or_default(value, default: int) -> int:
    # Editor stores 0 or nothing when the field was never touched
    if value in (None, "", 0):
        return default
    duration = int(value)
    if duration < 0:
        raise ValueError("duration must be a positive number of milliseconds")
    return duration


class _Content(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class TextContent(_Content):
    text: str = ""

    @field_validator("text", mode="before")
    @classmethod
    def _none_as_empty(cls, value):
        return value or ""


class QuestionValidation(_Content):
    pattern: Optional[str] = None


class QuestionContent(_Content):
    text: str = ""
    question_type: QuestionType = Field(default="text", alias="questionType")
    options: List[str] = Field(default_factory=list)
    validation: Optional[QuestionValidation] = None

    @field_validator("text", mode="before")
    @classmethod
    def _none_as_empty(cls, value):
        return value or ""

    @field_validator("options", mode="before")
    @classmethod
    def _none_as_no_options(cls, value):
        return value or []

    def check_reply(self, reply: str) -> str:
        """
        Validate a free-text reply against the question type and return the
        normalised answer. Multiple choice replies are returned as the option's
        own spelling.
        """
        answer = (reply or "").strip()
        if not answer:
            raise InvalidReplyError("Digite sua resposta.")

        if self.question_type == "email" and not EMAIL_PATTERN.match(answer):
            raise InvalidReplyError("Por favor, informe um email válido.")

        if self.question_type == "phone":
            digits = sum(1 for char in answer if char.isdigit())
            if not PHONE_PATTERN.match(answer) or digits < MIN_PHONE_DIGITS:
                raise InvalidReplyError("Por favor, informe um número de telefone válido.")

        if self.question_type == "multiple_choice" and self.options:
            chosen = next(
                (option for option in self.options if option.strip().casefold() == answer.casefold()),
                None,
            )
            if chosen is None:
                raise InvalidReplyError("Por favor, escolha uma das opções.")
            answer = chosen

        if self.validation and self.validation.pattern:
            if not re.fullmatch(self.validation.pattern, answer):
                raise InvalidReplyError("Resposta em formato inválido.")

        return answer


class MediaContent(_Content):
    media_url: str = Field(default="", alias="mediaUrl")
    text: str = ""

    @field_validator("media_url", "text", mode="before")
    @classmethod
    def _none_as_empty(cls, value):
        return value or ""


class AudioContent(_Content):
    media_url: str = Field(default="", alias="mediaUrl")

    @field_validator("media_url", mode="before")
    @classmethod
    def _none_as_empty(cls, value):
        return value or ""


class EffectContent(_Content):
    duration: int = DEFAULT_EFFECT_DURATION_MS

    @field_validator("duration", mode="before")
    @classmethod
    def _default_duration(cls, value):
        return _duration_or_default(value, DEFAULT_EFFECT_DURATION_MS)


class DelayContent(_Content):
    duration: int = DEFAULT_DELAY_DURATION_MS

    @field_validator("duration", mode="before")
    @classmethod
    def _default_duration(cls, value):
        return _duration_or_default(value, DEFAULT_DELAY_DURATION_MS)


class EndContent(_Content):
    pass


class _BlockBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    funnel_id: Optional[str] = None
    order_index: int = 0
    next_block_id: Optional[str] = None
    position_x: float = 0
    position_y: float = 0
    created_at: Optional[datetime] = None

    @field_validator("content", mode="before", check_fields=False)
    @classmethod
    def _none_as_empty_content(cls, value):
        return value or {}


class TextBlock(_BlockBase):
    type: Literal["text"] = "text"
    content: TextContent = Field(default_factory=TextContent)


class QuestionBlock(_BlockBase):
    type: Literal["question"] = "question"
    content: QuestionContent = Field(default_factory=QuestionContent)


class MediaBlock(_BlockBase):
    type: Literal["image", "video"]
    content: MediaContent = Field(default_factory=MediaContent)


class AudioBlock(_BlockBase):
    type: Literal["audio"] = "audio"
    content: AudioContent = Field(default_factory=AudioContent)


class EffectBlock(_BlockBase):
    type: Literal["typing_effect", "recording_effect"]
    content: EffectContent = Field(default_factory=EffectContent)


class DelayBlock(_BlockBase):
    type: Literal["delay"] = "delay"
    content: DelayContent = Field(default_factory=DelayContent)


class EndBlock(_BlockBase):
    type: Literal["end"] = "end"
    content: EndContent = Field(default_factory=EndContent)


Block = Annotated[
    Union[TextBlock, QuestionBlock, MediaBlock, AudioBlock, EffectBlock, DelayBlock, EndBlock],
    Field(discriminator="type"),
]

_block_adapter = TypeAdapter(Block)


def parse_block(raw: Dict) -> Block:
    """Validate a raw block row (as stored by the editor) into a typed block."""
    return _block_adapter.validate_python(raw)


def content_to_dict(block: Block) -> Dict:
    """Content payload in the editor's camelCase storage format."""
    return block.content.model_dump(by_alias=True, exclude_none=True)


class Script:
    """
    Read-only, ordered view over one funnel's blocks.

    Ordering prefers a block's next_block_id and falls back to the block with
    the following order_index. The resolved chain is checked once on
    construction; a revisited block or a dangling pointer makes the script
    malformed.
    """

    def __init__(self, blocks: Iterable[Block]):
        self.blocks: List[Block] = sorted(blocks, key=lambda block: block.order_index)
        self._by_id: Dict[str, Block] = {}
        self._position: Dict[str, int] = {}
        for position, block in enumerate(self.blocks):
            if block.id in self._by_id:
                raise MalformedScriptError(f"Duplicate block id {block.id}")
            self._by_id[block.id] = block
            self._position[block.id] = position
        self._detect_loops()

    def __len__(self) -> int:
        return len(self.blocks)

    def __iter__(self):
        return iter(self.blocks)

    def get(self, block_id: str) -> Optional[Block]:
        return self._by_id.get(block_id)

    def first(self) -> Optional[Block]:
        return self.blocks[0] if self.blocks else None

    def next_after(self, block: Block) -> Optional[Block]:
        """Following block, or None when the script is exhausted."""
        if block.next_block_id:
            following = self._by_id.get(block.next_block_id)
            if following is None:
                raise MalformedScriptError(
                    f"Block {block.id} points to missing block {block.next_block_id}"
                )
            return following
        position = self._position[block.id] + 1
        return self.blocks[position] if position < len(self.blocks) else None

    def chain(self) -> List[Block]:
        """Blocks in the order a run visits them; jumped-over blocks are left out."""
        path = []
        block = self.first()
        while block is not None:
            path.append(block)
            block = self.next_after(block)
        return path

    def _detect_loops(self):
        visited = set()
        block = self.first()
        while block is not None:
            if block.id in visited:
                raise MalformedScriptError(f"Loop detected involving block {block.id}")
            visited.add(block.id)
            block = self.next_after(block)
