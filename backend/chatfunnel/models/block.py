from beanie import Document
from pydantic import Field
from typing import Optional
from datetime import datetime, timezone

from chatfunnel.engine.blocks import Block, BlockType, content_to_dict, parse_block


class BlockModel(Document):
    block_id: str = Field(..., index=True)
    funnel_id: str = Field(..., index=True)
    type: BlockType = Field(..., example="text")
    content: dict = Field(default_factory=dict)  # Editor payload, camelCase keys
    order_index: int = Field(..., example=0)
    next_block_id: Optional[str] = None
    position_x: float = 0
    position_y: float = 0
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Settings:
        name = "funnel_blocks"

    @classmethod
    def from_block(cls, block: Block) -> "BlockModel":
        return cls(
            block_id=block.id,
            funnel_id=block.funnel_id,
            type=block.type,
            content=content_to_dict(block),
            order_index=block.order_index,
            next_block_id=block.next_block_id,
            position_x=block.position_x,
            position_y=block.position_y,
            created_at=block.created_at or datetime.now(timezone.utc),
        )

    def to_block(self) -> Block:
        return parse_block({
            "id": self.block_id,
            "funnel_id": self.funnel_id,
            "type": self.type,
            "content": self.content,
            "order_index": self.order_index,
            "next_block_id": self.next_block_id,
            "position_x": self.position_x,
            "position_y": self.position_y,
            "created_at": self.created_at,
        })
