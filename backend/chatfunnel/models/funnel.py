from beanie import Document
from pydantic import Field
from typing import Optional
from datetime import datetime, timezone

from chatfunnel.engine.records import Funnel


class FunnelModel(Document):
    funnel_id: str = Field(..., index=True)
    name: str = Field(..., example="Empréstimo Rápido")
    slug: str = Field(..., index=True, example="emprestimo-rapido")
    profile_name: str = Field(default="", example="Ana | Atendimento")
    profile_image_url: Optional[str] = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Settings:
        name = "funnels"

    @classmethod
    def from_record(cls, funnel: Funnel) -> "FunnelModel":
        return cls(
            funnel_id=funnel.id,
            name=funnel.name,
            slug=funnel.slug,
            profile_name=funnel.profile_name,
            profile_image_url=funnel.profile_image_url,
            is_active=funnel.is_active,
            created_at=funnel.created_at,
            updated_at=funnel.updated_at,
        )

    def to_record(self) -> Funnel:
        return Funnel(
            id=self.funnel_id,
            name=self.name,
            slug=self.slug,
            profile_name=self.profile_name,
            profile_image_url=self.profile_image_url,
            is_active=self.is_active,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )
