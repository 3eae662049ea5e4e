"""Docker discovery models."""

from typing import List, Optional

from pydantic import BaseModel, Field


class DiscoveredService(BaseModel):
    """A Swarm service carrying the managed-domain label."""
    service_name: str = Field("", description="Swarm service name")
    label: str = Field(..., description="Raw host label value")
    email: Optional[str] = Field(None, description="Contact email label value")


class ReconcileResult(BaseModel):
    """Changes applied to the registry by one reconciliation."""
    added: List[str] = Field(default_factory=list)
    removed: List[str] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed)
