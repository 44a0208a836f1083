"""File change feed models."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from codelab.workspace_engine.models.enums import ChangeType


class FileChange(BaseModel):
    """A single create/modify/delete event.  Ephemeral."""

    model_config = ConfigDict(frozen=True)

    path: str
    type: ChangeType
    timestamp: datetime

    @property
    def key(self) -> tuple[str, ChangeType]:
        return (self.path, self.type)
