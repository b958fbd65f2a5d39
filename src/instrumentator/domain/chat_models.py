from __future__ import annotations

from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


Role = Literal["user", "model"]


class SessionState(str, Enum):
    IDLE = "idle"
    GENERATING = "generating"
    REFINING = "refining"


class ChatMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    role: Role
    text: str
    timestamp: int
    image_data: Optional[str] = Field(default=None, alias="imageData")
