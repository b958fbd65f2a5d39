from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictStr


class EventFields(BaseModel):
    """One analytics instrumentation point as exchanged with the model backend."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    action: StrictStr
    view: StrictStr
    click: StrictStr
    event_name: StrictStr = Field(alias="eventName")
    event_properties: StrictStr = Field(alias="eventProperties")

    def content_key(self) -> tuple[str, str, str, str, str]:
        return (self.action, self.view, self.click, self.event_name, self.event_properties)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, include=set(EventFields.model_fields))


class Event(EventFields):
    id: str

    def without_id(self) -> EventFields:
        return EventFields.model_validate(self.to_wire())


class GenerateEventsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    description: str = ""
    image_base64: Optional[str] = Field(default=None, alias="imageBase64")


class GenerateEventsResponse(BaseModel):
    events: List[Event]


class RefineEventsRequest(BaseModel):
    events: List[EventFields]
    instruction: str = Field(min_length=1)


class RefineEventsResponse(BaseModel):
    events: List[Event]
    message: str


class ErrorResponse(BaseModel):
    error: str


class SystemPrompts(BaseModel):
    generate: str
    refine: str
