from __future__ import annotations

from typing import List, Optional
from datetime import datetime
from pydantic import BaseModel, Field


class SlotItem(BaseModel):
    name: str
    value: str


class Message(BaseModel):
    text: str
    type: str = "text"
    media_url: Optional[str] = None
    step_id: Optional[str] = None


class StepState(BaseModel):
    index: int
    id: Optional[str] = None
    step_type: Optional[str] = None
    successors: List[str] = Field(default_factory=list)
    start_node: Optional[str] = None


class SessionInfo(BaseModel):
    id: str
    flow_id: str
    state: str
    is_complete: bool
    outcome: Optional[str] = None
    seconds_left: int = 0
    started_at: datetime
    last_updated: datetime


class APIData(BaseModel):
    messages: List[Message]
    session: SessionInfo
    step: StepState
    slots: List[SlotItem]
    valid: bool = True
    handled_by: Optional[str] = None
    trigger_id: Optional[str] = None
    diagnostics: List[str] = Field(default_factory=list)


class APIResponse(BaseModel):
    data: APIData
