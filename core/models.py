from __future__ import annotations
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr


# ============================================================================
# Base Configuration
# ============================================================================

class BaseConfig(BaseModel):
    """Base configuration with common settings"""
    model_config = ConfigDict(
        extra="ignore",
        validate_assignment=True,
        arbitrary_types_allowed=True,
    )


# ============================================================================
# Cursor states
# ============================================================================

NOT_STARTED_INDEX = -1
TERMINATED_INDEX = -99


class CursorState(str, Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"          # step being announced
    WAITING = "waiting"          # announced, timer armed, waiting for the user
    COMPLETED = "completed"
    HANDED_OFF = "handed_off"

    @property
    def is_terminal(self) -> bool:
        return self in (CursorState.COMPLETED, CursorState.HANDED_OFF)


class Outcome(str, Enum):
    COMPLETED = "completed"
    HANDOFF = "handoff"


class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"


# ============================================================================
# Outbound messages
# ============================================================================

class OutboundMessage(BaseConfig):
    """One bot turn handed to the delivery sink"""
    text: str
    type: MessageType = MessageType.TEXT
    media_url: Optional[str] = None
    step_id: Optional[str] = None


# ============================================================================
# Execution cursor
# ============================================================================

class ExecutionCursor(BaseConfig):
    """Where one conversation is in its flow, plus the answers collected so far"""
    conversation_id: str
    flow_id: str
    step_index: int = NOT_STARTED_INDEX
    state: CursorState = CursorState.NOT_STARTED
    collected_data: Dict[str, str] = Field(default_factory=dict)
    has_ended: bool = False
    outcome: Optional[Outcome] = None

    # Countdown shown to the agent while waiting (informational)
    seconds_left: int = 0

    started_at: datetime = Field(default_factory=datetime.now)
    last_updated: datetime = Field(default_factory=datetime.now)
    diagnostics: List[str] = Field(default_factory=list)

    # Live timer tokens; never serialised
    _timer: Any = PrivateAttr(default=None)
    _timer_generation: int = PrivateAttr(default=0)

    # ========================================
    # Transitions
    # ========================================

    def move_to(self, index: int, state: CursorState):
        self.step_index = index
        self.state = state
        self.last_updated = datetime.now()

    def record(self, key: str, value: str):
        self.collected_data[key] = value
        self.last_updated = datetime.now()

    def finish(self, outcome: Outcome):
        self.step_index = TERMINATED_INDEX
        self.state = CursorState.HANDED_OFF if outcome == Outcome.HANDOFF else CursorState.COMPLETED
        self.outcome = outcome
        self.has_ended = True
        self.seconds_left = 0
        self.last_updated = datetime.now()

    def add_diagnostic(self, message: str):
        self.diagnostics.append(message)

    # ========================================
    # Views
    # ========================================

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def summary(self) -> str:
        """Collected answers as 'key: value' lines"""
        return "\n".join(f"{k}: {v}" for k, v in self.collected_data.items())

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


# ============================================================================
# Turn result
# ============================================================================

class TurnResult(BaseConfig):
    """What one interpreter event did"""
    conversation_id: str
    accepted: bool = True
    valid: bool = True
    messages: List[OutboundMessage] = Field(default_factory=list)
    state: CursorState
    step_index: int
    step_id: Optional[str] = None
    collected_data: Dict[str, str] = Field(default_factory=dict)
    outcome: Optional[Outcome] = None
    diagnostics: List[str] = Field(default_factory=list)
