from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, model_validator


END = "END"
DEFAULT_ERROR_PROMPT = "Formato inválido. Por favor tente novamente."
DEFAULT_END_TEXT = "Atendimento finalizado com sucesso."


# ============================================================================
# Base Configuration
# ============================================================================

class BaseConfig(BaseModel):
    """Base configuration with common settings"""
    model_config = ConfigDict(
        extra="ignore",
        populate_by_name=True,
        validate_assignment=True,
    )


# ============================================================================
# Step Types
# ============================================================================

class StepType(str, Enum):
    WELCOME = "welcome"
    NAME = "name"
    EMAIL = "email"
    PHONE = "phone"
    DATE = "date"
    MENU = "menu"
    LOCATION = "location"
    QUESTION = "question"
    CUSTOM = "custom"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"
    END = "end"


class ValidationKind(str, Enum):
    """Input checks applied to a reply. TEXT is what the dashboard saves for free text."""
    NONE = "none"
    TEXT = "text"
    EMAIL = "email"
    PHONE = "phone"
    NUMBER = "number"
    DATE = "date"


PromptStepType = Literal[
    "welcome", "name", "email", "phone", "date", "menu",
    "location", "question", "custom",
]
MediaStepType = Literal["image", "video", "audio", "document"]

MEDIA_STEP_TYPES = frozenset(["image", "video", "audio", "document"])


# ============================================================================
# Edges
# ============================================================================

class Position(BaseConfig):
    """Canvas coordinates. Layout only, never read by graph logic."""
    x: float = 0.0
    y: float = 0.0


class Route(BaseConfig):
    """Conditional edge tested against the user's last reply"""
    id: str
    condition: str
    target_id: str = Field(alias="targetStepId")


# ============================================================================
# Steps
# ============================================================================

class StepBase(BaseConfig):
    id: str
    prompt: str = Field(default="", alias="question")
    field_name: str = Field(default="", alias="fieldName")
    validation: ValidationKind = ValidationKind.NONE
    error_prompt: Optional[str] = Field(default=None, alias="errorMessage")
    skip_wait: bool = Field(default=False, alias="skipWait")
    default_next: Optional[str] = Field(default=None, alias="nextStepId")
    routes: List[Route] = Field(default_factory=list)

    # Author-facing metadata
    custom_label: Optional[str] = Field(default=None, alias="customLabel")
    position: Optional[Position] = None

    @property
    def is_media(self) -> bool:
        return False

    @property
    def is_end(self) -> bool:
        return False

    def targets(self) -> List[str]:
        """Every id this step can jump to, default edge first, then routes in order."""
        out: List[str] = []
        if self.default_next:
            out.append(self.default_next)
        out.extend(r.target_id for r in self.routes)
        return out


class PromptStep(StepBase):
    """A bot turn that asks something (or just greets, when skip_wait is set)"""
    step_type: PromptStepType = Field(default="question", alias="stepType")
    # Optional media sent before the question
    media_url: Optional[str] = Field(default=None, alias="mediaUrl")
    media_kind: Optional[Literal["image", "video"]] = Field(default=None, alias="mediaType")


class MediaStep(StepBase):
    """Sends a file; the prompt is its caption"""
    step_type: MediaStepType = Field(alias="stepType")
    media_url: Optional[str] = Field(default=None, alias="mediaUrl")

    @property
    def is_media(self) -> bool:
        return True

    @property
    def media_kind(self) -> str:
        return self.step_type


class EndStep(StepBase):
    """Closing message of the flow. Has no outgoing edge."""
    step_type: Literal["end"] = Field(default="end", alias="stepType")

    @property
    def is_end(self) -> bool:
        return True

    @model_validator(mode="after")
    def _no_outgoing_edges(self) -> "EndStep":
        if self.default_next or self.routes:
            raise ValueError(f"end step '{self.id}' cannot have outgoing edges")
        return self


def _step_tag(value: Any) -> str:
    if isinstance(value, dict):
        raw = value.get("step_type", value.get("stepType")) or "question"
    else:
        raw = getattr(value, "step_type", "question")
    raw = getattr(raw, "value", raw)
    if raw == "end":
        return "end"
    if raw in MEDIA_STEP_TYPES:
        return "media"
    return "prompt"


Step = Annotated[
    Union[
        Annotated[PromptStep, Tag("prompt")],
        Annotated[MediaStep, Tag("media")],
        Annotated[EndStep, Tag("end")],
    ],
    Discriminator(_step_tag),
]


# ============================================================================
# Flow
# ============================================================================

class Flow(BaseConfig):
    """A chatbot script: steps connected by default edges and routes"""
    id: str
    name: str = ""
    description: str = ""
    is_active: bool = Field(default=True, alias="isActive")
    welcome_message: str = Field(default="", alias="welcomeMessage")
    end_message: str = Field(default="", alias="endMessage")
    inactivity_timeout_seconds: Optional[int] = Field(default=None, alias="inactivityTimeout")
    # Fall through to the next step in list order when a step has no edge
    linear_fallback: bool = Field(default=False, alias="linearFallback")
    steps: List[Step] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_step_ids(self) -> "Flow":
        seen = set()
        for step in self.steps:
            if step.id in seen:
                raise ValueError(f"duplicate step id: {step.id}")
            if step.id == END:
                raise ValueError(f"'{END}' is reserved and cannot be used as a step id")
            seen.add(step.id)
        return self

    # ========================================
    # Lookups
    # ========================================

    def step_ids(self) -> List[str]:
        return [s.id for s in self.steps]

    def index_of(self, step_id: Optional[str]) -> int:
        """Index of the step with this id, -1 when absent"""
        for idx, step in enumerate(self.steps):
            if step.id == step_id:
                return idx
        return -1

    def get_step(self, step_id: str) -> Optional[StepBase]:
        idx = self.index_of(step_id)
        return self.steps[idx] if idx >= 0 else None

    def has_target(self, target_id: Optional[str]) -> bool:
        return target_id == END or self.index_of(target_id) >= 0

    def entry_index(self) -> int:
        """The first welcome step when present, else the first step (-1 for an empty flow)"""
        for idx, step in enumerate(self.steps):
            if step.step_type == StepType.WELCOME.value:
                return idx
        return 0 if self.steps else -1

    # ========================================
    # Derived messages
    # ========================================

    def _first_prompt_of(self, step_type: str) -> str:
        for step in self.steps:
            if step.step_type == step_type:
                return step.prompt
        return ""

    @property
    def welcome_text(self) -> str:
        return self.welcome_message or self._first_prompt_of("welcome")

    @property
    def end_text(self) -> str:
        return self.end_message or self._first_prompt_of("end") or DEFAULT_END_TEXT

    def to_dict(self) -> Dict[str, Any]:
        """Dashboard (camelCase) shape, stable across load/save"""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ============================================================================
# Analysis results
# ============================================================================

@dataclass
class CycleDetectionResult:
    success: bool
    order: List[str]
    cyclic_nodes: List[str]
    start_nodes: List[str] = field(default_factory=list)
    end_nodes: List[str] = field(default_factory=list)


@dataclass
class ValidationReport:
    ok: bool
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    entry: Optional[str] = None
    end_nodes: List[str] = field(default_factory=list)
    dangling: List[str] = field(default_factory=list)
    self_loops: List[str] = field(default_factory=list)
    cyclic_nodes: List[str] = field(default_factory=list)
    unreachable_nodes: List[str] = field(default_factory=list)
