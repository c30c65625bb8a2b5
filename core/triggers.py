"""
Keyword triggers ("super robot"): canned answers fired by words in a message,
before the flow gets to see it.

A trigger passes when
  * any keyword is found (substring, exact equality, or fuzzy), or it has no keywords,
  * all required words are present,
  * no excluded word is present.
"""
from __future__ import annotations

import logging
from typing import Iterable, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .executors.base import MEDIA_LABELS
from .fuzzy import DEFAULT_SENSITIVITY, fuzzy_contains, levenshtein_distance
from .models import MessageType, OutboundMessage

logger = logging.getLogger(__name__)


class TriggerActions(BaseModel):
    """Side effects applied to the conversation when the trigger fires"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    change_status: Optional[Literal["human_handoff", "active", "in_progress", "completed"]] = Field(
        default=None, alias="changeStatus")
    add_tags: List[str] = Field(default_factory=list, alias="addTags")
    remove_tags: List[str] = Field(default_factory=list, alias="removeTags")


class TriggerItem(BaseModel):
    """Catalog entry listed under the trigger response"""
    id: str = ""
    name: str
    price: Optional[str] = None
    description: Optional[str] = None


class Trigger(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    keywords: List[str] = Field(default_factory=list)
    required_words: List[str] = Field(default_factory=list, alias="requiredWords")
    excluded_words: List[str] = Field(default_factory=list, alias="excludedWords")
    response: str
    is_active: bool = Field(default=True, alias="isActive")
    match_type: Literal["contains", "exact"] = Field(default="contains", alias="matchType")
    use_fuzzy_match: bool = Field(default=False, alias="useFuzzyMatch")
    media_url: Optional[str] = Field(default=None, alias="mediaUrl")
    media_kind: Optional[MessageType] = Field(default=None, alias="mediaType")
    actions: Optional[TriggerActions] = None
    items: List[TriggerItem] = Field(default_factory=list)

    @model_validator(mode="after")
    def _needs_some_word(self) -> "Trigger":
        self.keywords = [k.strip() for k in self.keywords if k.strip()]
        self.required_words = [w.strip() for w in self.required_words if w.strip()]
        self.excluded_words = [w.strip() for w in self.excluded_words if w.strip()]
        if not self.keywords and not self.required_words:
            raise ValueError(f"trigger '{self.id}' needs at least one keyword or required word")
        return self


def render_response(trigger: Trigger) -> str:
    """Trigger response with its catalog items listed underneath"""
    if not trigger.items:
        return trigger.response

    lines = [trigger.response, ""]
    for item in trigger.items:
        line = f"• {item.name}"
        if item.price:
            line += f": {item.price}"
        lines.append(line)
        if item.description:
            lines.append(f"  {item.description}")
    return "\n".join(lines)


def trigger_messages(trigger: Trigger) -> List[OutboundMessage]:
    """Media first (when set), then the rendered text"""
    out: List[OutboundMessage] = []
    if trigger.media_url:
        kind = trigger.media_kind or MessageType.IMAGE
        out.append(OutboundMessage(
            text=MEDIA_LABELS.get(kind.value, MEDIA_LABELS["image"]),
            type=kind,
            media_url=trigger.media_url,
        ))
    out.append(OutboundMessage(text=render_response(trigger)))
    return out


class TriggerMatcher:
    def __init__(self, triggers: Iterable[Trigger], sensitivity: int = DEFAULT_SENSITIVITY):
        self.triggers: List[Trigger] = list(triggers)
        self.sensitivity = sensitivity

    def match(self, text: str) -> Optional[Trigger]:
        """First active trigger that passes, in list order"""
        message = (text or "").strip().lower()
        if not message:
            return None

        for trigger in self.triggers:
            if not trigger.is_active:
                continue
            if self._passes(trigger, message):
                logger.debug(f"Trigger '{trigger.id}' matched")
                return trigger
        return None

    def _passes(self, trigger: Trigger, message: str) -> bool:
        if trigger.keywords and not any(self._keyword_hit(trigger, k.lower(), message)
                                        for k in trigger.keywords):
            return False
        if not all(w.lower() in message for w in trigger.required_words):
            return False
        if any(w.lower() in message for w in trigger.excluded_words):
            return False
        return True

    def _keyword_hit(self, trigger: Trigger, keyword: str, message: str) -> bool:
        if trigger.match_type == "exact":
            if message == keyword:
                return True
            return (trigger.use_fuzzy_match and len(keyword) > self.sensitivity
                    and levenshtein_distance(message, keyword) <= self.sensitivity)
        if keyword in message:
            return True
        return trigger.use_fuzzy_match and fuzzy_contains(message, keyword, self.sensitivity)
