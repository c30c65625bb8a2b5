from __future__ import annotations

from typing import List

from .base import BaseExecutor
from ..models import OutboundMessage


class PromptExecutor(BaseExecutor):
    """Questions and greetings: optional media first, then the prompt"""

    def announce(self, step, cursor, flow) -> List[OutboundMessage]:
        out: List[OutboundMessage] = []
        media = self.media_message(step, step.media_kind)
        if media:
            out.append(media)
        text = self.text_message(step, cursor)
        if text:
            out.append(text)
        return out


class MediaExecutor(BaseExecutor):
    """Image/video/audio/document cards: the file, then its caption"""

    def announce(self, step, cursor, flow) -> List[OutboundMessage]:
        out: List[OutboundMessage] = []
        media = self.media_message(step, step.media_kind)
        if media:
            out.append(media)
        else:
            self.logger.warning(f"Media step '{step.id}' has no media URL; sending caption only")
        text = self.text_message(step, cursor)
        if text:
            out.append(text)
        return out


class EndExecutor(BaseExecutor):
    """Closing card: its prompt, falling back to the flow's end text"""

    def announce(self, step, cursor, flow) -> List[OutboundMessage]:
        text = self.format_prompt(step.prompt or flow.end_text, cursor)
        return [OutboundMessage(text=text, step_id=step.id)]
