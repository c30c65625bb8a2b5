from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
import logging

from flowgraph.schema import Flow, StepBase
from ..models import ExecutionCursor, MessageType, OutboundMessage

logger = logging.getLogger(__name__)


MEDIA_LABELS: Dict[str, str] = {
    "image": "📷 Imagem",
    "video": "🎥 Vídeo",
    "audio": "🎵 Áudio",
    "document": "📄 Documento",
}


class BaseExecutor(ABC):
    """Turns a step into the outbound messages that announce it"""

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    def announce(self, step: StepBase, cursor: ExecutionCursor, flow: Flow) -> List[OutboundMessage]:
        """Messages to send when the conversation reaches ``step``"""
        pass

    def format_prompt(self, template: str, cursor: ExecutionCursor,
                      extra_context: Dict[str, Any] = None) -> str:
        """Fill {placeholders} from the collected answers; leave the text alone if that fails"""
        if "{" not in template:
            return template
        try:
            context = {
                **cursor.collected_data,
                'conversation_id': cursor.conversation_id,
                **(extra_context or {})
            }
            return template.format(**context)
        except (KeyError, IndexError, ValueError) as e:
            self.logger.debug(f"Prompt formatting skipped: {e}")
            return template

    def media_message(self, step: StepBase, kind: Optional[str]) -> Optional[OutboundMessage]:
        url = getattr(step, "media_url", None)
        if not url:
            return None
        kind = kind or "image"
        return OutboundMessage(
            text=MEDIA_LABELS.get(kind, MEDIA_LABELS["image"]),
            type=MessageType(kind),
            media_url=url,
            step_id=step.id,
        )

    def text_message(self, step: StepBase, cursor: ExecutionCursor) -> Optional[OutboundMessage]:
        if not step.prompt:
            return None
        return OutboundMessage(text=self.format_prompt(step.prompt, cursor), step_id=step.id)
