from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set

from pydantic import BaseModel, Field

from .config import BotSettings
from .interpreter import FlowInterpreter
from .models import ExecutionCursor, Outcome, OutboundMessage, TurnResult
from .triggers import Trigger, TriggerActions, TriggerMatcher, trigger_messages

logger = logging.getLogger(__name__)


class ConversationStatus(str, Enum):
    ACTIVE = "active"
    IN_PROGRESS = "in_progress"
    HUMAN_HANDOFF = "human_handoff"
    COMPLETED = "completed"


class DispatchResult(BaseModel):
    conversation_id: str
    handled_by: str = "none"   # trigger | flow | none
    status: ConversationStatus
    trigger_id: Optional[str] = None
    actions: Optional[TriggerActions] = None
    messages: List[OutboundMessage] = Field(default_factory=list)
    turn: Optional[TurnResult] = None
    tags: List[str] = Field(default_factory=list)


class ConversationDispatcher:
    """Routes one inbound message: keyword triggers first, then the flow.

    Conversations taken over by a human are left alone.
    """

    def __init__(self, interpreter: FlowInterpreter,
                 triggers: Optional[Iterable[Trigger]] = None,
                 settings: Optional[BotSettings] = None):
        self.interpreter = interpreter
        self.settings = settings or interpreter.settings
        self.trigger_matcher = TriggerMatcher(triggers or [], self.settings.fuzzy_sensitivity)
        self.statuses: Dict[str, ConversationStatus] = {}
        self.tags: Dict[str, Set[str]] = {}
        self._lock = threading.Lock()
        interpreter.finish_listeners.append(self._on_flow_finished)

    def status_of(self, conversation_id: str) -> ConversationStatus:
        return self.statuses.get(conversation_id, ConversationStatus.ACTIVE)

    def handle_message(self, conversation_id: str, text: str) -> DispatchResult:
        cursor = self.interpreter.get_cursor(conversation_id)
        if cursor is not None and cursor.outcome == Outcome.HANDOFF:
            self._set_status(conversation_id, ConversationStatus.HUMAN_HANDOFF)

        status = self.status_of(conversation_id)
        if status == ConversationStatus.HUMAN_HANDOFF:
            logger.debug(f"Conversation {conversation_id} is with a human; bot stays quiet")
            return self._result(conversation_id)

        if self.settings.super_robot_active:
            trigger = self.trigger_matcher.match(text)
            if trigger is not None:
                return self._fire_trigger(conversation_id, trigger)

        if cursor is None or cursor.is_terminal:
            # New or finished conversation: the message opens a new run of the flow
            turn = self.interpreter.start(conversation_id)
        else:
            turn = self.interpreter.on_user_reply(conversation_id, text)

        if turn.outcome == Outcome.HANDOFF:
            self._set_status(conversation_id, ConversationStatus.HUMAN_HANDOFF)
        elif turn.outcome == Outcome.COMPLETED:
            self._set_status(conversation_id, ConversationStatus.COMPLETED)
        elif turn.accepted:
            self._set_status(conversation_id, ConversationStatus.IN_PROGRESS)

        result = self._result(conversation_id, handled_by="flow" if turn.accepted else "none")
        result.messages = list(turn.messages)
        result.turn = turn
        return result

    def take_over(self, conversation_id: str):
        """A human agent takes the conversation; the flow stops and timers are cancelled"""
        self._set_status(conversation_id, ConversationStatus.HUMAN_HANDOFF)
        self.interpreter.stop(conversation_id)

    def release(self, conversation_id: str):
        """Hand the conversation back to the bot; its next message starts the flow again"""
        cursor = self.interpreter.get_cursor(conversation_id)
        if cursor is not None and cursor.is_terminal:
            self.interpreter.stop(conversation_id)
        self._set_status(conversation_id, ConversationStatus.ACTIVE)

    # ========================================
    # Helpers
    # ========================================

    def _fire_trigger(self, conversation_id: str, trigger: Trigger) -> DispatchResult:
        logger.info(f"Trigger '{trigger.id}' fired for conversation {conversation_id}")
        messages = trigger_messages(trigger)
        for message in messages:
            try:
                self.interpreter.sink.emit(conversation_id, message)
            except Exception as e:
                logger.warning(f"Delivery failed for conversation {conversation_id}: {e}")

        actions = trigger.actions
        if actions is not None:
            self._apply_actions(conversation_id, actions)

        result = self._result(conversation_id, handled_by="trigger")
        result.trigger_id = trigger.id
        result.actions = actions
        result.messages = messages
        return result

    def _on_flow_finished(self, cursor: ExecutionCursor):
        if cursor.outcome == Outcome.HANDOFF:
            self._set_status(cursor.conversation_id, ConversationStatus.HUMAN_HANDOFF)
        else:
            self._set_status(cursor.conversation_id, ConversationStatus.COMPLETED)

    def _apply_actions(self, conversation_id: str, actions: TriggerActions):
        with self._lock:
            tags = self.tags.setdefault(conversation_id, set())
            tags.update(actions.add_tags)
            tags.difference_update(actions.remove_tags)
        if actions.change_status:
            new_status = ConversationStatus(actions.change_status)
            if new_status == ConversationStatus.HUMAN_HANDOFF:
                self.take_over(conversation_id)
            else:
                self._set_status(conversation_id, new_status)

    def _set_status(self, conversation_id: str, status: ConversationStatus):
        with self._lock:
            previous = self.statuses.get(conversation_id)
            self.statuses[conversation_id] = status
        if previous != status:
            logger.debug(f"Conversation {conversation_id}: {previous} -> {status.value}")

    def _result(self, conversation_id: str, handled_by: str = "none") -> DispatchResult:
        return DispatchResult(
            conversation_id=conversation_id,
            handled_by=handled_by,
            status=self.status_of(conversation_id),
            tags=sorted(self.tags.get(conversation_id, set())),
        )
