from __future__ import annotations

import itertools
import logging
import threading
from collections import OrderedDict
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional

from flowgraph.schema import DEFAULT_ERROR_PROMPT, END, Flow, StepBase
from storage.context_store import ContextStore

from .condition_eval import ConditionEvaluator
from .config import BotSettings
from .errors import ReentrantCallError, RunawayChainError, StructuralGraphError
from .executors.factory import ExecutorFactory, executor_factory
from .models import (
    NOT_STARTED_INDEX, CursorState, ExecutionCursor, OutboundMessage, Outcome, TurnResult,
)
from .sinks import DeliverySink
from .timers import TimerHandle, TimerService
from .validation import DateParser, validate_input

logger = logging.getLogger(__name__)

SYSTEM_PREFIX = "[SISTEMA]: "
COUNTDOWN_TICK_SECONDS = 1

FinishListener = Callable[[ExecutionCursor], None]


class FlowInterpreter:
    """Runs one flow for many conversations, one cursor each.

    Every public event (``start``, ``on_user_reply``, ``on_timer_expired``,
    ``restart``, ``stop``) is serialised per conversation. An event delivered
    while another one for the same conversation is still being handled on the
    same thread (e.g. from inside the sink) raises ReentrantCallError.

    Finished cursors stay readable through ``get_cursor`` up to
    ``settings.finished_cursor_limit`` of them; older ones are dropped from
    memory and only the store keeps them. ``finish_listeners`` are called once
    per cursor when it completes or is handed off, timers included.
    """

    def __init__(self, flow: Flow, sink: DeliverySink, timers: TimerService,
                 settings: Optional[BotSettings] = None,
                 store: Optional[ContextStore] = None,
                 executors: ExecutorFactory = executor_factory,
                 evaluator: Optional[ConditionEvaluator] = None,
                 date_parser: Optional[DateParser] = None):
        self.flow = flow
        self.sink = sink
        self.timers = timers
        self.settings = settings or BotSettings()
        self.context_store = store
        self.executor_factory = executors
        self.condition_evaluator = evaluator or ConditionEvaluator()
        self.date_parser = date_parser

        # Auto-advance cap per event
        self.max_hops = len(flow.steps)

        self.cursors: Dict[str, ExecutionCursor] = {}
        self.finish_listeners: List[FinishListener] = []
        self._finished: "OrderedDict[str, None]" = OrderedDict()
        self._locks: Dict[str, threading.RLock] = {}
        self._busy: set = set()
        self._guard = threading.Lock()
        self._generations = itertools.count(1)

        logger.info(f"Interpreter ready for flow '{flow.id}' ({len(flow.steps)} steps)")

    # ========================================
    # Events
    # ========================================

    def start(self, conversation_id: str) -> TurnResult:
        with self._event(conversation_id):
            return self._start(conversation_id)

    def restart(self, conversation_id: str) -> TurnResult:
        """Cancel timers, archive the old cursor and start over"""
        with self._event(conversation_id):
            previous = self.cursors.get(conversation_id)
            if previous is not None:
                self._cancel_timer(previous)
                # finished cursors were archived when they finished
                if self.context_store and not previous.is_terminal:
                    self.context_store.archive_state(previous)
                logger.info(f"Restarting conversation {conversation_id}")
            return self._start(conversation_id)

    def stop(self, conversation_id: str) -> Optional[ExecutionCursor]:
        """Drop the cursor (human takeover, release, flow change). Returns it, if any."""
        with self._event(conversation_id):
            cursor = self.cursors.pop(conversation_id, None)
            self._finished.pop(conversation_id, None)
            if cursor is not None:
                self._cancel_timer(cursor)
                if self.context_store:
                    if not cursor.is_terminal:
                        self.context_store.archive_state(cursor)
                    self.context_store.delete_state(conversation_id)
                logger.info(f"Stopped conversation {conversation_id} at step {cursor.step_index}")
        self._drop_lock(conversation_id)
        return cursor

    def on_user_reply(self, conversation_id: str, text: str) -> TurnResult:
        with self._event(conversation_id):
            cursor = self.cursors.get(conversation_id)
            if cursor is None or cursor.state != CursorState.WAITING:
                logger.debug(f"Reply ignored for {conversation_id}: not waiting for input")
                return self._ignored(conversation_id, cursor)

            logger.debug(f"User reply: '{text}' (conversation: {conversation_id})")
            self._cancel_timer(cursor)
            index = cursor.step_index
            step = self.flow.steps[index]
            out: List[OutboundMessage] = []

            if not validate_input(text, step.validation, self.date_parser):
                logger.debug(f"Reply failed '{step.validation.value}' validation at step '{step.id}'")
                error = OutboundMessage(text=step.error_prompt or DEFAULT_ERROR_PROMPT, step_id=step.id)
                self._emit(cursor, [error], out)
                self._arm_timer(cursor)
                self._save(cursor)
                return self._result(cursor, out, valid=False)

            cursor.record(step.field_name or f"step_{index}", text)
            self._run_from(cursor, self._resolve_next(cursor, index, step, text), out)
            self._save(cursor)
            return self._result(cursor, out)

    def on_timer_expired(self, conversation_id: str, generation: Optional[int] = None) -> TurnResult:
        """Inactivity timeout. ``generation`` ties the signal to the timer that was armed."""
        with self._event(conversation_id):
            cursor = self.cursors.get(conversation_id)
            if cursor is None or cursor.state != CursorState.WAITING:
                return self._ignored(conversation_id, cursor)
            if generation is not None:
                handle = cursor._timer
                if handle is None or handle.generation != generation:
                    logger.debug(f"Stale timer {generation} ignored for {conversation_id}")
                    return self._ignored(conversation_id, cursor)

            self._cancel_timer(cursor)
            if self._flow_overrides_timeout():
                notice = self.settings.flow_timeout_message
            else:
                notice = self.settings.auto_handoff_message

            out: List[OutboundMessage] = []
            self._emit(cursor, [
                OutboundMessage(text=f"{SYSTEM_PREFIX}{notice}"),
                OutboundMessage(text=self.flow.end_text),
            ], out)
            cursor.finish(Outcome.HANDOFF)
            logger.info(f"Conversation {conversation_id} handed off after inactivity")
            self._save(cursor)
            return self._result(cursor, out)

    def get_cursor(self, conversation_id: str) -> Optional[ExecutionCursor]:
        return self.cursors.get(conversation_id)

    def active_conversations(self) -> List[str]:
        return [cid for cid, c in self.cursors.items() if not c.is_terminal]

    # ========================================
    # State machine
    # ========================================

    def _start(self, conversation_id: str) -> TurnResult:
        cursor = ExecutionCursor(conversation_id=conversation_id, flow_id=self.flow.id)
        previous = self.cursors.get(conversation_id)
        if previous is not None:
            self._cancel_timer(previous)
        self.cursors[conversation_id] = cursor
        self._finished.pop(conversation_id, None)
        logger.info(f"Conversation started: {conversation_id} (flow: {self.flow.id})")

        out: List[OutboundMessage] = []
        if not self.flow.steps:
            self._complete(cursor, out)
        else:
            self._run_from(cursor, self.flow.entry_index(), out)
        self._save(cursor)
        return self._result(cursor, out)

    def _run_from(self, cursor: ExecutionCursor, index: Optional[int], out: List[OutboundMessage]):
        """Announce steps starting at ``index`` until one waits for input or the flow ends"""
        hops = 0
        try:
            while True:
                if index is None:
                    self._complete(cursor, out)
                    return

                step = self.flow.steps[index]
                cursor.move_to(index, CursorState.RUNNING)
                executor = self.executor_factory.get(step.step_type)
                self._emit(cursor, executor.announce(step, cursor, self.flow), out)

                if step.is_end:
                    cursor.finish(Outcome.COMPLETED)
                    logger.info(f"Conversation {cursor.conversation_id} completed at '{step.id}'")
                    return

                if not step.skip_wait:
                    cursor.move_to(index, CursorState.WAITING)
                    self._arm_timer(cursor)
                    return

                hops += 1
                if hops > self.max_hops:
                    raise RunawayChainError(step.id, self.max_hops)
                index = self._resolve_next(cursor, index, step, None)

        except RunawayChainError as e:
            logger.error(f"Conversation {cursor.conversation_id}: {e}")
            cursor.add_diagnostic(str(e))
            self._complete(cursor, out)

    def _resolve_next(self, cursor: ExecutionCursor, index: int,
                      step: StepBase, reply: Optional[str]) -> Optional[int]:
        """Index of the next step, or None for END"""
        target = self.condition_evaluator.next_target(step, reply)
        if target is None:
            if self.flow.linear_fallback and index + 1 < len(self.flow.steps):
                return index + 1
            return None
        if target == END:
            return None

        next_index = self.flow.index_of(target)
        if next_index < 0:
            error = StructuralGraphError(step.id, target)
            logger.warning(f"Conversation {cursor.conversation_id}: {error}; ending flow")
            cursor.add_diagnostic(str(error))
            return None
        return next_index

    def _complete(self, cursor: ExecutionCursor, out: List[OutboundMessage]):
        self._emit(cursor, [OutboundMessage(text=self.flow.end_text)], out)
        cursor.finish(Outcome.COMPLETED)
        logger.info(f"Conversation {cursor.conversation_id} completed")

    # ========================================
    # Timers
    # ========================================

    def _flow_overrides_timeout(self) -> bool:
        seconds = self.flow.inactivity_timeout_seconds
        return seconds is not None and seconds > 0

    def timeout_seconds(self) -> int:
        if self._flow_overrides_timeout():
            return self.flow.inactivity_timeout_seconds
        return self.settings.auto_handoff_seconds

    def _arm_timer(self, cursor: ExecutionCursor):
        self._cancel_timer(cursor)
        seconds = self.timeout_seconds()
        if seconds <= 0:
            cursor.seconds_left = 0
            return

        # Interpreter-wide so a late timer of a replaced cursor never matches
        generation = next(self._generations)
        cursor._timer_generation = generation
        conversation_id = cursor.conversation_id

        handle = TimerHandle(generation=generation)
        handle.fire_token = self.timers.schedule(
            seconds, lambda: self._timer_fired(conversation_id, generation))
        handle.tick_token = self.timers.schedule(
            COUNTDOWN_TICK_SECONDS, lambda: self._tick(conversation_id, generation))
        cursor._timer = handle
        cursor.seconds_left = seconds
        logger.debug(f"Timer {generation} armed for {conversation_id}: {seconds}s")

    def _cancel_timer(self, cursor: ExecutionCursor):
        handle = cursor._timer
        if handle is not None:
            handle.cancel(self.timers)
            cursor._timer = None
        cursor.seconds_left = 0

    def _tick(self, conversation_id: str, generation: int):
        with self._lock_for(conversation_id):
            cursor = self.cursors.get(conversation_id)
            if cursor is None or cursor.state != CursorState.WAITING:
                return
            handle = cursor._timer
            if handle is None or handle.generation != generation:
                return
            cursor.seconds_left = max(cursor.seconds_left - COUNTDOWN_TICK_SECONDS, 0)
            if cursor.seconds_left > 0:
                handle.tick_token = self.timers.schedule(
                    COUNTDOWN_TICK_SECONDS, lambda: self._tick(conversation_id, generation))
            else:
                handle.tick_token = None

    def _timer_fired(self, conversation_id: str, generation: int):
        try:
            self.on_timer_expired(conversation_id, generation)
        except ReentrantCallError:
            logger.warning(f"Timer {generation} fired during another event for {conversation_id}; dropped")

    # ========================================
    # Helpers
    # ========================================

    def _lock_for(self, conversation_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(conversation_id)
            if lock is None:
                lock = self._locks[conversation_id] = threading.RLock()
            return lock

    @contextmanager
    def _event(self, conversation_id: str) -> Iterator[None]:
        with self._lock_for(conversation_id):
            if conversation_id in self._busy:
                raise ReentrantCallError(
                    f"conversation {conversation_id} is already handling an event")
            self._busy.add(conversation_id)
            try:
                yield
            finally:
                self._busy.discard(conversation_id)

    def _emit(self, cursor: ExecutionCursor, messages: List[OutboundMessage],
              out: List[OutboundMessage]):
        for message in messages:
            out.append(message)
            try:
                self.sink.emit(cursor.conversation_id, message)
            except Exception as e:
                logger.warning(f"Delivery failed for conversation {cursor.conversation_id}: {e}")

    def _save(self, cursor: ExecutionCursor):
        if self.context_store:
            self.context_store.save_state(cursor)
            if cursor.is_terminal:
                self.context_store.archive_state(cursor)
        if cursor.is_terminal:
            self._retire(cursor)
            self._notify_finished(cursor)

    def _retire(self, cursor: ExecutionCursor):
        """Track a finished cursor and evict the oldest ones past the limit"""
        self._finished[cursor.conversation_id] = None
        self._finished.move_to_end(cursor.conversation_id)
        while len(self._finished) > self.settings.finished_cursor_limit:
            old_id, _ = self._finished.popitem(last=False)
            old = self.cursors.get(old_id)
            if old is None or not old.is_terminal:
                continue
            del self.cursors[old_id]
            if old_id != cursor.conversation_id:
                self._drop_lock(old_id)
            logger.debug(f"Evicted finished conversation {old_id} from memory")

    def _notify_finished(self, cursor: ExecutionCursor):
        for listener in self.finish_listeners:
            try:
                listener(cursor)
            except Exception as e:
                logger.warning(f"Finish listener failed for conversation {cursor.conversation_id}: {e}")

    def _drop_lock(self, conversation_id: str):
        with self._guard:
            if conversation_id not in self.cursors and conversation_id not in self._busy:
                self._locks.pop(conversation_id, None)

    def _result(self, cursor: ExecutionCursor, out: List[OutboundMessage],
                valid: bool = True) -> TurnResult:
        step_id = None
        if 0 <= cursor.step_index < len(self.flow.steps):
            step_id = self.flow.steps[cursor.step_index].id
        return TurnResult(
            conversation_id=cursor.conversation_id,
            valid=valid,
            messages=out,
            state=cursor.state,
            step_index=cursor.step_index,
            step_id=step_id,
            collected_data=dict(cursor.collected_data),
            outcome=cursor.outcome,
            diagnostics=list(cursor.diagnostics),
        )

    def _ignored(self, conversation_id: str, cursor: Optional[ExecutionCursor]) -> TurnResult:
        if cursor is None:
            return TurnResult(
                conversation_id=conversation_id,
                accepted=False,
                state=CursorState.NOT_STARTED,
                step_index=NOT_STARTED_INDEX,
            )
        result = self._result(cursor, [])
        result.accepted = False
        return result
