from __future__ import annotations


class FlowError(Exception):
    """Base class for interpreter errors"""


class RunawayChainError(FlowError):
    """Too many consecutive skip_wait steps in one turn"""

    def __init__(self, step_id: str, hops: int):
        super().__init__(f"auto-advance chain exceeded {hops} hops at step '{step_id}'")
        self.step_id = step_id
        self.hops = hops


class StructuralGraphError(FlowError):
    """A jump to a step that does not exist. Logged, never raised to the host."""

    def __init__(self, step_id: str, target_id: str):
        super().__init__(f"step '{step_id}' points at unknown step '{target_id}'")
        self.step_id = step_id
        self.target_id = target_id


class ReentrantCallError(FlowError):
    """An interpreter event delivered while another one is still being handled"""


class SessionNotFoundError(FlowError, KeyError):
    def __init__(self, conversation_id: str):
        super().__init__(f"no active conversation: {conversation_id}")
        self.conversation_id = conversation_id

    def __str__(self) -> str:
        return self.args[0]
