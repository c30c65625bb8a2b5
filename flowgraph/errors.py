from __future__ import annotations


class GraphEditError(ValueError):
    """An edit that would break the flow graph"""


class StepNotFoundError(GraphEditError, KeyError):
    def __init__(self, step_id: str):
        super().__init__(f"step not found: {step_id}")
        self.step_id = step_id

    def __str__(self) -> str:
        return self.args[0]


class DanglingReferenceError(GraphEditError):
    def __init__(self, step_id: str, target_id: str):
        super().__init__(f"step '{step_id}' points at unknown step '{target_id}'")
        self.step_id = step_id
        self.target_id = target_id
