from __future__ import annotations

import logging
from typing import Dict, Type

from .base import BaseExecutor
from .builtins import EndExecutor, MediaExecutor, PromptExecutor

logger = logging.getLogger(__name__)


class ExecutorFactory:
    """Step type -> executor, with one cached instance per type."""

    def __init__(self) -> None:
        self.executors: Dict[str, Type[BaseExecutor]] = {
            'welcome': PromptExecutor,
            'name': PromptExecutor,
            'email': PromptExecutor,
            'phone': PromptExecutor,
            'date': PromptExecutor,
            'menu': PromptExecutor,
            'location': PromptExecutor,
            'question': PromptExecutor,
            'custom': PromptExecutor,
            'image': MediaExecutor,
            'video': MediaExecutor,
            'audio': MediaExecutor,
            'document': MediaExecutor,
            'end': EndExecutor,
        }
        self._cache: Dict[str, BaseExecutor] = {}

    def get(self, step_type: str) -> BaseExecutor:
        if step_type not in self._cache:
            executor_cls = self.executors.get(step_type, PromptExecutor)
            self._cache[step_type] = executor_cls()
        return self._cache[step_type]

    def register(self, step_type: str, executor_class: Type[BaseExecutor]):
        self.executors[step_type] = executor_class
        self._cache.pop(step_type, None)


executor_factory = ExecutorFactory()
