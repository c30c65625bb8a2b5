from pathlib import Path
from typing import List, Tuple

import pytest

from core.config import BotSettings
from core.interpreter import FlowInterpreter
from core.models import OutboundMessage
from core.timers import ManualTimerService
from flowgraph.schema import Flow

SAMPLE_FLOW = Path(__file__).resolve().parent.parent / "config" / "sample_flow.json"


class RecordingSink:
    """Delivery sink that remembers every message, optionally failing on demand"""

    def __init__(self):
        self.sent: List[Tuple[str, OutboundMessage]] = []
        self.fail = False

    def emit(self, conversation_id: str, message: OutboundMessage) -> None:
        if self.fail:
            raise ConnectionError("transport down")
        self.sent.append((conversation_id, message))

    def texts(self, conversation_id: str = None) -> List[str]:
        return [m.text for cid, m in self.sent if conversation_id is None or cid == conversation_id]


def make_flow(steps, **kwargs) -> Flow:
    return Flow.model_validate({"id": kwargs.pop("id", "test-flow"), "steps": steps, **kwargs})


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def timers():
    return ManualTimerService()


@pytest.fixture
def settings():
    return BotSettings(typing_delay_ms=0, auto_handoff_seconds=600)


@pytest.fixture
def welcome_name_end_flow():
    return make_flow([
        {"id": "welcome", "step_type": "welcome", "prompt": "Olá! Bem-vindo.",
         "skip_wait": True, "default_next": "name"},
        {"id": "name", "step_type": "name", "prompt": "Qual é o seu nome?",
         "field_name": "nome_cliente", "default_next": "end"},
        {"id": "end", "step_type": "end", "prompt": "Obrigado pelo contato!"},
    ])


@pytest.fixture
def make_interpreter(sink, timers, settings):
    def _make(flow: Flow, **kwargs) -> FlowInterpreter:
        return FlowInterpreter(flow, sink, timers, kwargs.pop("settings", settings), **kwargs)
    return _make


@pytest.fixture
def build_flow():
    return make_flow


@pytest.fixture
def sample_flow_path():
    return SAMPLE_FLOW
