from __future__ import annotations

from .models import APIResponse, APIData, Message, SessionInfo, StepState, SlotItem
from .builders import build_api_response

__all__ = [
    'APIResponse', 'APIData', 'Message', 'SessionInfo', 'StepState', 'SlotItem',
    'build_api_response'
]
