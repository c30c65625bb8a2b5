from __future__ import annotations

from typing import Iterable, List, Optional

from flowgraph.schema import Flow
from .models import APIResponse, APIData, Message, SessionInfo, StepState, SlotItem
from ..models import ExecutionCursor, OutboundMessage


def build_api_response(
    cursor: ExecutionCursor,
    flow: Flow,
    messages: Iterable[OutboundMessage],
    start_node: Optional[str] = None,
    successors: Optional[List[str]] = None,
    valid: bool = True,
    handled_by: Optional[str] = None,
    trigger_id: Optional[str] = None,
) -> APIResponse:
    slots_list = [SlotItem(name=k, value=v) for k, v in cursor.collected_data.items()]

    step_id = None
    step_type = None
    if 0 <= cursor.step_index < len(flow.steps):
        step = flow.steps[cursor.step_index]
        step_id = step.id
        step_type = step.step_type

    step_state = StepState(
        index=cursor.step_index,
        id=step_id,
        step_type=step_type,
        successors=successors or [],
        start_node=start_node,
    )

    session_info = SessionInfo(
        id=cursor.conversation_id,
        flow_id=cursor.flow_id,
        state=cursor.state.value,
        is_complete=cursor.is_terminal,
        outcome=cursor.outcome.value if cursor.outcome else None,
        seconds_left=cursor.seconds_left,
        started_at=cursor.started_at,
        last_updated=cursor.last_updated
    )

    return APIResponse(
        data=APIData(
            messages=[
                Message(text=m.text, type=m.type.value, media_url=m.media_url, step_id=m.step_id)
                for m in messages
            ],
            session=session_info,
            step=step_state,
            slots=slots_list,
            valid=valid,
            handled_by=handled_by,
            trigger_id=trigger_id,
            diagnostics=list(cursor.diagnostics),
        )
    )
