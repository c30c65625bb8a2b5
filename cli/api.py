from __future__ import annotations

import json
import os
import uuid
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, Optional
import uvicorn
from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel
from fastapi.responses import JSONResponse, RedirectResponse

from core.api import APIResponse, build_api_response
from core.config import BotSettings, load_settings
from core.dispatcher import ConversationDispatcher
from core.errors import SessionNotFoundError
from core.fuzzy import CannedResponse, suggest_reply
from core.interpreter import FlowInterpreter
from core.runtime.graph_info import FlowRuntime, load_and_validate
from core.sinks import CollectingSink
from core.timers import ThreadingTimerService, TimerService
from core.triggers import Trigger
from storage.context_store import ContextStore
from dotenv import load_dotenv

load_dotenv()

DEFAULT_FLOW = Path(__file__).resolve().parent.parent / "config" / "sample_flow.json"
CONFIG_PATH = os.getenv("CHATBOT_FLOW", str(DEFAULT_FLOW))
TRIGGERS_PATH = os.getenv("CHATBOT_TRIGGERS")
CANNED_PATH = os.getenv("CHATBOT_CANNED_RESPONSES")
USE_REDIS = bool(int(os.getenv("USE_REDIS", "0")))


class StartSessionReq(BaseModel):
    session_id: Optional[str] = None


class SendMessageReq(BaseModel):
    session_id: Optional[str] = None
    message: str


class SuggestReq(BaseModel):
    text: str
    sensitivity: Optional[int] = None


class SuggestRes(BaseModel):
    suggestion: Optional[CannedResponse] = None
    distance: Optional[int] = None


def _load_list(path: Optional[str]) -> List[Dict[str, Any]]:
    if not path:
        return []
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def create_app(
    runtime: Optional[FlowRuntime] = None,
    settings: Optional[BotSettings] = None,
    timers: Optional[TimerService] = None,
    store: Optional[ContextStore] = None,
    triggers: Optional[List[Trigger]] = None,
    catalog: Optional[List[CannedResponse]] = None,
) -> FastAPI:
    runtime = runtime or load_and_validate(CONFIG_PATH)
    settings = settings or load_settings()
    store = store or ContextStore(use_redis=USE_REDIS)
    if triggers is None:
        triggers = [Trigger.model_validate(t) for t in _load_list(TRIGGERS_PATH)]
    if catalog is None:
        catalog = [CannedResponse.model_validate(c) for c in _load_list(CANNED_PATH)]

    outbox = CollectingSink()
    interpreter = FlowInterpreter(
        runtime.flow, outbox, timers or ThreadingTimerService(), settings, store=store)
    dispatcher = ConversationDispatcher(interpreter, triggers, settings)

    app = FastAPI(title="Zapbot Flow API")
    app.state.runtime = runtime
    app.state.interpreter = interpreter
    app.state.dispatcher = dispatcher
    app.state.outbox = outbox

    @app.exception_handler(SessionNotFoundError)
    async def handle_session_not_found(req: Request, exc: SessionNotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    def respond(session_id: str, valid: bool = True, handled_by: Optional[str] = None,
                trigger_id: Optional[str] = None) -> APIResponse:
        cursor = interpreter.get_cursor(session_id) or store.load_state(session_id)
        if cursor is None:
            raise SessionNotFoundError(session_id)
        step_id = None
        if 0 <= cursor.step_index < len(runtime.flow.steps):
            step_id = runtime.flow.steps[cursor.step_index].id
        successors = list(runtime.graph.successors(step_id)) if step_id in runtime.graph else []
        return build_api_response(
            cursor,
            runtime.flow,
            outbox.drain(session_id),
            start_node=runtime.start_node,
            successors=successors,
            valid=valid,
            handled_by=handled_by,
            trigger_id=trigger_id,
        )

    @app.get("/", include_in_schema=False)
    def root() -> RedirectResponse:
        return RedirectResponse(url="/docs")

    @app.post("/sessions", response_model=APIResponse)
    def start_session(body: StartSessionReq) -> APIResponse:
        sid = body.session_id or str(uuid.uuid4())
        interpreter.start(sid)
        return respond(sid, handled_by="flow")

    @app.post("/sessions/{session_id}/messages", response_model=APIResponse)
    def send_message(session_id: str, body: SendMessageReq) -> APIResponse:
        if body.session_id and body.session_id != session_id:
            raise HTTPException(status_code=400, detail="session_id mismatch")
        result = dispatcher.handle_message(session_id, body.message)
        valid = result.turn.valid if result.turn else True
        return respond(session_id, valid=valid, handled_by=result.handled_by,
                       trigger_id=result.trigger_id)

    @app.get("/sessions/{session_id}", response_model=APIResponse)
    def get_session(session_id: str) -> APIResponse:
        return respond(session_id)

    @app.post("/sessions/{session_id}/restart", response_model=APIResponse)
    def restart_session(session_id: str) -> APIResponse:
        dispatcher.release(session_id)
        interpreter.restart(session_id)
        return respond(session_id, handled_by="flow")

    @app.post("/suggestions", response_model=SuggestRes)
    def suggestions(body: SuggestReq) -> SuggestRes:
        if not settings.enable_smart_compose:
            return SuggestRes()
        sensitivity = body.sensitivity if body.sensitivity is not None else settings.fuzzy_sensitivity
        found = suggest_reply(body.text, catalog, sensitivity=sensitivity)
        if found is None:
            return SuggestRes()
        return SuggestRes(suggestion=found.response, distance=found.distance)

    @app.get("/flow/validation")
    def flow_validation() -> Dict[str, Any]:
        return {"flow_id": runtime.flow.id, **asdict(runtime.report)}

    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {"ok": True, "active_sessions": len(interpreter.active_conversations())}

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "cli.api:app",
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "8000")),
    )
