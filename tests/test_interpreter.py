import logging

import pytest

from core.errors import ReentrantCallError
from core.models import CursorState, MessageType, Outcome, TERMINATED_INDEX
from core.runtime.graph_info import load_flow
from flowgraph.schema import DEFAULT_END_TEXT, DEFAULT_ERROR_PROMPT, END
from storage.context_store import ContextStore


# ============================================================================
# Happy path
# ============================================================================

def test_welcome_name_end_scenario(make_interpreter, welcome_name_end_flow, sink, timers):
    interp = make_interpreter(welcome_name_end_flow)

    started = interp.start("c1")
    assert sink.texts("c1") == ["Olá! Bem-vindo.", "Qual é o seu nome?"]
    assert started.state == CursorState.WAITING
    assert started.step_id == "name"
    assert timers.pending() == 2  # handoff timer + countdown tick

    turn = interp.on_user_reply("c1", "Maria")
    assert turn.collected_data == {"nome_cliente": "Maria"}
    assert [m.text for m in turn.messages] == ["Obrigado pelo contato!"]

    cursor = interp.get_cursor("c1")
    assert cursor.state == CursorState.COMPLETED
    assert cursor.outcome == Outcome.COMPLETED
    assert cursor.step_index == TERMINATED_INDEX
    assert cursor.has_ended
    assert timers.pending() == 0


def test_sample_flow_runs_end_to_end(make_interpreter, sample_flow_path, sink):
    interp = make_interpreter(load_flow(str(sample_flow_path)))
    interp.start("c1")
    interp.on_user_reply("c1", "Ana")
    assert sink.texts()[-1] == "Obrigado, Ana! Qual é o seu melhor e-mail?"

    interp.on_user_reply("c1", "ana@example.com")
    turn = interp.on_user_reply("c1", "3")
    assert [m.type for m in turn.messages] == [MessageType.IMAGE, MessageType.TEXT, MessageType.TEXT]
    assert turn.messages[0].media_url == "https://example.com/planos.png"
    assert turn.step_id == "pergunta"

    turn = interp.on_user_reply("c1", "Quero um orçamento")
    assert turn.messages[-1].text == "Obrigado pelo contato, Ana!"
    assert turn.state == CursorState.COMPLETED
    assert interp.get_cursor("c1").summary().splitlines() == [
        "nome_cliente: Ana",
        "email_cliente: ana@example.com",
        "opcao_menu: 3",
        "resposta_cliente: Quero um orçamento",
    ]


def test_entry_prefers_welcome_step(make_interpreter, build_flow, sink):
    flow = build_flow([
        {"id": "q", "stepType": "question", "question": "Pergunta"},
        {"id": "w", "stepType": "welcome", "question": "Bem-vindo", "skipWait": True, "nextStepId": "q"},
    ])
    make_interpreter(flow).start("c1")
    assert sink.texts() == ["Bem-vindo", "Pergunta"]


def test_empty_flow_completes_with_end_text(make_interpreter, build_flow, sink, timers):
    result = make_interpreter(build_flow([])).start("c1")
    assert result.state == CursorState.COMPLETED
    assert sink.texts() == [DEFAULT_END_TEXT]
    assert timers.pending() == 0


def test_unanswered_field_name_uses_step_index(make_interpreter, build_flow):
    flow = build_flow([{"id": "q", "stepType": "question", "fieldName": ""}])
    interp = make_interpreter(flow)
    interp.start("c1")
    assert interp.on_user_reply("c1", "resposta").collected_data == {"step_0": "resposta"}


def test_media_step_sends_file_then_caption(make_interpreter, build_flow, sink):
    flow = build_flow([
        {"id": "doc", "stepType": "document", "question": "Baixe:", "mediaUrl": "https://example.com/a.pdf",
         "skipWait": True, "nextStepId": "q"},
        {"id": "q", "stepType": "question", "question": "Recebeu?"},
    ])
    make_interpreter(flow).start("c1")
    messages = [m for _, m in sink.sent]
    assert messages[0].type == MessageType.DOCUMENT
    assert messages[0].media_url == "https://example.com/a.pdf"
    assert [m.text for m in messages[1:]] == ["Baixe:", "Recebeu?"]


def test_jump_to_end_sentinel_sends_end_text(make_interpreter, build_flow, sink):
    flow = build_flow([{"id": "q", "stepType": "question", "nextStepId": END}], endMessage="Até mais")
    interp = make_interpreter(flow)
    interp.start("c1")
    turn = interp.on_user_reply("c1", "ok")
    assert [m.text for m in turn.messages] == ["Até mais"]
    assert turn.outcome == Outcome.COMPLETED


# ============================================================================
# Routing
# ============================================================================

@pytest.fixture
def menu_flow(build_flow):
    return build_flow([
        {"id": "menu", "stepType": "menu", "question": "Quer continuar?", "nextStepId": "C", "routes": [
            {"id": "r1", "condition": "sim", "targetStepId": "A"},
            {"id": "r2", "condition": "sim, claro", "targetStepId": "B"},
        ]},
        {"id": "A", "stepType": "question", "question": "A"},
        {"id": "B", "stepType": "question", "question": "B"},
        {"id": "C", "stepType": "question", "question": "C"},
    ])


def test_first_matching_route_wins(make_interpreter, menu_flow):
    interp = make_interpreter(menu_flow)
    interp.start("c1")
    assert interp.on_user_reply("c1", "  Sim, claro por favor ").step_id == "A"


def test_empty_condition_route_matches_any_reply(make_interpreter, build_flow):
    flow = build_flow([
        {"id": "menu", "stepType": "menu", "question": "Menu", "nextStepId": "b", "routes": [
            {"id": "r1", "condition": "", "targetStepId": "a"},
        ]},
        {"id": "a", "stepType": "question", "question": "A"},
        {"id": "b", "stepType": "question", "question": "B"},
    ])
    interp = make_interpreter(flow)
    interp.start("c1")
    turn = interp.on_user_reply("c1", "qualquer coisa")
    assert [m.text for m in turn.messages] == ["A"]


def test_no_route_match_follows_default(make_interpreter, menu_flow):
    interp = make_interpreter(menu_flow)
    interp.start("c1")
    assert interp.on_user_reply("c1", "talvez").step_id == "C"


def test_dangling_target_ends_conversation(make_interpreter, build_flow, sink, caplog):
    flow = build_flow([{"id": "q", "stepType": "question", "nextStepId": "ghost"}])
    interp = make_interpreter(flow)
    interp.start("c1")

    with caplog.at_level(logging.WARNING, logger="core.interpreter"):
        turn = interp.on_user_reply("c1", "oi")

    assert turn.state == CursorState.COMPLETED
    assert turn.messages[-1].text == DEFAULT_END_TEXT
    assert any("ghost" in d for d in turn.diagnostics)
    assert any("ghost" in r.getMessage() for r in caplog.records)


def test_linear_fallback_walks_list_order(make_interpreter, build_flow):
    steps = [
        {"id": "q1", "stepType": "question", "question": "1"},
        {"id": "q2", "stepType": "question", "question": "2"},
    ]
    with_fallback = make_interpreter(build_flow(steps, linearFallback=True))
    with_fallback.start("c1")
    assert with_fallback.on_user_reply("c1", "x").step_id == "q2"

    without = make_interpreter(build_flow(steps))
    without.start("c2")
    assert without.on_user_reply("c2", "x").state == CursorState.COMPLETED


# ============================================================================
# Auto-advance safety
# ============================================================================

@pytest.mark.parametrize("steps", [
    [{"id": "a", "stepType": "welcome", "skipWait": True, "nextStepId": "a"}],
    [
        {"id": "a", "stepType": "welcome", "skipWait": True, "nextStepId": "b"},
        {"id": "b", "stepType": "image", "skipWait": True, "nextStepId": "a"},
    ],
    [
        {"id": "a", "stepType": "welcome", "skipWait": True, "nextStepId": "b"},
        {"id": "b", "stepType": "question", "skipWait": True, "nextStepId": "c"},
        {"id": "c", "stepType": "audio", "skipWait": True, "nextStepId": "b"},
    ],
])
def test_skip_wait_loops_terminate(make_interpreter, build_flow, sink, timers, steps):
    flow = build_flow(steps)
    result = make_interpreter(flow).start("c1")

    assert result.state == CursorState.COMPLETED
    assert any("auto-advance chain" in d for d in result.diagnostics)
    assert sink.texts()[-1] == DEFAULT_END_TEXT
    # every step announced at most twice before the cap trips
    assert len(sink.sent) <= 2 * (2 * len(steps) + 1)
    assert timers.pending() == 0


def test_skip_wait_chain_to_end_is_not_runaway(make_interpreter, build_flow):
    flow = build_flow([
        {"id": "a", "stepType": "welcome", "skipWait": True, "nextStepId": "b"},
        {"id": "b", "stepType": "image", "skipWait": True, "nextStepId": "c"},
        {"id": "c", "stepType": "video", "skipWait": True, "nextStepId": END},
    ])
    result = make_interpreter(flow).start("c1")
    assert result.state == CursorState.COMPLETED
    assert result.diagnostics == []


# ============================================================================
# Validation
# ============================================================================

@pytest.fixture
def email_flow(build_flow):
    return build_flow([
        {"id": "email", "stepType": "email", "question": "E-mail?", "fieldName": "email_cliente",
         "validation": "email", "nextStepId": "end"},
        {"id": "end", "stepType": "end", "question": "Valeu"},
    ])


def test_invalid_email_reprompts_without_writing(make_interpreter, email_flow, timers, settings):
    interp = make_interpreter(email_flow)
    interp.start("c1")
    cursor = interp.get_cursor("c1")
    first_generation = cursor._timer.generation

    turn = interp.on_user_reply("c1", "not-an-email")

    assert not turn.valid
    assert [m.text for m in turn.messages] == [DEFAULT_ERROR_PROMPT]
    assert cursor.collected_data == {}
    assert cursor.state == CursorState.WAITING
    assert cursor._timer.generation > first_generation
    assert timers.pending() == 2

    timers.advance(settings.auto_handoff_seconds)
    handoffs = [t for t in interp.sink.texts() if t.startswith("[SISTEMA]")]
    assert len(handoffs) == 1


def test_custom_error_prompt(make_interpreter, build_flow):
    flow = build_flow([{"id": "n", "stepType": "question", "validation": "number",
                        "errorMessage": "Digite só números"}])
    interp = make_interpreter(flow)
    interp.start("c1")
    assert interp.on_user_reply("c1", "doze").messages[0].text == "Digite só números"
    assert interp.on_user_reply("c1", "12").valid


def test_injected_date_parser(make_interpreter, build_flow):
    flow = build_flow([{"id": "d", "stepType": "date", "validation": "date", "fieldName": "quando"}])
    interp = make_interpreter(flow, date_parser=lambda text: None)
    interp.start("c1")
    assert not interp.on_user_reply("c1", "2024-05-17").valid


# ============================================================================
# Timers
# ============================================================================

def test_flow_timeout_hands_off_once(make_interpreter, build_flow, sink, timers):
    flow = build_flow([{"id": "q", "stepType": "question", "question": "Oi?"}], inactivityTimeout=5)
    interp = make_interpreter(flow)
    interp.start("c1")

    timers.advance(4)
    assert interp.get_cursor("c1").state == CursorState.WAITING
    timers.advance(1)

    cursor = interp.get_cursor("c1")
    assert cursor.state == CursorState.HANDED_OFF
    assert cursor.outcome == Outcome.HANDOFF
    assert sink.texts()[1:] == ["[SISTEMA]: Tempo limite do fluxo excedido.", DEFAULT_END_TEXT]

    again = interp.on_timer_expired("c1")
    assert not again.accepted
    timers.advance(60)
    assert len(sink.texts()) == 3
    assert timers.pending() == 0


def test_global_timeout_uses_handoff_message(make_interpreter, build_flow, sink, timers, settings):
    interp = make_interpreter(build_flow([{"id": "q", "stepType": "question"}]))
    interp.start("c1")
    timers.advance(settings.auto_handoff_seconds)
    assert "[SISTEMA]: Transferindo para humano..." in sink.texts()


def test_countdown_ticks_every_second(make_interpreter, build_flow, timers):
    flow = build_flow([{"id": "q", "stepType": "question"}], inactivityTimeout=5)
    interp = make_interpreter(flow)
    interp.start("c1")
    assert interp.get_cursor("c1").seconds_left == 5
    timers.advance(3)
    assert interp.get_cursor("c1").seconds_left == 2


def test_reply_cancels_both_timers(make_interpreter, welcome_name_end_flow, timers):
    interp = make_interpreter(welcome_name_end_flow)
    interp.start("c1")
    interp.on_user_reply("c1", "Maria")
    assert timers.pending() == 0
    assert timers.advance(10_000) == 0


def test_non_positive_timeout_disables_timer(make_interpreter, build_flow, timers, settings):
    settings.auto_handoff_seconds = 0
    interp = make_interpreter(build_flow([{"id": "q", "stepType": "question"}], inactivityTimeout=0))
    interp.start("c1")
    assert timers.pending() == 0
    assert interp.get_cursor("c1").state == CursorState.WAITING


def test_stale_timer_generation_is_ignored(make_interpreter, welcome_name_end_flow, timers):
    interp = make_interpreter(welcome_name_end_flow)
    interp.start("c1")
    old_generation = interp.get_cursor("c1")._timer.generation

    interp.restart("c1")
    stale = interp.on_timer_expired("c1", old_generation)
    assert not stale.accepted
    assert interp.get_cursor("c1").state == CursorState.WAITING
    assert timers.pending() == 2


# ============================================================================
# Lifecycle
# ============================================================================

def test_terminal_cursor_ignores_replies(make_interpreter, welcome_name_end_flow, sink):
    interp = make_interpreter(welcome_name_end_flow)
    interp.start("c1")
    interp.on_user_reply("c1", "Maria")
    sent = len(sink.sent)

    turn = interp.on_user_reply("c1", "oi de novo")
    assert not turn.accepted
    assert turn.messages == []
    assert len(sink.sent) == sent


def test_reply_before_start_is_ignored(make_interpreter, welcome_name_end_flow):
    turn = make_interpreter(welcome_name_end_flow).on_user_reply("ghost", "oi")
    assert not turn.accepted
    assert turn.state == CursorState.NOT_STARTED


def test_restart_resets_cursor(make_interpreter, welcome_name_end_flow, sink):
    store = ContextStore()
    interp = make_interpreter(welcome_name_end_flow, store=store)
    interp.start("c1")
    interp.on_user_reply("c1", "Maria")

    result = interp.restart("c1")
    assert result.state == CursorState.WAITING
    assert result.collected_data == {}
    assert len(store.list_archived("c1")) == 1  # archived once, on completion


def test_stop_drops_cursor_and_timers(make_interpreter, welcome_name_end_flow, timers):
    store = ContextStore()
    interp = make_interpreter(welcome_name_end_flow, store=store)
    interp.start("c1")

    stopped = interp.stop("c1")
    assert stopped.conversation_id == "c1"
    assert interp.get_cursor("c1") is None
    assert store.load_state("c1") is None
    assert timers.pending() == 0
    assert interp.stop("c1") is None


def test_conversations_are_independent(make_interpreter, welcome_name_end_flow):
    interp = make_interpreter(welcome_name_end_flow)
    interp.start("a")
    interp.start("b")
    interp.on_user_reply("a", "Ana")
    assert interp.get_cursor("a").is_terminal
    assert interp.get_cursor("b").state == CursorState.WAITING
    assert interp.active_conversations() == ["b"]


def test_snapshots_are_saved(make_interpreter, welcome_name_end_flow):
    store = ContextStore()
    interp = make_interpreter(welcome_name_end_flow, store=store)
    interp.start("c1")
    assert store.load_state("c1").state == CursorState.WAITING
    interp.on_user_reply("c1", "Maria")
    snapshot = store.load_state("c1")
    assert snapshot.state == CursorState.COMPLETED
    assert snapshot.collected_data == {"nome_cliente": "Maria"}


# ============================================================================
# Delivery
# ============================================================================

def test_delivery_failure_does_not_roll_back(make_interpreter, welcome_name_end_flow, sink, caplog):
    interp = make_interpreter(welcome_name_end_flow)
    interp.start("c1")
    sink.fail = True

    with caplog.at_level(logging.WARNING, logger="core.interpreter"):
        turn = interp.on_user_reply("c1", "Maria")

    assert turn.state == CursorState.COMPLETED
    assert turn.collected_data == {"nome_cliente": "Maria"}
    assert any("Delivery failed" in r.getMessage() for r in caplog.records)


def test_reentrant_call_from_sink_is_refused(make_interpreter, welcome_name_end_flow):
    class CallbackSink:
        def __init__(self):
            self.interpreter = None
            self.errors = []

        def emit(self, conversation_id, message):
            try:
                self.interpreter.on_user_reply(conversation_id, "oi")
            except ReentrantCallError as e:
                self.errors.append(e)

    callback_sink = CallbackSink()
    interp = make_interpreter(welcome_name_end_flow)
    interp.sink = callback_sink
    callback_sink.interpreter = interp

    result = interp.start("c1")
    assert result.state == CursorState.WAITING
    assert len(callback_sink.errors) == 2
    assert result.collected_data == {}


# ============================================================================
# Memory
# ============================================================================

def test_finished_cursors_are_evicted_beyond_limit(make_interpreter, welcome_name_end_flow, settings):
    settings.finished_cursor_limit = 2
    store = ContextStore()
    interp = make_interpreter(welcome_name_end_flow, store=store)

    for i in range(5):
        interp.start(f"c{i}")
        interp.on_user_reply(f"c{i}", "Maria")
    interp.start("live")

    assert sorted(interp.cursors) == ["c3", "c4", "live"]
    assert sorted(interp._locks) == ["c3", "c4", "live"]
    assert interp.get_cursor("c0") is None
    assert store.load_state("c0").state == CursorState.COMPLETED
    assert interp.active_conversations() == ["live"]


def test_stop_releases_the_lock(make_interpreter, welcome_name_end_flow):
    interp = make_interpreter(welcome_name_end_flow)
    interp.start("c1")
    interp.stop("c1")
    assert "c1" not in interp._locks


def test_finish_listeners_see_timer_handoff(make_interpreter, welcome_name_end_flow, timers, settings):
    interp = make_interpreter(welcome_name_end_flow)
    finished = []
    interp.finish_listeners.append(lambda cursor: finished.append((cursor.conversation_id, cursor.outcome)))

    interp.start("a")
    interp.start("b")
    interp.on_user_reply("a", "Ana")
    timers.advance(settings.auto_handoff_seconds)

    assert finished == [("a", Outcome.COMPLETED), ("b", Outcome.HANDOFF)]
