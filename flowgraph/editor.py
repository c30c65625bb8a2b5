from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from pydantic import TypeAdapter

from .errors import DanglingReferenceError, GraphEditError, StepNotFoundError
from .schema import END, Flow, Route, Step, StepBase, StepType, ValidationKind

logger = logging.getLogger(__name__)

_step_adapter: TypeAdapter = TypeAdapter(Step)


# Card catalog: default prompt, answer key and validation per step type
CARD_DEFAULTS: Dict[str, Dict[str, Any]] = {
    "welcome": {"prompt": "Olá! Bem-vindo ao nosso atendimento.", "skip_wait": True},
    "name": {"prompt": "Qual é o seu nome?", "field_name": "nome_cliente"},
    "email": {"prompt": "Qual é o seu melhor e-mail?", "field_name": "email_cliente",
              "validation": ValidationKind.EMAIL},
    "phone": {"prompt": "Qual seu WhatsApp com DDD?", "field_name": "telefone_cliente",
              "validation": ValidationKind.PHONE},
    "date": {"prompt": "Qual a melhor data para o agendamento? (DD/MM)",
             "field_name": "data_agendamento", "validation": ValidationKind.DATE},
    "menu": {"prompt": "Escolha uma opção:\n\n1. Financeiro\n2. Suporte\n3. Vendas",
             "field_name": "opcao_menu"},
    "location": {"prompt": "Por favor, informe seu endereço ou CEP.", "field_name": "endereco_cliente"},
    "question": {"prompt": "Em que posso ajudar?", "field_name": "resposta_cliente"},
    "custom": {"prompt": "Escreva sua pergunta aqui...", "field_name": "nova_variavel"},
    "image": {"prompt": "Veja esta imagem:", "skip_wait": True},
    "video": {"prompt": "Assista a este vídeo:", "skip_wait": True},
    "audio": {"prompt": "Ouça esta mensagem:", "skip_wait": True},
    "document": {"prompt": "Baixe o arquivo abaixo:", "skip_wait": True},
    "end": {"prompt": "Obrigado pelo contato!"},
}


class GraphEditor:
    """Mutation operations over an in-memory draft of a flow.

    The editor never touches the flow it was given; ``build()`` hands back the
    edited copy for the save action. References to unknown steps are refused
    unless the edit happens inside ``transaction()`` and the target exists by
    the time the transaction closes.
    """

    def __init__(self, flow: Optional[Flow] = None, flow_id: str = "draft", name: str = "") -> None:
        self.flow: Flow = flow.model_copy(deep=True) if flow is not None else Flow(id=flow_id, name=name)
        self._txn_depth = 0

    # ------------------------------
    # Steps
    # ------------------------------
    def add_step(self, step_type: str, **overrides: Any) -> StepBase:
        step_type = getattr(step_type, "value", step_type)
        if step_type not in CARD_DEFAULTS:
            raise GraphEditError(f"unknown step type: {step_type}")

        data: Dict[str, Any] = {
            "id": self._new_step_id(),
            "step_type": step_type,
            "routes": [],
            **CARD_DEFAULTS[step_type],
            **overrides,
        }
        if data["id"] in self.flow.step_ids() or data["id"] == END:
            raise GraphEditError(f"step id already in use: {data['id']}")

        step = _step_adapter.validate_python(data)
        self._check_targets(step, [])
        self.flow.steps.append(step)
        logger.debug(f"Added {step_type} step '{step.id}'")
        return step

    def update_step(self, step_id: str, **changes: Any) -> StepBase:
        idx = self._require(step_id)
        current = self.flow.steps[idx]
        if "id" in changes and changes["id"] != step_id:
            raise GraphEditError("step ids are stable and cannot be renamed")

        if "step_type" in changes:
            changes["step_type"] = getattr(changes["step_type"], "value", changes["step_type"])

        merged = current.model_dump()
        merged.update(changes)
        step = _step_adapter.validate_python(merged)

        self._check_targets(step, current.targets())
        self.flow.steps[idx] = step
        return step

    def delete_step(self, step_id: str) -> Flow:
        """Remove a step and every edge pointing at it. Unknown ids are a no-op."""
        if self.flow.index_of(step_id) < 0:
            logger.debug(f"delete_step: '{step_id}' not in flow, nothing to do")
            return self.flow

        remaining: List[StepBase] = []
        for step in self.flow.steps:
            if step.id == step_id:
                continue
            if step.default_next == step_id:
                step.default_next = None
            if any(r.target_id == step_id for r in step.routes):
                step.routes = [r for r in step.routes if r.target_id != step_id]
            remaining.append(step)
        self.flow.steps = remaining
        logger.debug(f"Deleted step '{step_id}'")
        return self.flow

    # ------------------------------
    # Edges
    # ------------------------------
    def connect(self, source_id: str, target_id: str) -> StepBase:
        idx = self._require(source_id)
        source = self.flow.steps[idx]
        if source.is_end:
            raise GraphEditError(f"end step '{source_id}' cannot have outgoing edges")
        if not self._txn_depth and not self.flow.has_target(target_id):
            raise DanglingReferenceError(source_id, target_id)
        if source_id == target_id:
            logger.warning(f"Step '{source_id}' connected to itself")
        source.default_next = target_id
        return source

    def disconnect(self, source_id: str) -> StepBase:
        idx = self._require(source_id)
        source = self.flow.steps[idx]
        source.default_next = None
        return source

    def add_route(self, source_id: str, condition: str, target_id: str) -> Route:
        idx = self._require(source_id)
        source = self.flow.steps[idx]
        if source.is_end:
            raise GraphEditError(f"end step '{source_id}' cannot have outgoing edges")
        if not self._txn_depth and not self.flow.has_target(target_id):
            raise DanglingReferenceError(source_id, target_id)
        route = Route(id=uuid.uuid4().hex[:12], condition=condition, target_id=target_id)
        source.routes = [*source.routes, route]
        return route

    def remove_route(self, source_id: str, route_id: str) -> StepBase:
        idx = self._require(source_id)
        source = self.flow.steps[idx]
        source.routes = [r for r in source.routes if r.id != route_id]
        return source

    # ------------------------------
    # Transactions / output
    # ------------------------------
    @contextmanager
    def transaction(self) -> Iterator["GraphEditor"]:
        """Defer dangling-reference checks until the block ends; roll back on failure."""
        snapshot = self.flow.model_copy(deep=True)
        self._txn_depth += 1
        try:
            yield self
        except Exception:
            self.flow = snapshot
            raise
        finally:
            self._txn_depth -= 1

        if self._txn_depth == 0:
            dangling = self._dangling_refs()
            if dangling:
                self.flow = snapshot
                step_id, target_id = dangling[0]
                raise DanglingReferenceError(step_id, target_id)

    def build(self, sort_by_position: bool = True) -> Flow:
        """Copy of the draft ready to be saved.

        Steps are ordered top to bottom by canvas position (missing positions
        count as y=0), and welcome/end messages mirror the welcome/end steps.
        """
        flow = self.flow.model_copy(deep=True)
        if sort_by_position:
            flow.steps = sorted(flow.steps, key=lambda s: s.position.y if s.position else 0)
        for step in flow.steps:
            if step.step_type == StepType.WELCOME.value:
                flow.welcome_message = step.prompt
                break
        for step in flow.steps:
            if step.step_type == StepType.END.value:
                flow.end_message = step.prompt
                break
        return flow

    # ------------------------------
    # Internal helpers
    # ------------------------------
    def _require(self, step_id: str) -> int:
        idx = self.flow.index_of(step_id)
        if idx < 0:
            raise StepNotFoundError(step_id)
        return idx

    def _new_step_id(self) -> str:
        existing = set(self.flow.step_ids())
        while True:
            candidate = uuid.uuid4().hex[:12]
            if candidate not in existing:
                return candidate

    def _check_targets(self, step: StepBase, previous: List[str]) -> None:
        if self._txn_depth:
            return
        for target in step.targets():
            if target in previous:
                continue
            # The step itself may be the target (a loop)
            if target == step.id or self.flow.has_target(target):
                continue
            raise DanglingReferenceError(step.id, target)

    def _dangling_refs(self) -> List[tuple]:
        out = []
        for step in self.flow.steps:
            for target in step.targets():
                if not self.flow.has_target(target):
                    out.append((step.id, target))
        return out
