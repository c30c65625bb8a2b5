from __future__ import annotations

import json
from typing import Any, Dict, List, Union

from .schema import Flow


def load_json(path: str) -> Union[Dict[str, Any], List[Any]]:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def save_json(flow: Flow, path: str) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(flow.to_dict(), f, ensure_ascii=False, indent=2)


def normalize_raw_to_flow(raw: Union[Dict[str, Any], List[Any]], flow_id: str = "flow") -> Flow:
    """Accept a saved flow object, or a bare list of steps, and return a Flow."""
    if isinstance(raw, list):
        raw = {"id": flow_id, "name": flow_id, "steps": raw}

    if not isinstance(raw, dict) or not raw:
        raise ValueError("Flow JSON must be a non-empty object or a list of steps.")
    if "steps" not in raw:
        raise ValueError("Flow JSON has no 'steps' list.")

    data = dict(raw)
    data.setdefault("id", flow_id)
    # Dashboard exports carry Date objects as strings and UI-only keys; pydantic drops extras
    return Flow.model_validate(data)
