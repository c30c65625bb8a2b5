from __future__ import annotations

import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field


class BotSettings(BaseModel):
    """Host settings the interpreter and matchers read"""
    typing_delay_ms: int = Field(default=1000, ge=0)
    auto_handoff_seconds: int = 600
    auto_handoff_message: str = "Transferindo para humano..."
    flow_timeout_message: str = "Tempo limite do fluxo excedido."
    fuzzy_sensitivity: int = Field(default=2, ge=0)
    enable_smart_compose: bool = True
    super_robot_active: bool = True
    finished_cursor_limit: int = Field(default=1000, ge=1)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def load_settings(dotenv_path: Optional[str] = None) -> BotSettings:
    """Build settings from ZAPBOT_* environment variables (and .env, when present)"""
    load_dotenv(dotenv_path)
    defaults = BotSettings()
    return BotSettings(
        typing_delay_ms=int(os.getenv("ZAPBOT_TYPING_DELAY_MS", defaults.typing_delay_ms)),
        auto_handoff_seconds=int(os.getenv("ZAPBOT_AUTO_HANDOFF_SECONDS", defaults.auto_handoff_seconds)),
        auto_handoff_message=os.getenv("ZAPBOT_AUTO_HANDOFF_MESSAGE", defaults.auto_handoff_message),
        flow_timeout_message=os.getenv("ZAPBOT_FLOW_TIMEOUT_MESSAGE", defaults.flow_timeout_message),
        fuzzy_sensitivity=int(os.getenv("ZAPBOT_FUZZY_SENSITIVITY", defaults.fuzzy_sensitivity)),
        enable_smart_compose=_env_bool("ZAPBOT_SMART_COMPOSE", defaults.enable_smart_compose),
        super_robot_active=_env_bool("ZAPBOT_SUPER_ROBOT", defaults.super_robot_active),
        finished_cursor_limit=int(os.getenv("ZAPBOT_FINISHED_CURSOR_LIMIT", defaults.finished_cursor_limit)),
    )
