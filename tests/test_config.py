from core.config import BotSettings, load_settings


def test_defaults_without_environment(monkeypatch, tmp_path):
    for name in ("ZAPBOT_TYPING_DELAY_MS", "ZAPBOT_AUTO_HANDOFF_SECONDS", "ZAPBOT_SUPER_ROBOT"):
        monkeypatch.delenv(name, raising=False)
    settings = load_settings(str(tmp_path / "missing.env"))
    assert settings.typing_delay_ms == BotSettings().typing_delay_ms
    assert settings.auto_handoff_seconds == 600
    assert settings.super_robot_active is True


def test_environment_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("ZAPBOT_AUTO_HANDOFF_SECONDS", "30")
    monkeypatch.setenv("ZAPBOT_SUPER_ROBOT", "off")
    monkeypatch.setenv("ZAPBOT_FINISHED_CURSOR_LIMIT", "5")
    settings = load_settings(str(tmp_path / "missing.env"))
    assert settings.auto_handoff_seconds == 30
    assert settings.super_robot_active is False
    assert settings.finished_cursor_limit == 5
