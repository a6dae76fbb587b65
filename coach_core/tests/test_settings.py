import pydantic
import pytest

from coach_core.config.settings import CoachSettings


def test_yaml_config_source(monkeypatch, tmp_path):
    cfg = tmp_path / "coach.yaml"
    cfg.write_text("api_base_url: https://kb.example.com/api/\nrollback_on_failure: false\n", encoding="utf-8")
    monkeypatch.setenv("COACH_CONFIG_FILE", str(cfg))
    s = CoachSettings()
    assert s.api_base_url == "https://kb.example.com/api"
    assert s.rollback_on_failure is False


def test_env_overrides_yaml(monkeypatch, tmp_path):
    cfg = tmp_path / "coach.yaml"
    cfg.write_text("http_timeout: 12\n", encoding="utf-8")
    monkeypatch.setenv("COACH_CONFIG_FILE", str(cfg))
    monkeypatch.setenv("HTTP_TIMEOUT", "45")
    assert CoachSettings().http_timeout == 45.0


def test_invalid_base_url_rejected():
    with pytest.raises(pydantic.ValidationError):
        CoachSettings(api_base_url="ftp://kb.example.com")


def test_stream_path_normalized():
    assert CoachSettings(stream_path="chat/stream").stream_path == "/chat/stream"


def test_defaults():
    s = CoachSettings()
    assert s.max_upload_bytes == 10 * 1024 * 1024
    assert s.default_session_title == "新对话"
