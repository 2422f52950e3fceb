import pytest
from pydantic import ValidationError

from chat_stream_core.config.settings import Settings
from chat_stream_core.runtime.orchestrator import OrchestratorConfig


@pytest.fixture
def isolated(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for name in ("CHAT_STREAM_CONFIG_FILE", "MAIN_API_KEY", "IDLE_TIMEOUT", "LOG_LEVEL", "AUXILIARY_ENABLED"):
        monkeypatch.delenv(name, raising=False)
    return tmp_path


def test_defaults(isolated):
    cfg = Settings()
    assert cfg.idle_timeout == 30.0
    assert cfg.auxiliary_delay == 0.1
    assert cfg.batch_interval == 0.5
    assert cfg.auxiliary_enabled is False


def test_yaml_file_and_env_priority(isolated, monkeypatch):
    path = isolated / "custom.yaml"
    path.write_text(
        "main_api_key: app-from-yaml-123\n"
        "idle_timeout: 12\n"
        "auxiliary_enabled: true\n"
        "log_level: debug\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("CHAT_STREAM_CONFIG_FILE", str(path))
    monkeypatch.setenv("IDLE_TIMEOUT", "5")

    cfg = Settings()

    assert cfg.main_api_key == "app-from-yaml-123"
    assert cfg.auxiliary_enabled is True
    assert cfg.idle_timeout == 5.0
    assert cfg.log_level == "DEBUG"

    orch_cfg = OrchestratorConfig.from_settings(cfg)
    assert orch_cfg.idle_timeout == 5.0
    assert orch_cfg.user == cfg.user


def test_cwd_config_yaml_is_picked_up(isolated):
    (isolated / "config.yaml").write_text("batch_interval: 2\n", encoding="utf-8")
    assert Settings().batch_interval == 2.0


def test_short_api_key_rejected(isolated):
    with pytest.raises(ValidationError):
        Settings(main_api_key="short")


def test_unknown_log_level_rejected(isolated):
    with pytest.raises(ValidationError):
        Settings(log_level="LOUD")
