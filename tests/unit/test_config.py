"""Unit tests for runtime settings loading."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from expert_runtime.runtime.config import RuntimeSettings


def _clear_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "EXPERT_RUNTIME_DATA_DIR",
        "EXPERT_RUNTIME_LOG_LEVEL",
        "EXPERT_RUNTIME_DEDUPE_WINDOW_SECONDS",
        "EXPERT_RUNTIME_HOST_CONFIG_PATH",
    ):
        monkeypatch.delenv(name, raising=False)


def test_settings_loads_from_dotenv(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _clear_env(monkeypatch)
    monkeypatch.chdir(tmp_path)
    (tmp_path / ".env").write_text(
        "\n".join(
            [
                f"EXPERT_RUNTIME_DATA_DIR={tmp_path / 'rt'}",
                "EXPERT_RUNTIME_LOG_LEVEL=DEBUG",
                "EXPERT_RUNTIME_DEDUPE_WINDOW_SECONDS=120",
                "",
            ]
        ),
        encoding="utf-8",
    )

    settings = RuntimeSettings()

    assert settings.data_dir == tmp_path / "rt"
    assert settings.log_level == "DEBUG"
    assert settings.dedupe_window_seconds == 120


def test_settings_derived_paths(tmp_path: Path) -> None:
    settings = RuntimeSettings(data_dir=tmp_path, _env_file=None)

    assert settings.experts_dir == tmp_path / "experts"
    assert settings.config_dir == tmp_path / "expert-config"
    assert settings.approvals_file == tmp_path / "approvals" / "pending.json"
    assert settings.dedupe_state_file == tmp_path / "dedupe-state.json"
    assert settings.registry_file == tmp_path / "EXPERTS.md"
    assert set(settings.runtime_dirs()) == {
        "experts",
        "config",
        "state",
        "learnings",
        "compiled",
        "approvals",
    }


def test_settings_expands_home(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    _clear_env(monkeypatch)
    monkeypatch.setenv("HOME", str(tmp_path))

    settings = RuntimeSettings(data_dir=Path("~/expert-data"), _env_file=None)

    assert settings.data_dir == tmp_path / "expert-data"


def test_settings_rejects_negative_window(monkeypatch: pytest.MonkeyPatch) -> None:
    _clear_env(monkeypatch)
    monkeypatch.setenv("EXPERT_RUNTIME_DEDUPE_WINDOW_SECONDS", "-1")

    with pytest.raises(ValidationError):
        RuntimeSettings(_env_file=None)
