"""Configuration for the expert runtime.

Configuration is loaded from:
- environment variables (prefixed with `EXPERT_RUNTIME_`)
- and a local `.env` file (if present)

All persisted state lives under `data_dir`; the derived path properties below
are the single source of truth for the on-disk layout.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RuntimeSettings(BaseSettings):
    """Settings for the expert runtime.

    Environment variables:
    - EXPERT_RUNTIME_DATA_DIR
    - EXPERT_RUNTIME_HOST_CONFIG_PATH      (optional)
    - EXPERT_RUNTIME_DEDUPE_WINDOW_SECONDS (optional)
    - EXPERT_RUNTIME_ENGINE_COMMAND        (optional)
    - EXPERT_RUNTIME_LOG_LEVEL             (optional)

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `RuntimeSettings(_env_file=path_to_env)`.
    """

    data_dir: Path = Field(
        default=Path("~/.expert-runtime"),
        description="Directory where installed experts and runtime state are kept",
    )
    host_config_path: Path | None = Field(
        default=None,
        description="JSON document describing the host (registered MCP servers, skills, hooks)",
    )

    dedupe_window_seconds: float = Field(
        default=3600.0,
        ge=0,
        description="Window during which repeated trigger firings with the same key are dropped",
    )
    approval_poll_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Interval between approval timeout sweeps",
    )
    dedupe_sweep_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Interval between dedupe eviction sweeps",
    )

    engine_command: str = Field(
        default="lobster",
        description="Executable of the external workflow engine",
    )
    engine_timeout_seconds: float = Field(
        default=600.0,
        gt=0,
        description="Per-attempt timeout used when a manifest does not declare one",
    )

    prompt_budget_chars: int = Field(
        default=20000,
        gt=0,
        description="System prompts longer than this are flagged by `doctor`",
    )

    log_level: str = Field(default="INFO", description="Root logging level")

    model_config = SettingsConfigDict(
        env_prefix="EXPERT_RUNTIME_",
        env_file=".env",
        extra="ignore",
    )

    @field_validator("data_dir", "host_config_path", mode="after")
    @classmethod
    def _expand_home(cls, value: Path | None) -> Path | None:
        return value.expanduser() if value is not None else None

    @property
    def experts_dir(self) -> Path:
        """Installed expert packages, one directory each."""

        return self.data_dir / "experts"

    @property
    def config_dir(self) -> Path:
        """Per-expert binding files."""

        return self.data_dir / "expert-config"

    @property
    def state_dir(self) -> Path:
        return self.data_dir / "state"

    @property
    def learnings_dir(self) -> Path:
        return self.data_dir / "learnings"

    @property
    def compiled_dir(self) -> Path:
        return self.data_dir / "compiled"

    @property
    def approvals_file(self) -> Path:
        return self.data_dir / "approvals" / "pending.json"

    @property
    def dedupe_state_file(self) -> Path:
        return self.data_dir / "dedupe-state.json"

    @property
    def registrations_file(self) -> Path:
        return self.data_dir / "trigger-registrations.json"

    @property
    def registry_file(self) -> Path:
        return self.data_dir / "EXPERTS.md"

    def runtime_dirs(self) -> dict[str, Path]:
        return {
            "experts": self.experts_dir,
            "config": self.config_dir,
            "state": self.state_dir,
            "learnings": self.learnings_dir,
            "compiled": self.compiled_dir,
            "approvals": self.approvals_file.parent,
        }
