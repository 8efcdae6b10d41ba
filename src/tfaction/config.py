from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Mapping, Optional, Tuple

import dotenv
import pydantic


class Settings(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(frozen=True)

    GITHUB_TOKEN: Optional[str] = None
    GITHUB_API_URL: str = "https://api.github.com"
    GITHUB_EVENT_NAME: Optional[str] = None
    GITHUB_EVENT_PATH: Optional[Path] = None
    GITHUB_WORKSPACE: Path = Path(".")

    CONFIG_PATH: Path = Path(".terraform-action.yaml")
    COMMAND_TRIGGERS: Tuple[str, ...] = ("terraform",)

    TERRAFORM_BINARY: str = "terraform"
    EXECUTION_TIMEOUT: Optional[float] = None

    ARTIFACT_DIR: Path = Path(".tfaction/artifacts")
    ARTIFACT_PREFIX: str = "tfplan"
    ARTIFACT_RETENTION_DAYS: int = 90

    OVERRIDE_LOGGING: int = logging.WARNING

    TELEGRAM_TOKEN: Optional[str] = None
    TELEGRAM_CHAT_ID: Optional[str] = None

    PUSH_GATEWAY: Optional[str] = None

    DRY_RUN: bool = False

    @pydantic.field_validator("COMMAND_TRIGGERS", mode="before")
    @classmethod
    def _split_triggers(cls, value):
        if isinstance(value, str):
            value = [t.strip() for t in value.split(",")]
        return tuple(t for t in value if t)

    @pydantic.field_validator("OVERRIDE_LOGGING", mode="before")
    @classmethod
    def _level_from_name(cls, value):
        if isinstance(value, str) and not value.isdigit():
            level = logging.getLevelName(value.upper())
            if not isinstance(level, int):
                raise ValueError(f"Unknown log level {value}")
            return level
        return value

    @pydantic.field_validator("EXECUTION_TIMEOUT", mode="before")
    @classmethod
    def _empty_timeout(cls, value):
        if value in ("", "0", 0):
            return None
        return value

    @property
    def config_file(self) -> Path:
        if self.CONFIG_PATH.is_absolute():
            return self.CONFIG_PATH
        return self.GITHUB_WORKSPACE / self.CONFIG_PATH

    @classmethod
    def from_env(
        cls, environ: Optional[Mapping[str, str]] = None, load_dotenv: bool = True
    ) -> "Settings":
        if environ is None:
            if load_dotenv:
                dotenv.load_dotenv()
            environ = os.environ

        values = {}
        for name in cls.model_fields:
            raw = environ.get(name)
            if raw is None or raw == "":
                continue
            values[name] = raw

        return cls.model_validate(values)
