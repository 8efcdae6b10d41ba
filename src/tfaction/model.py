from __future__ import annotations

from enum import Enum
import io
import logging
from pathlib import Path
import posixpath
import re
from typing import List, Optional

import pydantic
import yaml

logger = logging.getLogger("tfaction")


class Model(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(extra="forbid", frozen=True)


class Requirement(str, Enum):
    mergeable = "mergeable"
    approved = "approved"
    undiverged = "undiverged"


def normalize_path(path: str) -> str:
    return posixpath.normpath(path.strip().replace("\\", "/"))


class Autoplan(Model):
    enabled: bool = True
    when_modified: List[str] = pydantic.Field(default_factory=list)


class Project(Model):
    name: str
    dir: str
    branch: Optional[str] = None
    autoplan: Autoplan = pydantic.Field(default_factory=Autoplan)
    plan_requirements: Optional[List[Requirement]] = None
    apply_requirements: Optional[List[Requirement]] = None

    @pydantic.field_validator("name")
    @classmethod
    def _non_empty_name(cls, value: str) -> str:
        if value.strip() == "":
            raise ValueError("must be a non-empty string")
        return value.strip()

    @pydantic.field_validator("dir")
    @classmethod
    def _normalize_dir(cls, value: str) -> str:
        if value.strip() == "":
            raise ValueError("must be a non-empty string")
        return normalize_path(value)

    @pydantic.field_validator("branch")
    @classmethod
    def _compile_branch(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        try:
            re.compile(value)
        except re.error as e:
            raise ValueError(f"invalid branch regular expression {value!r}: {e}")
        return value

    def __str__(self) -> str:
        return f"Project({self.name}, {self.dir})"


class Config(Model):
    projects: List[Project] = pydantic.Field(min_length=1)

    @pydantic.model_validator(mode="after")
    def _unique_names(self) -> "Config":
        seen = set()
        for project in self.projects:
            if project.name in seen:
                raise ValueError(f"Duplicate project name: {project.name}")
            seen.add(project.name)
        return self

    @property
    def project_names(self) -> List[str]:
        return [p.name for p in self.projects]


class ConfigNotFound(Exception):
    pass


class InvalidConfig(Exception):
    raw_config: str
    source_path: str

    def __init__(self, *args, **kwargs):
        self.raw_config = kwargs.pop("raw_config")
        self.source_path = kwargs.pop("source_path")
        super().__init__(*args, **kwargs)


def parse_config(raw_config: str, source_path: str = "<string>") -> Config:
    buf = io.StringIO(raw_config)
    try:
        data = yaml.safe_load(buf)
    except yaml.YAMLError as e:
        raise InvalidConfig(
            f"Failed to parse YAML: {e}", raw_config=raw_config, source_path=source_path
        )

    if not isinstance(data, dict):
        raise InvalidConfig(
            "Configuration must be a mapping with a 'projects' list",
            raw_config=raw_config,
            source_path=source_path,
        )

    try:
        return Config.model_validate(data)
    except pydantic.ValidationError as e:
        raise InvalidConfig(str(e), raw_config=raw_config, source_path=source_path)


def load_config(path: Path | str) -> Config:
    path = Path(path)
    candidates = [path]
    if path.suffix == ".yaml":
        candidates.append(path.with_suffix(".yml"))

    for candidate in candidates:
        if candidate.is_file():
            logger.debug("Loading configuration from %s", candidate)
            config = parse_config(candidate.read_text(), source_path=str(candidate))
            logger.info(
                "Loaded configuration with %d project(s)", len(config.projects)
            )
            return config

    raise ConfigNotFound(f"Configuration file not found: {path.resolve()}")
