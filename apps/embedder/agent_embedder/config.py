"""Embedder configuration.

EmbedderSettings holds process-wide defaults read from the environment
(AGENT_EMBEDDER_* variables or a .env file). EmbedConfig describes one
embedding run and is loaded from a YAML file written by the host build:

    archive: target/app.pyz
    remove_embedded_agents: true
    artifacts:                      # resolved by the host build tool
      - group_id: org.acme
        artifact_id: weaver
        path: /home/ci/.cache/org.acme/weaver-1.9.jar
    agents:
      - group_id: org.acme
        artifact_id: weaver
        agent_class: org.acme.weaver.Agent
      - agent_path: lib/tracing-agent.jar
        agent_args: sample=0.5

camelCase keys (groupId, agentClass, ...) are accepted as well.
"""

from pathlib import Path
from typing import Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict

from agent_embedder.types import AgentDescriptor, ResolvedArtifact


class ConfigError(Exception):
    """Raised when the embed configuration file cannot be read or is invalid."""


class EmbedderSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="AGENT_EMBEDDER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    log_level: str = "INFO"
    json_logs: bool = False

    # Defaults for runs whose config file does not set them.
    remove_embedded_agents: bool = False
    # When an agent exists both on disk and nested inside the archive,
    # unpack the one on disk.
    prefer_external_agents: bool = True

    @field_validator("log_level")
    @classmethod
    def normalise_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level: {v}")
        return level


def get_settings() -> EmbedderSettings:
    return EmbedderSettings()


class _ConfigModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class ArtifactConfig(_ConfigModel):
    group_id: str
    artifact_id: str
    path: str
    classifier: Optional[str] = None
    type: str = "jar"

    def to_artifact(self) -> ResolvedArtifact:
        return ResolvedArtifact(
            group_id=self.group_id,
            artifact_id=self.artifact_id,
            path=self.path,
            classifier=self.classifier,
            type=self.type,
        )


class AgentConfig(_ConfigModel):
    group_id: Optional[str] = None
    artifact_id: Optional[str] = None
    classifier: Optional[str] = None
    agent_class: Optional[str] = None
    agent_args: Optional[str] = None
    agent_path: Optional[str] = None

    @field_validator("agent_class", "agent_path")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None

    @field_validator("agent_args")
    @classmethod
    def single_line(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and ("\n" in v or "\r" in v):
            raise ValueError("agent_args must be a single line")
        return v

    @model_validator(mode="after")
    def has_location(self) -> "AgentConfig":
        if not (self.group_id and self.artifact_id) and not self.agent_path:
            raise ValueError("agent needs group_id and artifact_id, or agent_path")
        return self

    def to_descriptor(self) -> AgentDescriptor:
        return AgentDescriptor(
            group_id=self.group_id,
            artifact_id=self.artifact_id,
            classifier=self.classifier,
            agent_class=self.agent_class,
            agent_args=self.agent_args,
            agent_path=self.agent_path,
        )


class EmbedConfig(_ConfigModel):
    archive: Optional[str] = None
    remove_embedded_agents: Optional[bool] = None
    prefer_external_agents: Optional[bool] = None
    artifacts: list[ArtifactConfig] = []
    agents: list[AgentConfig] = []

    def descriptors(self) -> list[AgentDescriptor]:
        return [agent.to_descriptor() for agent in self.agents]

    def resolved_artifacts(self) -> list[ResolvedArtifact]:
        return [artifact.to_artifact() for artifact in self.artifacts]


def load_embed_config(path: Union[str, Path]) -> EmbedConfig:
    try:
        raw = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"Cannot read config file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Config file {path} must contain a mapping, got {type(raw).__name__}")

    try:
        return EmbedConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(f"Invalid config file {path}: {exc}") from exc
