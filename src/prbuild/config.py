"""Configuration loading for prbuild.

Reads .prbuild/config.yaml into pydantic models. Every field has a default,
so an empty file (or none at all, when not required) gives a working npm
pipeline against the ``main`` branch.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path, PurePosixPath

import pydantic
import yaml
from pydantic import BaseModel, Field, field_validator

from prbuild.errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_DIR_NAME = ".prbuild"
CONFIG_FILE_NAME = "config.yaml"


def _relative_path(value: str, field_name: str) -> str:
    """Reject absolute paths and directory traversal components."""
    p = PurePosixPath(value)
    if p.is_absolute():
        raise ValueError(f"{field_name} must be a relative path, got absolute: {value!r}")
    if ".." in p.parts:
        raise ValueError(f"{field_name} must not contain '..': {value!r}")
    return value


# ── Config Models ────────────────────────────────────────────────────────────


class ProjectConfig(BaseModel):
    name: str = ""
    owner: str = ""  # GitHub org/user
    repo: str = ""  # GitHub repo name
    default_branch: str = "main"
    repo_url: str = ""  # explicit clone URL; derived from owner/repo when empty

    @property
    def clone_url(self) -> str:
        if self.repo_url:
            return self.repo_url
        if self.owner and self.repo:
            return f"https://github.com/{self.owner}/{self.repo}.git"
        return ""


class CredentialsConfig(BaseModel):
    """Names of the environment variables holding credential material.

    prbuild never stores secrets; it reads them from the environment right
    before the step that needs them.
    """

    git_credentials_id: str = "GIT_TOKEN"  # env var with the token used for git fetch
    git_username: str = "x-access-token"
    npm_registry: str = "registry.npmjs.org"
    npm_token_env: str = "NPM_TOKEN"
    # Stripped from the environment of install/build subprocesses.
    secret_env_vars: list[str] = Field(
        default_factory=lambda: [
            "GITHUB_TOKEN",
            "GITHUB_PRIVATE_KEY",
            "GIT_TOKEN",
        ]
    )


class ToolsConfig(BaseModel):
    working_dir: str = "."  # frontend project dir, relative to the workspace
    version_commands: list[list[str]] = Field(
        default_factory=lambda: [["node", "--version"], ["npm", "--version"]]
    )
    install: list[str] = Field(default_factory=lambda: ["npm", "ci"])
    build: list[str] = Field(default_factory=lambda: ["npm", "run", "build"])
    # Non-blocking checks after a good build; a failure marks the run unstable.
    checks: list[list[str]] = Field(default_factory=list)
    step_timeout: int = 900  # seconds, per install/build/check command
    version_timeout: int = 60

    @field_validator("working_dir")
    @classmethod
    def _validate_working_dir(cls, v: str) -> str:
        return _relative_path(v, "tools.working_dir")

    @field_validator("install", "build")
    @classmethod
    def _validate_command(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("command must not be empty")
        return v


class ArtifactsConfig(BaseModel):
    output_dir: str = "dist"  # relative to tools.working_dir

    @field_validator("output_dir")
    @classmethod
    def _validate_output_dir(cls, v: str) -> str:
        return _relative_path(v, "artifacts.output_dir")


class StatusConfig(BaseModel):
    enabled: bool = True
    context: str = "ci/prbuild"
    target_url: str = ""  # falls back to $BUILD_URL
    post_pending: bool = True
    comment_on_pr: bool = False
    github_token_env: str = "GITHUB_TOKEN"


class RuntimeConfig(BaseModel):
    run_timeout: int = 3600  # seconds, whole run excluding the final status report
    workspace: str = ""  # empty → repo root


class PrbuildConfig(BaseModel):
    project: ProjectConfig = Field(default_factory=ProjectConfig)
    credentials: CredentialsConfig = Field(default_factory=CredentialsConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    artifacts: ArtifactsConfig = Field(default_factory=ArtifactsConfig)
    status: StatusConfig = Field(default_factory=StatusConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)


# ── Loading ──────────────────────────────────────────────────────────────────


def load_config(config_dir: Path, *, required: bool = True) -> PrbuildConfig:
    """Load prbuild configuration from a .prbuild/ directory.

    Args:
        config_dir: Path to the .prbuild/ directory.
        required: When False, a missing config.yaml yields the defaults.

    Raises:
        ConfigError: If config.yaml is missing (and required) or invalid.
    """
    config_path = config_dir / CONFIG_FILE_NAME
    if config_path.exists():
        try:
            with open(config_path) as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigError(f"{config_path} must contain a mapping at the top level")
    elif required:
        raise ConfigError(f"prbuild config not found: {config_path}")
    else:
        logger.info("No %s found, using defaults", config_path)
        raw = {}

    try:
        config = PrbuildConfig(**raw)
    except pydantic.ValidationError as e:
        raise ConfigError(f"Invalid prbuild config {config_path}: {e}") from e

    _apply_env_overrides(config)
    logger.info(
        "Loaded prbuild config: project=%s default_branch=%s",
        config.project.name or "(unnamed)",
        config.project.default_branch,
    )
    return config


def _apply_env_overrides(config: PrbuildConfig) -> None:
    workspace = os.environ.get("PRBUILD_WORKSPACE")
    if workspace:
        config.runtime.workspace = workspace

    repo_url = os.environ.get("PRBUILD_REPO_URL")
    if repo_url:
        config.project.repo_url = repo_url

    run_timeout = os.environ.get("PRBUILD_RUN_TIMEOUT")
    if run_timeout:
        try:
            config.runtime.run_timeout = int(run_timeout)
        except ValueError as e:
            raise ConfigError(f"PRBUILD_RUN_TIMEOUT must be an integer, got {run_timeout!r}") from e
