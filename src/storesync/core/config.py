"""Application state and configuration."""

from __future__ import annotations

import os
import re
from functools import partial
from pathlib import Path
from typing import Any

import platformdirs
from pydantic import BaseModel, Field, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from storesync.catalog.files import DEFAULT_CATALOGS, CatalogSpec
from storesync.core.base import BaseConfig
from storesync.core.log import Logger, close_logger, setup_logger
from storesync.core.yaml_settings import YamlWithIncludesSettingsSource

# Modules reachable from {...} templates in YAML values, e.g.
# {platformdirs.user_state_dir} or {Path.cwd}
TEMPLATE_NAMESPACE = {
    'os': os,
    'platformdirs': platformdirs,
    'Path': Path,
}

# ============================================================
# CONFIG MODELS (loaded from YAML/env/CLI)
# ============================================================

class GitConfig(BaseConfig):
    """Working copy and remote the engine is bound to."""

    workdir: Path = Field(
        default_factory=Path.cwd,
        description="Path to the catalog repository working directory",
    )
    remote: str = Field(
        default="origin",
        description="Name of the remote to fetch from and push to",
    )
    branch: str = Field(
        default="main",
        description="Branch holding the shared catalog",
    )
    repo_url: str | None = Field(
        default=None,
        description=(
            "Expected remote URL; used by 'storesync remote' to check "
            "the working copy points where it should"
        ),
    )
    username: str | None = Field(
        default=None,
        description="User name embedded in the push URL",
    )
    token: str | None = Field(
        default=None,
        description=(
            "Access token embedded in the push URL. Never logged; "
            "prefer STORESYNC_CONFIG__GIT__TOKEN over YAML"
        ),
        repr=False,
    )
    binary: str = Field(
        default="git",
        description="git executable",
    )
    timeout: int = Field(
        default=120,
        description="Seconds before a single git command is killed",
    )


class CatalogConfig(BaseConfig):
    """Which JSON documents are treated as record catalogs."""

    files: list[CatalogSpec] = Field(
        default_factory=lambda: list(DEFAULT_CATALOGS),
        description="Catalog files, by repository-relative path",
    )


class SyncConfig(BaseConfig):
    """Retry policy of the sync workflows."""

    read_retries: int = Field(
        default=3,
        description="Attempts for read-path operations on network errors",
    )
    backoff_base: float = Field(
        default=1.0,
        description="Seconds before the first retry; doubles each attempt",
    )
    backoff_cap: float = Field(
        default=5.0,
        description="Upper bound on a single retry delay, in seconds",
    )
    push_retries: int = Field(
        default=3,
        description=(
            "Times a rejected push goes back to fetch and integrate "
            "before publish fails"
        ),
    )


class Config(BaseConfig):
    """Application configuration loaded from YAML/env/CLI."""

    logger: Logger = Field(
        default=None,
        description="Logger configuration and runtime instance"
    )
    git: GitConfig = Field(
        default_factory=GitConfig,
        description="Repository binding settings",
    )
    catalog: CatalogConfig = Field(
        default_factory=CatalogConfig,
        description="Catalog file definitions",
    )
    sync: SyncConfig = Field(
        default_factory=SyncConfig,
        description="Retry policy",
    )

    log_level: str = Field(
        default="info",
        alias="log-level",
        description=(
            "Console log level: 'trace', 'debug', 'info', "
            "'warn', 'error', 'fatal'"
        ),
    )
    log_root: Path = Field(
        default_factory=(
            lambda: Path(platformdirs.user_state_dir()) / "storesync"
        ),
        description=(
            "Root directory for all log files "
            "(supports {platformdirs.*} templates)"
        ),
    )

    commands: dict[str, dict[str, str]] = Field(
        default_factory=dict,
        description=(
            "Command templates by category; commands.git overrides "
            "individual git invocations"
        ),
    )

    @model_validator(mode='after')
    def _setup_logger(self) -> 'Config':
        """Install the global logger once config is loaded."""
        if self.logger is None:
            self.logger = Logger(level=self.log_level)
        # log-level always governs the console
        self.logger.console.level = self.log_level

        setup_logger(
            log_root=self.log_root,
            repo_name=self.git.workdir.name or "storesync",
            console=self.logger.console,
            otlp=self.logger.otlp,
            file=self.logger.file,
            logfire=self.logger.logfire,
        )

        return self

    def close(self):
        """Close the global logger, then any closeable children."""
        close_logger()
        super().close()


# ============================================================
# STATE (config + invocation options)
# ============================================================

class State(BaseSettings):
    """Everything a command needs: configuration plus includes.

    Loaded from YAML files, .env, environment variables and the
    command line; see YamlWithIncludesSettingsSource for file order.
    """

    config: Config = Field(
        default_factory=Config,
        description="Application configuration (from YAML/env/CLI)",
    )
    include: list[str] | None = Field(
        default=None,
        description=(
            "Additional YAML files to include and merge. "
            "Use --include on CLI or include: in YAML files."
        ),
    )

    model_config = SettingsConfigDict(
        yaml_file="storesync.yaml",
        env_file=".env",
        env_prefix="STORESYNC_",
        env_nested_delimiter="__",
        cli_implicit_flags=True,
        cli_use_class_docs_for_groups=True,
        arbitrary_types_allowed=True,
        extra='ignore'
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Priority, highest first: init args, YAML, .env, env, secrets."""
        return (
            init_settings,
            YamlWithIncludesSettingsSource(settings_cls),
            dotenv_settings,
            env_settings,
            file_secret_settings,
        )

    @model_validator(mode="after")
    def substitute_templates(self) -> "State":
        """Expand {config.*} and {platformdirs.*} templates everywhere."""
        _expand_in(self, self)
        return self


_TEMPLATE = re.compile(r"\{([a-z][a-z_]*(?:\.[a-z_]+)*)\}", re.I)


def _resolve(dotted: str, state: State) -> str | None:
    """Value of one {dotted.name} reference, or None if it is not ours.

    Examples:
        "platformdirs.user_state_dir" -> "/home/user/.local/state/storesync"
        "config.git.branch" -> "main"
    """
    head, *rest = dotted.split(".")
    if head == "config":
        target: Any = state
        rest = [head, *rest]
    elif head in TEMPLATE_NAMESPACE:
        target = TEMPLATE_NAMESPACE[head]
    else:
        return None

    try:
        for name in rest:
            target = getattr(target, name)
    except AttributeError:
        return None

    if callable(target):
        if head == "platformdirs":
            target = target("storesync", appauthor=False)
        else:
            target = target()
    return str(target)


def _expand(text: str, state: State) -> str:
    # Git command templates use the same braces ({remote}, {branch});
    # unknown names are kept for the repository binding to fill in
    def replace(match: re.Match) -> str:
        value = _resolve(match.group(1), state)
        return match.group(0) if value is None else value

    return _TEMPLATE.sub(replace, text)


def _expand_in(node: Any, state: State) -> Any:
    """Expand templates in place through models, dicts and lists."""
    if isinstance(node, str):
        return _expand(node, state)
    if isinstance(node, Path):
        return Path(_expand(str(node), state))

    if isinstance(node, BaseModel):
        items = [(name, getattr(node, name)) for name in type(node).model_fields]
        assign = partial(setattr, node)
    elif isinstance(node, dict):
        items = list(node.items())
        assign = node.__setitem__
    elif isinstance(node, list):
        items = list(enumerate(node))
        assign = node.__setitem__
    else:
        return node

    for key, value in items:
        expanded = _expand_in(value, state)
        if expanded is not value:
            assign(key, expanded)
    return node


__all__ = [
    "CatalogConfig",
    "Config",
    "GitConfig",
    "State",
    "SyncConfig",
]
